"""Shared test fixtures for valheim-dsm tests."""

from pathlib import Path

import pytest
from rich.console import Console


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def app_home(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the application directory at a fresh temporary directory."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("VALHEIM_DSM_HOME", str(home))
    monkeypatch.delenv("VALHEIM_DSM_DEBUG", raising=False)
    monkeypatch.delenv("VALHEIM_DSM_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def console() -> Console:
    return Console(
        width=70,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )
