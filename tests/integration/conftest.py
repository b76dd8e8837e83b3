import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if Path(item.path).is_relative_to(Path(__file__).parent):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _isolated_home(app_home: Path) -> Path:
    return app_home


@pytest.fixture
def python_command() -> Callable[[str], list[str]]:
    """Return a factory for an argv running a small script in place of the server."""

    def _command(script: str) -> list[str]:
        return [sys.executable, "-u", "-c", textwrap.dedent(script)]

    return _command
