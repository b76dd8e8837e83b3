"""Integration tests for the one-shot rcon command runner."""

import anyio
import anyio.abc
import pytest
from rich.console import Console

from valheim_dsm.cli import ExitCode
from valheim_dsm.cli._commands._runner import run_rcon
from valheim_dsm.config import AppConfig, RconConfiguration


async def _free_port() -> int:
    listener = await anyio.create_tcp_listener(local_host="127.0.0.1")
    port = listener.extra(anyio.abc.SocketAttribute.local_port)
    await listener.aclose()
    return port


def _config(port: int, password: str = "secret") -> AppConfig:
    return AppConfig(rcon=RconConfiguration(enabled=True, host="127.0.0.1", port=port, password=password))


@pytest.mark.anyio
class TestRunRcon:
    async def test_prints_response(
        self, rcon_server, console: Console, capsys: pytest.CaptureFixture[str]
    ) -> None:
        rcon_server.responses["players"] = ["Players: 1\n", "Ragnar\n"]

        async with rcon_server.running() as port:
            code = await run_rcon(_config(port), "players", console=console)

        assert code == ExitCode.SUCCESS
        assert rcon_server.commands == ["players"]
        assert "Players: 1\nRagnar" in capsys.readouterr().out

    async def test_empty_response(
        self, rcon_server, console: Console, capsys: pytest.CaptureFixture[str]
    ) -> None:
        async with rcon_server.running() as port:
            code = await run_rcon(_config(port), "save", console=console)

        assert code == ExitCode.SUCCESS
        assert "(no response)" in capsys.readouterr().out

    async def test_wrong_password(
        self, rcon_server, console: Console, capsys: pytest.CaptureFixture[str]
    ) -> None:
        async with rcon_server.running() as port:
            code = await run_rcon(_config(port, password="wrong"), "players", console=console)

        assert code == ExitCode.VALIDATION_ERROR
        assert "Error:" in capsys.readouterr().out
        assert rcon_server.commands == []

    async def test_connection_refused(self, console: Console) -> None:
        port = await _free_port()

        code = await run_rcon(_config(port), "players", console=console)

        assert code == ExitCode.IO_ERROR
