import orjson
import pytest
from rich.console import Console

from valheim_dsm.cli._shared import ExitCode, exit_with_error, exit_with_success, format_json


class TestFormatJson:
    def test_indented(self) -> None:
        assert format_json({"running": False}) == '{\n  "running": false\n}'

    def test_compact(self) -> None:
        assert orjson.loads(format_json({"pid": 1, "world": "Midgard"}, indent=False)) == {
            "pid": 1,
            "world": "Midgard",
        }


class TestExitHelpers:
    def test_exit_with_error(self, console: Console, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            exit_with_error("boom", ExitCode.IO_ERROR, console=console)

        assert exc_info.value.code == ExitCode.IO_ERROR
        assert "Error: boom" in capsys.readouterr().out

    def test_exit_with_success(self, console: Console, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            exit_with_success("done", console=console)

        assert exc_info.value.code == ExitCode.SUCCESS
        assert "done" in capsys.readouterr().out

    def test_exit_codes(self) -> None:
        assert [code.value for code in ExitCode] == [0, 1, 2, 3, 4, 5]
