"""Unit tests for exit-code routing at the CLI boundary."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scaffold_planner.config import ConfigLoadError
from scaffold_planner.main import ExitCode, _route_exception, cli_entrypoint
from scaffold_planner.planning import CycleError, TaskLoadError


@pytest.mark.unit
@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (CycleError("task-1", ("task-1", "task-2", "task-1")), ExitCode.VALIDATION_FAILED),
        (TaskLoadError("bad tasks"), ExitCode.INPUT_ERROR),
        (ConfigLoadError("bad config"), ExitCode.INPUT_ERROR),
        (FileNotFoundError("gone"), ExitCode.INPUT_ERROR),
        (KeyError("boom"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_route_exception(exc: BaseException, expected: ExitCode) -> None:
    assert _route_exception(exc) is expected


@pytest.mark.unit
def test_route_exception_follows_the_cause_chain() -> None:
    try:
        try:
            raise CycleError("task-2")
        except CycleError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert _route_exception(outer) is ExitCode.VALIDATION_FAILED


@pytest.mark.unit
def test_cli_errors_inside_command_scopes_become_input_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    tasks_path = tmp_path / "tasks.json"
    tasks_path.write_text(json.dumps(["Setup", "After setup, test"]), encoding="utf-8")

    exit_code = cli_entrypoint(["chain", str(tasks_path), "task-7"])

    assert exit_code == ExitCode.INPUT_ERROR
    assert "error: unknown task id 'task-7'" in capsys.readouterr().err


@pytest.mark.unit
def test_cli_entrypoint_runs_json_commands_in_process(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    tasks_path = tmp_path / "tasks.json"
    tasks_path.write_text(json.dumps(["Setup", "After setup, test"]), encoding="utf-8")

    exit_code = cli_entrypoint(["plan", str(tasks_path), "--json"])

    assert exit_code == ExitCode.SUCCESS
    payload = json.loads(capsys.readouterr().out)
    assert payload["execution_order"] == ["task-1", "task-2"]
