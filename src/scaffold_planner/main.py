"""Executable CLI entrypoint for ``scaffold_planner``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    VALIDATION_FAILED = 1
    INPUT_ERROR = 2
    INTERNAL_ERROR = 3


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m scaffold_planner`` and the console script."""

    try:
        from scaffold_planner.ui.cli import run_cli

        return _coerce_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 after --help.
        return _coerce_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - last line before the process exits.
        exit_code = _route_exception(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(exit_code)


def _coerce_exit_code(code: object) -> int:
    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int):
        try:
            return int(ExitCode(code))
        except ValueError:
            return int(ExitCode.INTERNAL_ERROR)
    text = str(code).strip()
    if text:
        print(text, file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    """Map the first recognised exception in the cause chain to an exit code."""

    from scaffold_planner.config import ConfigLoadError, ConfigValidationError
    from scaffold_planner.planning import CycleError, TaskLoadError

    input_errors = (
        ConfigLoadError,
        ConfigValidationError,
        TaskLoadError,
        FileNotFoundError,
        PermissionError,
        ValueError,
    )
    for link in _causes(exc):
        if isinstance(link, CycleError):
            return ExitCode.VALIDATION_FAILED
        if isinstance(link, input_errors):
            return ExitCode.INPUT_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif link.__suppress_context__:
            link = None
        else:
            link = link.__context__


__all__ = ["ExitCode", "cli_entrypoint"]
