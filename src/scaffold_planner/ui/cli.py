"""Command-line interface router for scaffold-planner."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from scaffold_planner.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from scaffold_planner.main import ExitCode
from scaffold_planner.observability import correlation_scope, setup_logging, shutdown_logging
from scaffold_planner.planning import (
    DependencyGraph,
    Task,
    TaskLoadError,
    analyze_graph,
    graph_from_document,
    load_task_document,
    parse_tasks,
)
from scaffold_planner.research import ResearchPlanner
from scaffold_planner.ui.render import CLIRenderer, create_renderer

logger = logging.getLogger(__name__)


@dataclass(eq=False, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code.

    Not frozen: context managers reassign ``__traceback__`` while unwinding.
    """

    message: str
    exit_code: int = ExitCode.INPUT_ERROR

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="scaffold-planner",
        description=(
            "scaffold-planner: dependency-aware planning for generated task lists.\n\n"
            "Common workflows:\n"
            "  scaffold-planner plan tasks.json            Execution order + validation\n"
            "  scaffold-planner analyze tasks.yaml         Batches, critical path, warnings\n"
            "  scaffold-planner research-order tasks.md    Order for per-task research\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to scaffold TOML config (default: ./scaffold.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Show inferred dependencies and a dependencies-first execution order",
    )
    plan_parser.add_argument("tasks_file", help="Task list (.json, .yaml, .yml, .md)")
    plan_parser.set_defaults(handler=_cmd_plan)

    chain_parser = subparsers.add_parser(
        "chain",
        parents=[common],
        help="List every transitive prerequisite of one task",
    )
    chain_parser.add_argument("tasks_file", help="Task list (.json, .yaml, .yml, .md)")
    chain_parser.add_argument("task_id", help="Task id, e.g. task-3")
    chain_parser.set_defaults(handler=_cmd_chain)

    ready_parser = subparsers.add_parser(
        "ready",
        parents=[common],
        help="List tasks whose prerequisites are all completed",
    )
    ready_parser.add_argument("tasks_file", help="Task list (.json, .yaml, .yml, .md)")
    ready_parser.add_argument(
        "--completed",
        action="append",
        default=[],
        metavar="TASK_ID",
        help="Completed task id (repeatable).",
    )
    ready_parser.set_defaults(handler=_cmd_ready)

    analyze_parser = subparsers.add_parser(
        "analyze",
        parents=[common],
        help="Cycles, parallel batches, critical path, and blocking tasks",
    )
    analyze_parser.add_argument("tasks_file", help="Task list (.json, .yaml, .yml, .md)")
    analyze_parser.set_defaults(handler=_cmd_analyze)

    research_parser = subparsers.add_parser(
        "research-order",
        parents=[common],
        help="Zero-based task indices in the order research should run",
    )
    research_parser.add_argument("tasks_file", help="Task list (.json, .yaml, .yml, .md)")
    research_parser.set_defaults(handler=_cmd_research_order)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.INPUT_ERROR)

    try:
        config = _load_effective_config(namespace)
        with _session_logging(config), correlation_scope(phase=namespace.command):
            logger.info("Running command", extra={"command": namespace.command})
            result = handler(namespace, config)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(exc.exit_code)
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_plan(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    _, graph = _load_inputs(args)
    validation = graph.validate()
    execution_order = graph.get_execution_order() if validation.is_valid else None

    payload: dict[str, object] = {
        "command": "plan",
        "tasks": [
            {"id": task_id, "title": title, "dependencies": list(graph.dependencies_of(task_id))}
            for task_id, title in zip(graph.task_ids, graph.titles)
        ],
        "execution_order": None if execution_order is None else list(execution_order),
        "root_tasks": list(graph.get_root_tasks()),
        "validation": validation.to_dict(),
    }
    exit_code = ExitCode.SUCCESS if validation.is_valid else ExitCode.VALIDATION_FAILED

    if _flag(args, "json"):
        _emit_json(payload)
        return int(exit_code)

    renderer = _get_renderer(args)
    renderer.kv("Tasks", len(graph))
    rows = [
        [task_id, _truncate(title, 48), ", ".join(graph.dependencies_of(task_id)) or "-"]
        for task_id, title in zip(graph.task_ids, graph.titles)
    ]
    renderer.table(["ID", "TITLE", "DEPENDS ON"], rows, title="Tasks:")
    renderer.section("Root tasks:")
    renderer.items(list(graph.get_root_tasks()) or ["(none)"])
    if execution_order is not None:
        renderer.section("Execution order:")
        renderer.items(
            [f"{task_id}  {title}" for task_id, title in _with_titles(graph, execution_order)],
            prefix="",
        )
    for error in validation.errors:
        renderer.warning(error)
    return int(exit_code)


def _cmd_chain(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    _, graph = _load_inputs(args)
    task_id = _require_known_task(graph, args.task_id)
    chain = graph.get_dependency_chain(task_id)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "chain",
                "task_id": task_id,
                "chain": [{"id": dep, "title": title} for dep, title in _with_titles(graph, chain)],
            }
        )
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Task", f"{task_id}  {graph.get_task_titles_for_ids([task_id])[0]}")
    if not chain:
        renderer.text("No prerequisites.")
        return int(ExitCode.SUCCESS)
    renderer.section("Prerequisites (dependencies first):")
    renderer.items([f"{dep}  {title}" for dep, title in _with_titles(graph, chain)], prefix="")
    return int(ExitCode.SUCCESS)


def _cmd_ready(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    _, graph = _load_inputs(args)
    completed = tuple(_require_known_task(graph, task_id) for task_id in args.completed)
    ready = graph.get_runnable(completed)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "ready",
                "completed": sorted(set(completed)),
                "ready": [
                    {"id": task_id, "title": title} for task_id, title in _with_titles(graph, ready)
                ],
            }
        )
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Completed", len(set(completed)))
    renderer.section("Ready to start:")
    renderer.items(
        [f"{task_id}  {title}" for task_id, title in _with_titles(graph, ready)] or ["(none)"],
        prefix="",
    )
    return int(ExitCode.SUCCESS)


def _cmd_analyze(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    _, graph = _load_inputs(args)
    threshold = int(_section(config, "planning").get("long_chain_threshold", 5))
    analysis = analyze_graph(graph, long_chain_threshold=threshold)
    exit_code = ExitCode.SUCCESS if analysis.is_valid else ExitCode.VALIDATION_FAILED

    if _flag(args, "json"):
        _emit_json({"command": "analyze", **analysis.to_dict()})
        return int(exit_code)

    renderer = _get_renderer(args)
    renderer.kv("Tasks", len(graph))
    renderer.kv("Valid", "yes" if analysis.is_valid else "no")
    if analysis.cycles:
        renderer.section("Cycles:")
        renderer.items([" -> ".join(cycle) for cycle in analysis.cycles])
    renderer.section("Parallel batches:")
    batches = enumerate(analysis.parallel_batches, start=1)
    renderer.items([f"{index}: {', '.join(batch)}" for index, batch in batches], prefix="")
    if analysis.critical_path:
        if analysis.has_cycles:
            renderer.section("Most depended-on tasks:")
            renderer.text("  " + ", ".join(analysis.critical_path))
        else:
            renderer.section("Critical path:")
            renderer.text("  " + " -> ".join(analysis.critical_path))
    if analysis.blocking_tasks:
        renderer.section("Blocking tasks:")
        renderer.items(list(analysis.blocking_tasks))
    for warning in analysis.warnings:
        renderer.warning(warning)
    return int(exit_code)


def _cmd_research_order(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    tasks, graph = _load_inputs(args)
    fallback = bool(_section(config, "planning").get("fallback_to_input_order", True))
    planner = ResearchPlanner(lambda _tasks: graph, fallback_to_input_order=fallback)
    order = planner.research_order(tasks)
    used_fallback = not graph.validate().is_valid

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "research-order",
                "order": list(order),
                "used_fallback": used_fallback,
            }
        )
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    if used_fallback:
        renderer.warning("dependency cycle found; research runs in input order")
    renderer.section("Research order:")
    renderer.items([f"{index}  {tasks[index].title}" for index in order], prefix="")
    return int(ExitCode.SUCCESS)


def _cmd_config(args: argparse.Namespace, config: Mapping[str, object]) -> int:
    if _flag(args, "json"):
        _emit_json({"command": "config", "config": dict(config)})
        return int(ExitCode.SUCCESS)

    _get_renderer(args).text(dump_effective_config(config))
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    try:
        return load_config(getattr(args, "config_path", None))
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc)) from exc


def _load_inputs(args: argparse.Namespace) -> tuple[tuple[Task, ...], DependencyGraph]:
    path = Path(args.tasks_file).expanduser()
    try:
        document = load_task_document(path)
        tasks = parse_tasks(document)
        graph = graph_from_document(document)
    except TaskLoadError as exc:
        raise CLIError(str(exc)) from exc
    except ValueError as exc:
        raise CLIError(f"invalid task graph in {path}: {exc}") from exc
    logger.debug("Loaded task list", extra={"path": path, "task_count": len(tasks)})
    return tasks, graph


@contextmanager
def _session_logging(config: Mapping[str, object]) -> Iterator[None]:
    """Structured logging for one invocation when ``observability.log_to_file`` is set."""

    observability = _section(config, "observability")
    if not observability.get("log_to_file", False):
        yield
        return

    session_id = f"{datetime.now(UTC):%Y%m%dT%H%M%SZ}-{uuid4().hex[:8]}"
    setup_logging(observability, session_id=session_id)
    try:
        yield
    finally:
        shutdown_logging()


def _section(config: Mapping[str, object], name: str) -> Mapping[str, object]:
    section = config.get(name)
    return section if isinstance(section, Mapping) else {}


def _require_known_task(graph: DependencyGraph, task_id: str) -> str:
    normalized = task_id.strip()
    if normalized not in graph:
        raise CLIError(f"unknown task id {task_id!r} (expected task-1 .. task-{len(graph)})")
    return normalized


def _with_titles(graph: DependencyGraph, task_ids: Sequence[str]) -> list[tuple[str, str]]:
    return list(zip(task_ids, graph.get_task_titles_for_ids(task_ids)))


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
