"""Scheduling analysis derived from a ``DependencyGraph``."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Final

from scaffold_planner.planning.task_graph import CycleError, DependencyGraph

DEFAULT_LONG_CHAIN_THRESHOLD: Final[int] = 5
FALLBACK_CRITICAL_PATH_LIMIT: Final[int] = 5


@dataclass(frozen=True, slots=True)
class DependencyAnalysis:
    """Snapshot of how a task list can be scheduled."""

    is_valid: bool
    has_cycles: bool
    cycles: tuple[tuple[str, ...], ...]
    execution_order: tuple[str, ...] | None
    parallel_batches: tuple[tuple[str, ...], ...]
    critical_path: tuple[str, ...]
    blocking_tasks: tuple[str, ...]
    warnings: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "has_cycles": self.has_cycles,
            "cycles": [list(cycle) for cycle in self.cycles],
            "execution_order": (
                None if self.execution_order is None else list(self.execution_order)
            ),
            "parallel_batches": [list(batch) for batch in self.parallel_batches],
            "critical_path": list(self.critical_path),
            "blocking_tasks": list(self.blocking_tasks),
            "warnings": list(self.warnings),
        }


def analyze_graph(
    graph: DependencyGraph,
    *,
    long_chain_threshold: int = DEFAULT_LONG_CHAIN_THRESHOLD,
) -> DependencyAnalysis:
    """Summarize cycles, parallelism, and bottlenecks of ``graph``."""

    if long_chain_threshold < 1:
        raise ValueError("long_chain_threshold must be >= 1")

    cycles = find_cycles(graph)
    try:
        execution_order: tuple[str, ...] | None = graph.get_execution_order()
    except CycleError:
        execution_order = None

    warnings = [*_isolated_task_warnings(graph), *_long_chain_warnings(graph, long_chain_threshold)]

    return DependencyAnalysis(
        is_valid=not cycles,
        has_cycles=bool(cycles),
        cycles=cycles,
        execution_order=execution_order,
        parallel_batches=parallel_batches(graph),
        critical_path=(
            critical_path(graph) if execution_order is not None else fallback_critical_path(graph)
        ),
        blocking_tasks=blocking_tasks(graph),
        warnings=tuple(warnings),
    )


def find_cycles(graph: DependencyGraph) -> tuple[tuple[str, ...], ...]:
    """
    Detect dependency cycles.

    Returns closed paths rotated to start at their earliest task, e.g.
    ``("task-1", "task-3", "task-2", "task-1")``.
    """

    rank = {task_id: index for index, task_id in enumerate(graph.task_ids)}
    state: dict[str, int] = {}
    stack: list[str] = []
    stack_index: dict[str, int] = {}
    cycles: dict[tuple[str, ...], None] = {}

    for start in graph.task_ids:
        if state.get(start, 0) != 0:
            continue

        state[start] = 1
        stack_index[start] = len(stack)
        stack.append(start)
        frames: list[tuple[str, Iterator[str]]] = [(start, iter(graph.dependencies_of(start)))]

        while frames:
            node, dep_iter = frames[-1]
            try:
                dep = next(dep_iter)
            except StopIteration:
                frames.pop()
                state[node] = 2
                stack.pop()
                del stack_index[node]
                continue

            dep_state = state.get(dep, 0)
            if dep_state == 0:
                state[dep] = 1
                stack_index[dep] = len(stack)
                stack.append(dep)
                frames.append((dep, iter(graph.dependencies_of(dep))))
            elif dep_state == 1:
                cycle = stack[stack_index[dep] :]
                cycles[_canonicalize_cycle(cycle, rank)] = None

    return tuple(sorted(cycles, key=lambda path: [rank[node] for node in path]))


def parallel_batches(graph: DependencyGraph) -> tuple[tuple[str, ...], ...]:
    """Group tasks into waves whose members only depend on earlier waves.

    Tasks that can never become ready (they sit on or behind a cycle) are
    returned together as a final batch.
    """

    completed: set[str] = set()
    remaining = list(graph.task_ids)
    batches: list[tuple[str, ...]] = []

    while remaining:
        ready = tuple(task_id for task_id in remaining if graph.is_task_ready(task_id, completed))
        if not ready:
            batches.append(tuple(remaining))
            break
        batches.append(ready)
        completed.update(ready)
        remaining = [task_id for task_id in remaining if task_id not in completed]

    return tuple(batches)


def critical_path(graph: DependencyGraph) -> tuple[str, ...]:
    """
    Longest prerequisite chain, dependencies first.

    Every task weighs one unit; ties go to the task that appears first in the
    input. Raises ``CycleError`` on cyclic graphs.
    """

    ordered = graph.get_execution_order()
    if not ordered:
        return ()

    rank = {task_id: index for index, task_id in enumerate(graph.task_ids)}
    length: dict[str, int] = {}
    predecessor: dict[str, str | None] = {}

    for task_id in ordered:
        best: str | None = None
        for dep in graph.dependencies_of(task_id):
            if best is None or length[dep] > length[best] or (
                length[dep] == length[best] and rank[dep] < rank[best]
            ):
                best = dep
        length[task_id] = 1 if best is None else length[best] + 1
        predecessor[task_id] = best

    end = min(ordered, key=lambda task_id: (-length[task_id], rank[task_id]))
    path: list[str] = []
    cursor: str | None = end
    while cursor is not None:
        path.append(cursor)
        cursor = predecessor[cursor]
    path.reverse()
    return tuple(path)


def fallback_critical_path(
    graph: DependencyGraph, *, limit: int = FALLBACK_CRITICAL_PATH_LIMIT
) -> tuple[str, ...]:
    """
    Best-effort critical path for graphs with cycles.

    No longest chain exists once a cycle is present, so this ranks tasks by how
    many tasks depend on them directly and returns the top ``limit``, most
    depended-on first. Ties keep input order.
    """

    counts = _dependent_counts(graph)
    ranked = sorted(graph.task_ids, key=lambda task_id: -counts[task_id])
    return tuple(ranked[:limit])


def blocking_tasks(graph: DependencyGraph) -> tuple[str, ...]:
    """Tasks with more direct dependents than the graph average."""

    if not graph.task_ids:
        return ()

    counts = _dependent_counts(graph)
    average = sum(counts.values()) / len(counts)
    return tuple(task_id for task_id in graph.task_ids if counts[task_id] > average)


def _dependent_counts(graph: DependencyGraph) -> dict[str, int]:
    counts = dict.fromkeys(graph.task_ids, 0)
    for task_id in graph.task_ids:
        for dep in graph.dependencies_of(task_id):
            counts[dep] += 1
    return counts


def _isolated_task_warnings(graph: DependencyGraph) -> list[str]:
    if len(graph) < 2:
        return []

    depended_on = {dep for task_id in graph.task_ids for dep in graph.dependencies_of(task_id)}
    isolated = [
        task_id
        for task_id in graph.task_ids
        if not graph.dependencies_of(task_id) and task_id not in depended_on
    ]
    if not isolated:
        return []
    return [f"Isolated tasks with no dependencies or dependents: {', '.join(isolated)}"]


def _long_chain_warnings(graph: DependencyGraph, threshold: int) -> list[str]:
    warnings: list[str] = []
    for task_id in graph.task_ids:
        chain = graph.get_dependency_chain(task_id)
        if len(chain) > threshold:
            warnings.append(
                f"Task {task_id} has a dependency chain of {len(chain)} tasks "
                f"(threshold {threshold})"
            )
    return warnings


def _canonicalize_cycle(cycle: Sequence[str], rank: dict[str, int]) -> tuple[str, ...]:
    core = tuple(cycle)
    start = min(range(len(core)), key=lambda offset: rank[core[offset]])
    rotated = core[start:] + core[:start]
    return rotated + (rotated[0],)


__all__ = [
    "DEFAULT_LONG_CHAIN_THRESHOLD",
    "FALLBACK_CRITICAL_PATH_LIMIT",
    "DependencyAnalysis",
    "analyze_graph",
    "blocking_tasks",
    "critical_path",
    "fallback_critical_path",
    "find_cycles",
    "parallel_batches",
]
