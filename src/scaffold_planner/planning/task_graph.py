"""Immutable task dependency graph with deterministic traversal."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from types import MappingProxyType
from typing import cast

from scaffold_planner.constants import TASK_GRAPH_SCHEMA_VERSION
from scaffold_planner.planning.dependency_inference import (
    infer_dependencies,
    position_for_task_id,
    task_id_for_position,
)
from scaffold_planner.planning.tasks import Task, TaskLoadError, parse_tasks


class CycleError(ValueError):
    """Raised when the dependency relation is not acyclic."""

    task_id: str
    path: tuple[str, ...]

    def __init__(self, task_id: str, path: Sequence[str] = ()) -> None:
        self.task_id = task_id
        self.path = tuple(path)

        message = f"Circular dependency detected involving task {task_id}"
        if len(self.path) > 1:
            message = f"{message} ({' -> '.join(self.path)})"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a graph or research validation pass."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "timestamp": self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }


class _VisitState(IntEnum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class DependencyGraph:
    """Dependency graph over one snapshot of a task list.

    Tasks are identified by position (``task-1`` is the first task). Edges point
    from a task to the tasks it depends on and are inferred from titles at
    construction time, unless ``dependencies`` supplies them explicitly (for
    task lists that already declare their prerequisites). The graph exposes no
    mutation; build a new one when the task list changes.
    """

    __slots__ = ("_adjacency", "_task_ids", "_title_index", "_titles")

    def __init__(
        self,
        tasks: Iterable[Task | Mapping[str, object] | str] = (),
        *,
        dependencies: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        snapshot = tuple(
            Task.coerce(task, path=f"tasks[{index}]") for index, task in enumerate(tasks)
        )

        self._titles: tuple[str, ...] = tuple(task.title for task in snapshot)
        self._task_ids: tuple[str, ...] = tuple(
            task_id_for_position(position) for position in range(len(snapshot))
        )

        title_index: dict[str, str] = {}
        for task_id, title in zip(self._task_ids, self._titles):
            title_index[title] = task_id
        self._title_index: Mapping[str, str] = MappingProxyType(title_index)

        adjacency = (
            infer_dependencies(snapshot)
            if dependencies is None
            else self._explicit_adjacency(dependencies)
        )
        self._adjacency: Mapping[str, tuple[str, ...]] = MappingProxyType(adjacency)

    def __len__(self) -> int:
        return len(self._task_ids)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._adjacency

    def __repr__(self) -> str:
        edge_count = sum(len(deps) for deps in self._adjacency.values())
        return f"DependencyGraph(tasks={len(self)}, edges={edge_count})"

    @property
    def task_ids(self) -> tuple[str, ...]:
        """All task ids in input order."""
        return self._task_ids

    @property
    def titles(self) -> tuple[str, ...]:
        """Task titles in input order."""
        return self._titles

    @property
    def adjacency(self) -> Mapping[str, tuple[str, ...]]:
        """Read-only ``task id -> prerequisite ids`` mapping."""
        return self._adjacency

    @property
    def title_index(self) -> Mapping[str, str]:
        """Read-only ``title -> task id`` mapping (last position wins on repeats)."""
        return self._title_index

    def dependencies_of(self, task_id: str) -> tuple[str, ...]:
        """Direct prerequisites of ``task_id``; empty for unknown ids."""
        return self._adjacency.get(task_id, ())

    def dependents_of(self, task_id: str) -> tuple[str, ...]:
        """Tasks that list ``task_id`` as a direct prerequisite, in input order."""
        return tuple(
            candidate for candidate, deps in self._adjacency.items() if task_id in deps
        )

    def get_execution_order(self) -> tuple[str, ...]:
        """Return task ids with every task placed after all of its dependencies.

        Raises ``CycleError`` when the dependencies loop back on themselves.
        """

        state: dict[str, _VisitState] = {}
        order: list[str] = []

        for start in self._task_ids:
            if state.get(start, _VisitState.UNVISITED) is not _VisitState.UNVISITED:
                continue

            state[start] = _VisitState.IN_PROGRESS
            stack: list[str] = [start]
            frames: list[Iterator[str]] = [iter(self._adjacency[start])]

            while frames:
                try:
                    neighbor = next(frames[-1])
                except StopIteration:
                    frames.pop()
                    node = stack.pop()
                    state[node] = _VisitState.DONE
                    order.append(node)
                    continue

                neighbor_state = state.get(neighbor, _VisitState.UNVISITED)
                if neighbor_state is _VisitState.IN_PROGRESS:
                    cycle_start = stack.index(neighbor)
                    raise CycleError(neighbor, (*stack[cycle_start:], neighbor))
                if neighbor_state is _VisitState.DONE:
                    continue

                state[neighbor] = _VisitState.IN_PROGRESS
                stack.append(neighbor)
                frames.append(iter(self._adjacency.get(neighbor, ())))

        return tuple(order)

    def validate(self) -> ValidationResult:
        """Report whether a valid execution order exists."""

        try:
            self.get_execution_order()
        except CycleError as exc:
            return ValidationResult(is_valid=False, errors=(str(exc),))
        return ValidationResult(is_valid=True)

    def get_root_tasks(self) -> tuple[str, ...]:
        """Tasks without prerequisites, in input order; they can start first."""

        return tuple(task_id for task_id in self._task_ids if not self._adjacency[task_id])

    def get_dependency_chain(self, task_id: str) -> tuple[str, ...]:
        """Return all transitive prerequisites of ``task_id``, dependencies first.

        Traversal stops at already-seen tasks, so cyclic graphs yield a partial
        chain instead of an error. ``task_id`` itself is never part of its chain.
        """

        visited: set[str] = {task_id}
        chain: list[str] = []

        for root in self.dependencies_of(task_id):
            if root in visited:
                continue
            visited.add(root)
            stack: list[str] = [root]
            frames: list[Iterator[str]] = [iter(self.dependencies_of(root))]

            while frames:
                try:
                    neighbor = next(frames[-1])
                except StopIteration:
                    frames.pop()
                    chain.append(stack.pop())
                    continue

                if neighbor in visited:
                    continue
                visited.add(neighbor)
                stack.append(neighbor)
                frames.append(iter(self.dependencies_of(neighbor)))

        return tuple(chain)

    def get_task_titles_for_ids(self, task_ids: Iterable[str]) -> tuple[str, ...]:
        """Map ``task-<n>`` ids to titles; unparseable or unknown ids pass through."""

        titles: list[str] = []
        for task_id in task_ids:
            position = position_for_task_id(task_id)
            if position is None or position >= len(self._titles):
                titles.append(task_id)
                continue
            titles.append(self._titles[position])
        return tuple(titles)

    def is_task_ready(self, task_id: str, completed_ids: Set[str] | Iterable[str]) -> bool:
        """Return whether every prerequisite of ``task_id`` is in ``completed_ids``."""

        completed = completed_ids if isinstance(completed_ids, Set) else frozenset(completed_ids)
        return all(dep in completed for dep in self.dependencies_of(task_id))

    def get_runnable(self, completed_ids: Set[str] | Iterable[str]) -> tuple[str, ...]:
        """Tasks not yet completed whose prerequisites are all completed."""

        completed = frozenset(completed_ids)
        return tuple(
            task_id
            for task_id in self._task_ids
            if task_id not in completed and self.is_task_ready(task_id, completed)
        )

    def serialize(self) -> dict[str, object]:
        """Stable JSON-friendly view of the graph."""

        return {
            "schema_version": TASK_GRAPH_SCHEMA_VERSION,
            "tasks": [
                {
                    "id": task_id,
                    "title": title,
                    "dependencies": list(self._adjacency[task_id]),
                }
                for task_id, title in zip(self._task_ids, self._titles)
            ],
        }

    @classmethod
    def from_serialized(cls, payload: Mapping[str, object]) -> DependencyGraph:
        """Rebuild a graph from :meth:`serialize` output, keeping the recorded edges."""

        version = payload.get("schema_version")
        if version != TASK_GRAPH_SCHEMA_VERSION:
            raise TaskLoadError(
                f"unsupported task graph schema_version {version!r}; "
                f"expected {TASK_GRAPH_SCHEMA_VERSION}"
            )

        tasks = parse_tasks(payload)
        raw_tasks = cast("Sequence[object]", payload["tasks"])
        dependencies: dict[str, tuple[str, ...]] = {}
        for position, item in enumerate(raw_tasks):
            if not isinstance(item, Mapping):
                continue
            expected_id = task_id_for_position(position)
            recorded_id = item.get("id", expected_id)
            if recorded_id != expected_id:
                raise TaskLoadError(
                    f"tasks[{position}].id must be {expected_id!r}, got {recorded_id!r}"
                )
            declared = item.get("dependencies", ())
            if (
                not isinstance(declared, Sequence)
                or isinstance(declared, str)
                or not all(isinstance(dep, str) for dep in declared)
            ):
                raise TaskLoadError(f"tasks[{position}].dependencies must be a list of task ids")
            dependencies[expected_id] = tuple(declared)

        return cls(tasks, dependencies=dependencies)

    def _explicit_adjacency(
        self, dependencies: Mapping[str, Iterable[str]]
    ) -> dict[str, tuple[str, ...]]:
        known = set(self._task_ids)
        for task_id in dependencies:
            if task_id not in known:
                raise ValueError(f"Unknown task in dependencies: {task_id}")

        adjacency: dict[str, tuple[str, ...]] = {}
        for task_id in self._task_ids:
            declared = tuple(dict.fromkeys(dependencies.get(task_id, ())))
            for dep in declared:
                if dep not in known:
                    raise ValueError(f"Task {task_id} depends on unknown task {dep}")
                if dep == task_id:
                    raise ValueError(f"Task {task_id} cannot depend on itself")
            adjacency[task_id] = declared
        return adjacency


__all__ = ["CycleError", "DependencyGraph", "ValidationResult"]
