"""Dependency-aware ordering and completeness checks for per-task research."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence, Set

from scaffold_planner.constants import ARCHITECTURE_CONCEPTS
from scaffold_planner.planning.dependency_inference import (
    position_for_task_id,
    task_id_for_position,
)
from scaffold_planner.planning.task_graph import CycleError, DependencyGraph, ValidationResult
from scaffold_planner.planning.tasks import Task

logger = logging.getLogger(__name__)

GraphFactory = Callable[[Sequence[Task]], DependencyGraph]


class ResearchPlanner:
    """Decide in which order task research runs.

    The graph is built through ``graph_factory`` for every call, so each task
    snapshot gets its own graph and nothing is shared between callers.
    """

    __slots__ = ("_fallback_to_input_order", "_graph_factory")

    def __init__(
        self,
        graph_factory: GraphFactory = DependencyGraph,
        *,
        fallback_to_input_order: bool = True,
    ) -> None:
        self._graph_factory = graph_factory
        self._fallback_to_input_order = fallback_to_input_order

    @property
    def fallback_to_input_order(self) -> bool:
        return self._fallback_to_input_order

    def build_graph(self, tasks: Sequence[Task]) -> DependencyGraph:
        return self._graph_factory(tasks)

    def research_order(self, tasks: Sequence[Task]) -> tuple[int, ...]:
        """Return zero-based task indices so prerequisites are researched first.

        On a dependency cycle the input order is returned instead, unless the
        planner was built with ``fallback_to_input_order=False``.
        """

        graph = self.build_graph(tasks)
        try:
            order = graph.get_execution_order()
        except CycleError as exc:
            if not self._fallback_to_input_order:
                raise
            logger.warning(
                "Dependency cycle found, researching tasks in input order",
                extra={"cycle_task_id": exc.task_id, "cycle_path": list(exc.path)},
            )
            return tuple(range(len(tasks)))

        indices: list[int] = []
        for task_id in order:
            position = position_for_task_id(task_id)
            if position is not None:
                indices.append(position)
        return tuple(indices)

    def validate_research_completeness(
        self,
        tasks: Sequence[Task],
        researched_ids: Set[str],
        *,
        architecture: str = "",
    ) -> ValidationResult:
        """Warn about unresearched tasks and architecture concepts no task covers."""

        warnings: list[str] = []

        missing = [
            task_id_for_position(position)
            for position in range(len(tasks))
            if task_id_for_position(position) not in researched_ids
        ]
        if missing:
            warnings.append(f"{len(missing)} tasks have not been researched")

        uncovered = _uncovered_concepts(tasks, architecture)
        if uncovered:
            warnings.append(
                "Architecture mentions concepts no task covers: " + ", ".join(uncovered)
            )

        return ValidationResult(is_valid=True, warnings=tuple(warnings))


def _uncovered_concepts(tasks: Sequence[Task], architecture: str) -> list[str]:
    if not architecture.strip() or not tasks:
        return []

    architecture_text = architecture.lower()
    task_text = "\n".join(f"{task.title}\n{task.details}" for task in tasks).lower()
    return [
        concept
        for concept in ARCHITECTURE_CONCEPTS
        if concept in architecture_text and concept not in task_text
    ]


__all__ = ["GraphFactory", "ResearchPlanner"]
