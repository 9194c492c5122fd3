"""
Planning layer: task lists, dependency inference, and execution ordering.

A dependency graph is a derived, in-memory view of one task-list snapshot. It is
rebuilt whenever the task list changes and never mutated in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from scaffold_planner.planning.analysis import (
    DependencyAnalysis,
    analyze_graph,
    blocking_tasks,
    critical_path,
    fallback_critical_path,
    find_cycles,
    parallel_batches,
)
from scaffold_planner.planning.dependency_inference import (
    infer_dependencies,
    position_for_task_id,
    references_task,
    task_id_for_position,
)
from scaffold_planner.planning.task_graph import CycleError, DependencyGraph, ValidationResult
from scaffold_planner.planning.tasks import (
    Task,
    TaskLoadError,
    load_task_document,
    load_tasks,
    parse_markdown_tasks,
    parse_tasks,
)

if TYPE_CHECKING:
    from pathlib import Path


def build_dependency_graph(path: str | Path) -> DependencyGraph:
    """Load a task file and build its dependency graph.

    A file holding ``DependencyGraph.serialize()`` output (it carries a
    ``schema_version``) keeps its recorded edges; any other task list has its
    edges inferred from titles.
    """

    return graph_from_document(load_task_document(path))


def graph_from_document(document: object) -> DependencyGraph:
    """Build a graph from a decoded task file (see ``build_dependency_graph``)."""

    if isinstance(document, Mapping) and "schema_version" in document:
        return DependencyGraph.from_serialized(document)
    return DependencyGraph(parse_tasks(document))


__all__ = [
    "CycleError",
    "DependencyAnalysis",
    "DependencyGraph",
    "Task",
    "TaskLoadError",
    "ValidationResult",
    "analyze_graph",
    "blocking_tasks",
    "build_dependency_graph",
    "critical_path",
    "fallback_critical_path",
    "find_cycles",
    "graph_from_document",
    "infer_dependencies",
    "load_task_document",
    "load_tasks",
    "parallel_batches",
    "parse_markdown_tasks",
    "parse_tasks",
    "position_for_task_id",
    "references_task",
    "task_id_for_position",
]
