"""Unit tests for dependency analysis summaries."""

from __future__ import annotations

import pytest

from scaffold_planner.planning.analysis import (
    analyze_graph,
    blocking_tasks,
    critical_path,
    fallback_critical_path,
    find_cycles,
    parallel_batches,
)
from scaffold_planner.planning.task_graph import CycleError, DependencyGraph


def _diamond() -> DependencyGraph:
    # task-1 <- task-2, task-3 <- task-4
    return DependencyGraph(
        ["Setup", "Backend", "Frontend", "Release"],
        dependencies={
            "task-2": ["task-1"],
            "task-3": ["task-1"],
            "task-4": ["task-2", "task-3"],
        },
    )


@pytest.mark.unit
def test_diamond_batches_and_critical_path() -> None:
    graph = _diamond()

    assert parallel_batches(graph) == (("task-1",), ("task-2", "task-3"), ("task-4",))
    assert critical_path(graph) == ("task-1", "task-2", "task-4")
    assert blocking_tasks(graph) == ("task-1",)
    assert find_cycles(graph) == ()


@pytest.mark.unit
def test_cycles_are_canonical_and_stuck_tasks_form_last_batch() -> None:
    graph = DependencyGraph(
        ["A", "B", "C", "D", "E"],
        dependencies={
            "task-2": ["task-3"],
            "task-3": ["task-4"],
            "task-4": ["task-2"],
            "task-5": ["task-2"],
        },
    )

    assert find_cycles(graph) == (("task-2", "task-3", "task-4", "task-2"),)
    assert parallel_batches(graph) == (("task-1",), ("task-2", "task-3", "task-4", "task-5"))
    with pytest.raises(CycleError):
        critical_path(graph)


@pytest.mark.unit
def test_analyze_graph_reports_cycles_without_raising() -> None:
    graph = DependencyGraph(
        ["A", "B"], dependencies={"task-1": ["task-2"], "task-2": ["task-1"]}
    )

    analysis = analyze_graph(graph)

    assert analysis.is_valid is False
    assert analysis.has_cycles is True
    assert analysis.cycles == (("task-1", "task-2", "task-1"),)
    assert analysis.execution_order is None
    assert analysis.critical_path == ("task-1", "task-2")
    payload = analysis.to_dict()
    assert payload["execution_order"] is None
    assert payload["cycles"] == [["task-1", "task-2", "task-1"]]


@pytest.mark.unit
def test_isolated_and_long_chain_warnings() -> None:
    titles = ["Step 0", *[f"Step {index}" for index in range(1, 4)], "Unrelated"]
    dependencies = {f"task-{index + 1}": [f"task-{index}"] for index in range(1, 4)}
    graph = DependencyGraph(titles, dependencies=dependencies)

    analysis = analyze_graph(graph, long_chain_threshold=2)

    assert analysis.is_valid is True
    assert analysis.execution_order == ("task-1", "task-2", "task-3", "task-4", "task-5")
    assert analysis.warnings == (
        "Isolated tasks with no dependencies or dependents: task-5",
        "Task task-4 has a dependency chain of 3 tasks (threshold 2)",
    )


@pytest.mark.unit
def test_analyze_graph_on_trivial_graphs() -> None:
    empty = analyze_graph(DependencyGraph())
    assert empty.is_valid is True
    assert empty.parallel_batches == ()
    assert empty.warnings == ()

    single = analyze_graph(DependencyGraph(["Only task"]))
    assert single.critical_path == ("task-1",)
    assert single.warnings == ()

    with pytest.raises(ValueError, match="long_chain_threshold"):
        analyze_graph(DependencyGraph(), long_chain_threshold=0)


@pytest.mark.unit
def test_cyclic_graphs_rank_tasks_by_dependents_instead() -> None:
    # task-3 has three dependents, task-2 two, task-4 one; the rest none.
    graph = DependencyGraph(
        ["A", "B", "C", "D", "E", "F", "G"],
        dependencies={
            "task-1": ["task-2", "task-3"],
            "task-2": ["task-3"],
            "task-3": ["task-4"],
            "task-4": ["task-2"],
            "task-5": ["task-3"],
        },
    )

    assert fallback_critical_path(graph) == ("task-3", "task-2", "task-4", "task-1", "task-5")
    assert fallback_critical_path(graph, limit=2) == ("task-3", "task-2")
    assert analyze_graph(graph).critical_path == fallback_critical_path(graph)
    assert fallback_critical_path(DependencyGraph([])) == ()
