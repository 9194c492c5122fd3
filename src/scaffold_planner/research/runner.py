"""Run per-task research so every task sees its prerequisites' results."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from scaffold_planner.observability.logging import correlation_scope
from scaffold_planner.planning.dependency_inference import task_id_for_position
from scaffold_planner.planning.task_graph import DependencyGraph
from scaffold_planner.planning.tasks import Task
from scaffold_planner.research.planner import ResearchPlanner

logger = logging.getLogger(__name__)

R = TypeVar("R")

ResearchFn = Callable[[str, Task, Mapping[str, R]], Awaitable[R]]


@dataclass(frozen=True)
class ResearchReport(Generic[R]):
    """Results of one research pass over a task list."""

    results: dict[str, R] = field(default_factory=dict)
    completed_order: tuple[str, ...] = ()
    failures: dict[str, str] = field(default_factory=dict)
    used_fallback: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failures


class ResearchRunner(Generic[R]):
    """Dispatch research calls in dependency order with bounded concurrency.

    ``research_fn(task_id, task, prerequisites)`` receives the results of every
    transitive prerequisite, dependencies first. Independent tasks run
    concurrently, at most ``max_concurrency`` at a time. A failing task is
    recorded in the report and everything that depends on it is skipped.
    """

    def __init__(
        self,
        research_fn: ResearchFn[R],
        *,
        planner: ResearchPlanner | None = None,
        max_concurrency: int = 4,
        timeout_seconds: float = 120.0,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._research_fn = research_fn
        self._planner = planner if planner is not None else ResearchPlanner()
        self._max_concurrency = max_concurrency
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(
        cls,
        research_fn: ResearchFn[R],
        config: Mapping[str, Any],
        *,
        graph_factory: Callable[[Sequence[Task]], DependencyGraph] = DependencyGraph,
    ) -> ResearchRunner[R]:
        """Build a runner from the ``[planning]`` and ``[research]`` config sections."""

        planning = config.get("planning", {})
        research = config.get("research", {})
        planner = ResearchPlanner(
            graph_factory,
            fallback_to_input_order=bool(planning.get("fallback_to_input_order", True)),
        )
        return cls(
            research_fn,
            planner=planner,
            max_concurrency=int(research.get("max_concurrency", 4)),
            timeout_seconds=float(research.get("timeout_seconds", 120.0)),
        )

    async def run(self, tasks: Sequence[Task]) -> ResearchReport[R]:
        """Research every task; falls back to input order when dependencies cycle."""

        graph = self._planner.build_graph(tasks)
        if graph.validate().is_valid:
            return await self._run_by_readiness(tasks, graph)

        # Raises CycleError when the planner does not allow the fallback.
        order = self._planner.research_order(tasks)
        return await self._run_in_order(tasks, order)

    async def _run_by_readiness(
        self, tasks: Sequence[Task], graph: DependencyGraph
    ) -> ResearchReport[R]:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        results: dict[str, R] = {}
        failures: dict[str, str] = {}
        completed_order: list[str] = []
        remaining = list(graph.task_ids)
        in_flight: dict[asyncio.Task[R], str] = {}
        tasks_by_id = dict(zip(graph.task_ids, tasks))

        async def research_one(task_id: str, task: Task) -> R:
            async with semaphore:
                prerequisites = {
                    dep: results[dep] for dep in graph.get_dependency_chain(task_id)
                }
                return await self._invoke(task_id, task, prerequisites)

        try:
            while remaining or in_flight:
                remaining = self._skip_blocked(graph, remaining, failures)

                for task_id in list(remaining):
                    if graph.is_task_ready(task_id, results.keys()):
                        remaining.remove(task_id)
                        coroutine = research_one(task_id, tasks_by_id[task_id])
                        in_flight[asyncio.create_task(coroutine)] = task_id

                if not in_flight:
                    if remaining:
                        raise RuntimeError(f"research stalled with pending tasks: {remaining}")
                    break

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    task_id = in_flight.pop(finished)
                    error = self._failure_message(task_id, finished)
                    if error is None:
                        results[task_id] = finished.result()
                        completed_order.append(task_id)
                    else:
                        failures[task_id] = error
        finally:
            for pending in in_flight:
                pending.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

        return ResearchReport(
            results=results,
            completed_order=tuple(completed_order),
            failures=failures,
            used_fallback=False,
        )

    async def _run_in_order(
        self, tasks: Sequence[Task], order: Sequence[int]
    ) -> ResearchReport[R]:
        results: dict[str, R] = {}
        failures: dict[str, str] = {}
        completed_order: list[str] = []

        for position in order:
            task_id = task_id_for_position(position)
            try:
                results[task_id] = await self._invoke(task_id, tasks[position], dict(results))
            except TimeoutError:
                failures[task_id] = self._timeout_message(task_id)
                continue
            except Exception as exc:
                failures[task_id] = self._error_message(task_id, exc)
                continue
            completed_order.append(task_id)

        return ResearchReport(
            results=results,
            completed_order=tuple(completed_order),
            failures=failures,
            used_fallback=True,
        )

    async def _invoke(self, task_id: str, task: Task, prerequisites: Mapping[str, R]) -> R:
        with correlation_scope(task_id=task_id, phase="research"):
            logger.info(
                "Researching task",
                extra={"title": task.title, "prerequisite_count": len(prerequisites)},
            )
            return await asyncio.wait_for(
                self._research_fn(task_id, task, prerequisites),
                timeout=self._timeout_seconds,
            )

    @staticmethod
    def _skip_blocked(
        graph: DependencyGraph, remaining: list[str], failures: dict[str, str]
    ) -> list[str]:
        changed = True
        while changed:
            changed = False
            for task_id in list(remaining):
                failed = next(
                    (dep for dep in graph.dependencies_of(task_id) if dep in failures), None
                )
                if failed is None:
                    continue
                remaining.remove(task_id)
                failures[task_id] = f"skipped: prerequisite {failed} did not complete"
                changed = True
        return remaining

    def _failure_message(self, task_id: str, finished: asyncio.Task[R]) -> str | None:
        exc = finished.exception()
        if exc is None:
            return None
        if isinstance(exc, TimeoutError):
            return self._timeout_message(task_id)
        return self._error_message(task_id, exc)

    def _timeout_message(self, task_id: str) -> str:
        logger.warning("Research timed out", extra={"task_id": task_id})
        return f"timed out after {self._timeout_seconds} seconds"

    @staticmethod
    def _error_message(task_id: str, exc: BaseException) -> str:
        logger.warning(
            "Research failed",
            extra={"task_id": task_id},
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return f"{type(exc).__name__}: {exc}"


__all__ = ["ResearchFn", "ResearchReport", "ResearchRunner"]
