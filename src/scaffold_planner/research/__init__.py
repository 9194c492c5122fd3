"""Research layer: dependency-aware ordering and dispatch of per-task research."""

from scaffold_planner.research.planner import GraphFactory, ResearchPlanner
from scaffold_planner.research.runner import ResearchFn, ResearchReport, ResearchRunner

__all__ = [
    "GraphFactory",
    "ResearchFn",
    "ResearchPlanner",
    "ResearchReport",
    "ResearchRunner",
]
