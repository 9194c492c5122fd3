"""
scaffold-planner: dependency-aware planning for generated project tasks.

The package turns a generated task list into a task dependency graph, checks it
for cycles, and derives the order in which per-task research should run.

Import boundary: importing the package root has no side effects (no config
loading, no logging setup). Heavy layers are imported from their subpackages.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
