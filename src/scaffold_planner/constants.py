"""Stable constants shared across planner layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Synthetic task identity: ``task-<position + 1>``.
TASK_ID_PREFIX: Final[str] = "task-"

# Words that mark a referenced task as a prerequisite when followed by its title.
PREREQUISITE_KEYWORDS: Final[tuple[str, ...]] = (
    "after",
    "before",
    "requires",
    "dependency",
    "prerequisite",
    "following",
    "preceding",
    "once",
    "then",
    "next",
)

# Concepts an architecture document is expected to share with the task list.
ARCHITECTURE_CONCEPTS: Final[tuple[str, ...]] = (
    "authentication",
    "database",
    "api",
    "frontend",
    "backend",
)

# Schema versions for serialized contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
TASK_GRAPH_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless absolute).
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

__all__ = [
    "ARCHITECTURE_CONCEPTS",
    "CONFIG_SCHEMA_VERSION",
    "LOG_DIR",
    "PREREQUISITE_KEYWORDS",
    "TASK_GRAPH_SCHEMA_VERSION",
    "TASK_ID_PREFIX",
]
