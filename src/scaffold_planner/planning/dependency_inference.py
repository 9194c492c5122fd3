"""Positional task identifiers and lexical prerequisite inference.

Dependencies are inferred from task titles only. A task depends on another task
of the same batch when its lower-cased title mentions the other title right
after a prerequisite keyword (``"after the setup project"``), or contains one of
the literal sequencing phrases ``"<title> then"`` / ``"after <title>"``.

The heuristic is deliberately approximate: a title that happens to be a
substring of another task's title produces an edge. Callers rely on this exact
behavior, so the matching rules are kept as they are.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Final

from scaffold_planner.constants import PREREQUISITE_KEYWORDS, TASK_ID_PREFIX

if TYPE_CHECKING:
    from scaffold_planner.planning.tasks import Task

_TASK_ID_RE: Final[re.Pattern[str]] = re.compile(rf"{re.escape(TASK_ID_PREFIX)}(?P<number>\d+)")


def task_id_for_position(position: int) -> str:
    """Return the synthetic identifier for the zero-based ``position``."""

    if position < 0:
        raise ValueError("position must be >= 0")
    return f"{TASK_ID_PREFIX}{position + 1}"


def position_for_task_id(task_id: str) -> int | None:
    """Return the zero-based position encoded in ``task_id``, or ``None``."""

    match = _TASK_ID_RE.fullmatch(task_id) if isinstance(task_id, str) else None
    if match is None:
        return None
    number = int(match.group("number"))
    if number < 1:
        return None
    return number - 1


def infer_dependencies(tasks: Sequence[Task]) -> dict[str, tuple[str, ...]]:
    """Build the prerequisite adjacency for ``tasks``.

    Every task gets an entry, in input order. Each entry lists the ids of the
    tasks it depends on, de-duplicated, in the order those tasks appear in the
    input. Never raises on task content.
    """

    lowered = [task.title.lower() for task in tasks]
    adjacency: dict[str, tuple[str, ...]] = {}

    for position, title in enumerate(lowered):
        dependencies: list[str] = []
        for other_position, other_title in enumerate(lowered):
            if other_position == position:
                continue
            if references_task(title, other_title):
                dependencies.append(task_id_for_position(other_position))
        adjacency[task_id_for_position(position)] = tuple(dict.fromkeys(dependencies))

    return adjacency


def references_task(title: str, other_title: str) -> bool:
    """Return whether lower-cased ``title`` names ``other_title`` as a prerequisite."""

    if not title.strip() or not other_title.strip():
        return False

    escaped = re.escape(other_title)
    for keyword in PREREQUISITE_KEYWORDS:
        if re.search(rf"\b{keyword}\s+(?:the )?{escaped}", title):
            return True

    return f"{other_title} then" in title or f"after {other_title}" in title


__all__ = [
    "infer_dependencies",
    "position_for_task_id",
    "references_task",
    "task_id_for_position",
]
