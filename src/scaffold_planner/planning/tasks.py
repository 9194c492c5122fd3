"""Task records and loaders for generated task lists.

A task list is the authoritative input of the planner: every dependency graph is
derived from one snapshot of it. Lists can be supplied as JSON, YAML, or a
Markdown document where each second- or third-level heading starts a task.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import yaml

_HEADING_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s{0,3}(?P<hashes>#{1,6})\s+(?P<text>.*?)\s*#*\s*$"
)
_FENCE_START_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,}).*$")
_FENCE_CLOSE_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,})\s*$")
_TASK_HEADING_LEVELS: Final[frozenset[int]] = frozenset({2, 3})

_JSON_SUFFIXES: Final[frozenset[str]] = frozenset({".json"})
_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})
_MARKDOWN_SUFFIXES: Final[frozenset[str]] = frozenset({".md", ".markdown"})


class TaskLoadError(ValueError):
    """Raised when a task list cannot be read or has an invalid shape."""


@dataclass(frozen=True, slots=True)
class Task:
    """One generated unit of work."""

    title: str
    details: str = ""

    @classmethod
    def coerce(cls, value: object, *, path: str = "task") -> Task:
        """Build a task from a ``Task``, a ``{title, details}`` mapping, or a bare title."""

        if isinstance(value, Task):
            return value
        if isinstance(value, str):
            return cls(title=value)
        if not isinstance(value, Mapping):
            raise TaskLoadError(f"{path} must be an object or a string, got {type(value).__name__}")

        title = value.get("title")
        if not isinstance(title, str):
            raise TaskLoadError(f"{path}.title must be a string")

        details = value.get("details")
        if details is None:
            details = ""
        if not isinstance(details, str):
            raise TaskLoadError(f"{path}.details must be a string")
        return cls(title=title, details=details)

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "details": self.details}


def parse_tasks(payload: object) -> tuple[Task, ...]:
    """Normalize a decoded payload into an ordered tuple of tasks.

    Accepts either a sequence of task-like values or a mapping holding such a
    sequence under ``tasks``.
    """

    raw_tasks: object = payload
    if isinstance(payload, Mapping):
        if "tasks" not in payload:
            raise TaskLoadError("task payload object must contain a 'tasks' list")
        raw_tasks = payload["tasks"]

    if raw_tasks is None:
        return ()
    if not isinstance(raw_tasks, Sequence) or isinstance(raw_tasks, (str, bytes, bytearray)):
        raise TaskLoadError("'tasks' must be a list")

    return tuple(Task.coerce(item, path=f"tasks[{index}]") for index, item in enumerate(raw_tasks))


def load_tasks(path: str | Path) -> tuple[Task, ...]:
    """Load a task list from a JSON, YAML, or Markdown file."""

    return parse_tasks(load_task_document(path))


def load_task_document(path: str | Path) -> object:
    """Read a task file without interpreting its structure.

    JSON and YAML files return the decoded payload; Markdown files return the
    parsed tasks.
    """

    resolved = Path(path)
    suffix = resolved.suffix.lower()
    if suffix not in _JSON_SUFFIXES | _YAML_SUFFIXES | _MARKDOWN_SUFFIXES:
        raise TaskLoadError(f"unsupported task file type {suffix or '(none)'!r}: {resolved}")

    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise TaskLoadError(f"unable to read task file {resolved}: {exc}") from exc

    if suffix in _MARKDOWN_SUFFIXES:
        return parse_markdown_tasks(text)

    if suffix in _JSON_SUFFIXES:
        try:
            decoded: object = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TaskLoadError(f"invalid JSON in {resolved}: {exc}") from exc
    else:
        try:
            decoded = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise TaskLoadError(f"invalid YAML in {resolved}: {exc}") from exc

    return decoded


def parse_markdown_tasks(text: str) -> tuple[Task, ...]:
    """Split a Markdown document into tasks at ``##``/``###`` headings.

    Content before the first task heading is ignored. Fenced code blocks are
    kept verbatim in the details and never start a task.
    """

    tasks: list[Task] = []
    current_title: str | None = None
    body: list[str] = []
    fence: tuple[str, int] | None = None

    def flush() -> None:
        if current_title is not None:
            tasks.append(Task(title=current_title, details="\n".join(body).strip()))

    for line in text.splitlines():
        if fence is not None:
            body.append(line)
            close = _FENCE_CLOSE_RE.match(line)
            if close is not None:
                marker = close.group("marker")
                if marker[0] == fence[0] and len(marker) >= fence[1]:
                    fence = None
            continue

        start = _FENCE_START_RE.match(line)
        if start is not None:
            marker = start.group("marker")
            fence = (marker[0], len(marker))
            body.append(line)
            continue

        heading = _HEADING_RE.match(line)
        if heading is not None and len(heading.group("hashes")) in _TASK_HEADING_LEVELS:
            flush()
            current_title = heading.group("text")
            body = []
            continue

        body.append(line)

    flush()
    return tuple(tasks)


__all__ = [
    "Task",
    "TaskLoadError",
    "load_task_document",
    "load_tasks",
    "parse_markdown_tasks",
    "parse_tasks",
]
