"""
Structured logging for planning sessions.

Records are handed to a bounded queue on the emitting thread and written as one
JSON object per line by a ``QueueListener`` thread, so planning and research
code never block on file IO. Each line carries the correlation fields bound by
:func:`correlation_scope` (``session_id``, ``task_id``, ``phase``) at the
moment the record was created.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from scaffold_planner.constants import LOG_DIR

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("session_id", "task_id", "phase")

_SECRET_KEY_MARKERS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
)
_INLINE_SECRET = re.compile(
    r"(?i)\b(?P<name>api[_-]?key|token|password|secret|authorization)\b"
    r"\s*(?P<sep>[:=])\s*[^\s,;]+"
)
_BEARER = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "scaffold_planner_correlation", default=()
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging."""

    session_id: str
    base_log_dir: Path | str = Path(LOG_DIR)
    logger_name: str = "scaffold_planner"
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "planner.jsonl"
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None


# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    """Return the current correlation context as a plain dictionary."""
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for log records emitted in scope.

    A ``None`` value unbinds the field until the scope exits.
    """

    bound = get_correlation_context()
    for name, value in fields.items():
        if value is None:
            bound.pop(name, None)
        else:
            bound[name] = _non_empty(value, f"correlation field {name!r}")
    token = _correlation.set(tuple(bound.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and inline credentials in text."""

    if isinstance(value, dict):
        return {
            key: REDACTED if _is_secret_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, str):
        masked = _INLINE_SECRET.sub(rf"\g<name>\g<sep>{REDACTED}", value)
        return _BEARER.sub(f"Bearer {REDACTED}", masked)
    return value


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


def _keep_everything(value: JSONValue) -> JSONValue:
    return value


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Copies the caller's correlation context onto the record, drops when full."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Runs on the emitting thread, where the context variable is visible.
        # Unlike the stdlib version, ``exc_info`` survives for the JSON formatter.
        prepared = copy.copy(record)
        prepared.msg = record.getMessage()
        prepared.args = None
        context = get_correlation_context()
        if context:
            prepared.correlation = context
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": str(self._redact(record.getMessage())),
        }
        event.update(self._correlation_fields(record))

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._redact(extras)
        if record.exc_info is not None:
            event["exception"] = str(self._redact(self.formatException(record.exc_info)))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _correlation_fields(self, record: logging.LogRecord) -> dict[str, str]:
        fields = {"session_id": self._session_id}
        bound = getattr(record, "correlation", None)
        if isinstance(bound, Mapping):
            fields.update(bound)
        # ``extra={"task_id": ...}`` on the call wins over the bound scope.
        for key in CORRELATION_KEYS:
            explicit = getattr(record, key, None)
            if isinstance(explicit, str) and explicit.strip():
                fields[key] = explicit.strip()
        return fields


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_to_json(item) for item in value), key=repr)
    return repr(value)


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class StructuredLoggingHandle:
    """A running logging session: its logger, file, queue and listener thread."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        log_path: Path,
        queue_handler: _CorrelatingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
        previous_propagate: bool,
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._previous_propagate = previous_propagate
        self._closed = threading.Event()
        self._close_lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed.is_set()

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait (bounded) for queued records to reach the sinks."""
        pending = self._queue_handler.queue
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._close_lock:
            if self._closed.is_set():
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self.logger.propagate = self._previous_propagate
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed.set()


class _ActiveSession:
    """Process-wide slot for the session ``shutdown_logging()`` closes by default."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: StructuredLoggingHandle | None = None
        self._atexit_hooked = False

    def get(self) -> StructuredLoggingHandle | None:
        with self._lock:
            return self._handle

    def replace(self, handle: StructuredLoggingHandle | None) -> StructuredLoggingHandle | None:
        with self._lock:
            previous, self._handle = self._handle, handle
            if handle is not None and not self._atexit_hooked:
                atexit.register(shutdown_logging)
                self._atexit_hooked = True
            return previous

    def release(self, handle: StructuredLoggingHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None


_active = _ActiveSession()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Write JSON lines to ``<base_log_dir>/<session_id>/<log_filename>``.

    Any previously active session is shut down first.
    """

    previous = _active.replace(None)
    if previous is not None:
        previous.shutdown()

    session_id = _non_empty(config.session_id, "session_id")
    filename = _non_empty(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)
    logger = logging.getLogger(_non_empty(config.logger_name, "logger_name"))

    log_path = Path(config.base_log_dir) / session_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLineFormatter(session_id, config.redactor or default_log_redactor)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    previous_propagate = logger.propagate
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
        previous_propagate=previous_propagate,
    )
    _active.replace(handle)
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
) -> StructuredLoggingHandle:
    """Configure structured logging from an ``[observability]`` config section.

    ``log_dir`` overrides ``observability.log_dir``; ``redact_secrets = false``
    disables redaction entirely.
    """

    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    base_dir = log_dir if log_dir is not None else section.get("log_dir", LOG_DIR)

    return setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=Path(base_dir) if isinstance(base_dir, (Path, str)) else Path(LOG_DIR),
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redactor=None if section.get("redact_secrets", True) else _keep_everything,
        )
    )


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    return _active.get()


def flush_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Flush queued records to their sinks."""
    target = handle or _active.get()
    if target is not None:
        target.flush()


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Stop the listener and close all sinks."""
    target = handle or _active.get()
    if target is None:
        return
    target.shutdown()
    _active.release(target)


def _non_empty(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError(f"{name} must not be empty")
    return text


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(level.strip().upper())
    if resolved is None:
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


__all__ = [
    "CORRELATION_KEYS",
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
