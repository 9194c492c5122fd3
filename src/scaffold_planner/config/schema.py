"""
scaffold-planner configuration schema and validation.

The schema is a table of sections, each a table of typed fields. Every merged
configuration is checked against it and problems come back as structured
issues (dotted field path + message) rather than the first exception hit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from scaffold_planner.constants import CONFIG_SCHEMA_VERSION, LOG_DIR

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)

_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials"}
)
_SECRET_COMPOUNDS: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
)
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")
_CAMEL_HUMP = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class MetaConfig(TypedDict):
    schema_version: int


class PlanningConfig(TypedDict):
    fallback_to_input_order: bool
    long_chain_threshold: int


class ResearchConfig(TypedDict):
    max_concurrency: int
    timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_file: bool
    log_to_stdout: bool
    redact_secrets: bool


class PlannerConfig(TypedDict):
    meta: MetaConfig
    planning: PlanningConfig
    research: ResearchConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PlannerConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "planning": {
        "fallback_to_input_order": True,
        "long_chain_threshold": 5,
    },
    "research": {
        "max_concurrency": 4,
        "timeout_seconds": 120.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": f"{LOG_DIR}/",
        "log_to_file": False,
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class _Field:
    kind: Literal["bool", "int", "float", "path", "level"]
    minimum: int | None = None
    exclusive: bool = False


_SCHEMA: Final[Mapping[str, Mapping[str, _Field]]] = {
    "meta": {
        "schema_version": _Field("int", minimum=1),
    },
    "planning": {
        "fallback_to_input_order": _Field("bool"),
        "long_chain_threshold": _Field("int", minimum=1),
    },
    "research": {
        "max_concurrency": _Field("int", minimum=1),
        "timeout_seconds": _Field("float", minimum=0, exclusive=True),
    },
    "observability": {
        "log_level": _Field("level"),
        "log_dir": _Field("path"),
        "log_to_file": _Field("bool"),
        "log_to_stdout": _Field("bool"),
        "redact_secrets": _Field("bool"),
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with the normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


def default_config() -> PlannerConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Explain how to resolve a schema version mismatch."""

    if found_version == ConfigSchemaVersion:
        return "schema version is current"
    if found_version < ConfigSchemaVersion:
        action = "upgrade scaffold.toml to the current schema"
        relation = "older"
    else:
        action = "upgrade scaffold-planner"
        relation = "newer"
    return (
        f"schema version {found_version} is {relation} than supported "
        f"{ConfigSchemaVersion}; {action}"
    )


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base`` without mutating either."""

    merged: dict[str, Any] = {key: copy.deepcopy(value) for key, value in base.items()}
    for key in sorted(overlay):
        incoming = overlay[key]
        current = merged.get(key)
        if isinstance(incoming, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, incoming)
        else:
            merged[key] = copy.deepcopy(incoming)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check a complete config against the schema table."""

    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = _foreign_keys(config, _SCHEMA, prefix="")
    normalized: dict[str, Any] = {}

    for section_name in sorted(_SCHEMA):
        fields = _SCHEMA[section_name]
        raw_section = config.get(section_name)
        if raw_section is None:
            issues.append(ConfigValidationIssue(section_name, "missing required section"))
            continue
        if not isinstance(raw_section, Mapping):
            issues.append(
                ConfigValidationIssue(
                    section_name, f"expected object, got {type(raw_section).__name__}"
                )
            )
            continue

        issues.extend(_foreign_keys(raw_section, fields, prefix=section_name))
        section: dict[str, Any] = {}
        for field_name in sorted(fields):
            path = f"{section_name}.{field_name}"
            if field_name not in raw_section:
                issues.append(ConfigValidationIssue(path, "missing required field"))
                continue
            value, problem = _coerce(fields[field_name], raw_section[field_name])
            if problem is not None:
                issues.append(ConfigValidationIssue(path, problem))
            else:
                section[field_name] = value
        normalized[section_name] = section

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != ConfigSchemaVersion:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _coerce(rule: _Field, value: object) -> tuple[object, str | None]:
    """Return ``(normalized value, None)`` or ``(None, problem)``."""

    found = type(value).__name__
    if rule.kind == "bool":
        if isinstance(value, bool):
            return value, None
        return None, f"expected boolean, got {found}"

    if rule.kind in ("int", "float"):
        accepted: tuple[type, ...] = (int,) if rule.kind == "int" else (int, float)
        if isinstance(value, bool) or not isinstance(value, accepted):
            expected = "integer" if rule.kind == "int" else "number"
            return None, f"expected {expected}, got {found}"
        number = value if rule.kind == "int" else float(value)
        if not math.isfinite(number):
            return None, "must be finite"
        if rule.minimum is not None:
            if rule.exclusive and number <= rule.minimum:
                return None, f"must be > {rule.minimum}"
            if not rule.exclusive and number < rule.minimum:
                return None, f"must be >= {rule.minimum}"
        return number, None

    if not isinstance(value, str):
        return None, f"expected string, got {found}"
    text = value.strip()
    if not text:
        return None, "must not be empty"
    if rule.kind == "level":
        level = text.upper()
        if level not in LOG_LEVELS:
            return None, f"invalid value {text!r}; expected one of: {', '.join(LOG_LEVELS)}"
        return level, None
    if "\x00" in text:
        return None, "must not contain NUL bytes"
    return text, None


def _foreign_keys(
    payload: Mapping[str, object], known: Mapping[str, object], *, prefix: str
) -> list[ConfigValidationIssue]:
    issues: list[ConfigValidationIssue] = []
    for key in sorted(str(item) for item in payload if item not in known):
        path = f"{prefix}.{key}" if prefix else key
        if _is_secret_key(key):
            message = (
                "embedded secret values are forbidden; pass credentials through the environment"
            )
        else:
            message = "unknown field"
        issues.append(ConfigValidationIssue(path, message))
    return issues


def _is_secret_key(key: str) -> bool:
    snake = _WORD_SPLIT.sub("_", _CAMEL_HUMP.sub("_", key.strip()).lower()).strip("_")
    if any(compound in snake for compound in _SECRET_COMPOUNDS):
        return True
    return not _SECRET_WORDS.isdisjoint(snake.split("_"))


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "PlannerConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
