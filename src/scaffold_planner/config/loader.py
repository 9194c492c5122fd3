"""
Runtime config loader for scaffold-planner.

Effective config is assembled from four layers with the precedence
CLI > environment (``SCAFFOLD_`` prefix) > ``scaffold.toml`` > built-in defaults,
and is validated after every merge so a bad layer is reported against the
field that broke it.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Final

from scaffold_planner.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "scaffold.toml"
ENV_PREFIX: Final[str] = "SCAFFOLD_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

FieldPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    ``config_path`` defaults to ``scaffold.toml`` in the working directory; a
    missing default file is fine, a missing explicit file is an error.
    ``cli_overrides`` keys are dotted paths such as ``"research.max_concurrency"``.
    """

    if config_path is None:
        source = Path.cwd().resolve() / DEFAULT_CONFIG_FILE
    else:
        source = Path(config_path).expanduser().resolve()

    from_file = _read_toml(source, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), from_file))

    env_layer = _env_layer(config, os.environ if environ is None else environ)
    cli_layer = _nest(_cli_items(cli_overrides or {}))
    config = assert_valid_config(merge_config(merge_config(config, env_layer), cli_layer))

    return normalize_paths(config, base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``."""

    resolved = merge_config({}, config)
    for section_name, field_name in PATH_FIELDS:
        section = resolved.get(section_name)
        if isinstance(section, dict) and isinstance(section.get(field_name), str):
            section[field_name] = _absolute_posix(section[field_name], base_dir)
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON rendering of an effective config."""

    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def env_name_for_path(path: FieldPath) -> str:
    """``("research", "max_concurrency")`` -> ``SCAFFOLD_RESEARCH_MAX_CONCURRENCY``."""

    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    """Only fields that already exist can be overridden; their type drives coercion."""

    items: list[tuple[FieldPath, object]] = []
    for path, current in _leaves(config):
        name = env_name_for_path(path)
        if name in environ:
            items.append((path, _coerce_env(name, environ[name], current)))
    return _nest(items)


def _leaves(node: Mapping[str, object], prefix: FieldPath = ()) -> list[tuple[FieldPath, object]]:
    found: list[tuple[FieldPath, object]] = []
    for key in sorted(node):
        child = node[key]
        if isinstance(child, Mapping):
            found.extend(_leaves(child, (*prefix, key)))
        else:
            found.append(((*prefix, key), child))
    return found


def _coerce_env(name: str, raw: str, current: object) -> object:
    text = raw.strip()
    if isinstance(current, bool):
        if text.lower() in _TRUTHY:
            return True
        if text.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    for kind, convert, label in ((int, int, "an integer"), (float, float, "a number")):
        if isinstance(current, kind):
            try:
                return convert(text)
            except ValueError as exc:
                raise ConfigLoadError(f"{name} must be {label}") from exc
    return text


def _cli_items(cli_overrides: Mapping[str, object]) -> list[tuple[FieldPath, object]]:
    items: list[tuple[FieldPath, object]] = []
    for dotted in sorted(cli_overrides):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        items.append((path, cli_overrides[dotted]))
    return items


def _nest(items: Iterable[tuple[FieldPath, object]]) -> dict[str, Any]:
    """``[(("a", "b"), 1)]`` -> ``{"a": {"b": 1}}``."""

    root: dict[str, Any] = {}
    for path, value in items:
        node = root
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[path[-1]] = value
    return root


def _absolute_posix(raw: str, base_dir: Path) -> str:
    expanded = Path(os.path.expandvars(raw)).expanduser()
    joined = expanded if expanded.is_absolute() else base_dir / expanded
    return Path(os.path.normpath(joined)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
