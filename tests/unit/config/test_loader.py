"""
scaffold-planner unit tests for the config loader.

Covers precedence (CLI > env > file > defaults), environment coercion, path
normalization relative to the config file, and deterministic dumps.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scaffold_planner.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from scaffold_planner.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.unit
def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "scaffold.toml", "[research]\nmax_concurrency = 2\n")
    empty_path = _write_config(tmp_path / "empty.toml", "")
    env = {"SCAFFOLD_RESEARCH_MAX_CONCURRENCY": "6"}

    default_loaded = load_config(empty_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ=env)
    cli_loaded = load_config(
        config_path, environ=env, cli_overrides={"research.max_concurrency": 7}
    )

    assert default_loaded["research"]["max_concurrency"] == 4
    assert file_loaded["research"]["max_concurrency"] == 2
    assert env_loaded["research"]["max_concurrency"] == 6
    assert cli_loaded["research"]["max_concurrency"] == 7


@pytest.mark.unit
def test_env_values_are_coerced_by_field_type(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "scaffold.toml", "")

    loaded = load_config(
        config_path,
        environ={
            "SCAFFOLD_PLANNING_FALLBACK_TO_INPUT_ORDER": "off",
            "SCAFFOLD_RESEARCH_TIMEOUT_SECONDS": "2.5",
            "SCAFFOLD_OBSERVABILITY_LOG_LEVEL": "debug",
            "UNRELATED": "1",
        },
    )

    assert loaded["planning"]["fallback_to_input_order"] is False
    assert loaded["research"]["timeout_seconds"] == 2.5
    assert loaded["observability"]["log_level"] == "DEBUG"
    assert env_name_for_path(("research", "max_concurrency")) == (
        "SCAFFOLD_RESEARCH_MAX_CONCURRENCY"
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("env_name", "raw", "message"),
    [
        ("SCAFFOLD_RESEARCH_MAX_CONCURRENCY", "many", "must be an integer"),
        ("SCAFFOLD_RESEARCH_TIMEOUT_SECONDS", "soon", "must be a number"),
        ("SCAFFOLD_OBSERVABILITY_LOG_TO_FILE", "maybe", "must be a boolean"),
    ],
)
def test_bad_env_values_fail_fast(tmp_path: Path, env_name: str, raw: str, message: str) -> None:
    config_path = _write_config(tmp_path / "scaffold.toml", "")

    with pytest.raises(ConfigLoadError, match=f"{env_name} {message}"):
        load_config(config_path, environ={env_name: raw})


@pytest.mark.unit
def test_load_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml", environ={})
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(_write_config(tmp_path / "broken.toml", "[research"), environ={})
    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(
            _write_config(tmp_path / "ok.toml", ""), environ={}, cli_overrides={"..": 1}
        )


@pytest.mark.unit
def test_invalid_layers_report_field_paths(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "scaffold.toml", "[research]\nworkers = 3\n")

    with pytest.raises(ConfigValidationError, match="research.workers: unknown field"):
        load_config(config_path, environ={})

    clean_path = _write_config(tmp_path / "clean.toml", "")
    with pytest.raises(ConfigValidationError, match="research.max_concurrency: must be >= 1"):
        load_config(clean_path, environ={}, cli_overrides={"research.max_concurrency": 0})


@pytest.mark.unit
def test_missing_default_file_uses_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["planning"]["long_chain_threshold"] == 5
    assert loaded["observability"]["log_dir"] == (tmp_path.resolve() / "logs").as_posix()


@pytest.mark.unit
def test_log_dir_is_resolved_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "conf" / "scaffold.toml",
        '[observability]\nlog_dir = "../runtime/logs"\n',
    )
    absolute = (tmp_path / "elsewhere").as_posix()

    relative_loaded = load_config(config_path, environ={})
    absolute_loaded = load_config(
        config_path, environ={}, cli_overrides={"observability.log_dir": absolute}
    )

    expected = (tmp_path.resolve() / "runtime" / "logs").as_posix()
    assert relative_loaded["observability"]["log_dir"] == expected
    assert absolute_loaded["observability"]["log_dir"] == absolute


@pytest.mark.unit
def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "scaffold.toml", "[planning]\nlong_chain_threshold = 3\n"
    )

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    payload = json.loads(first)
    assert list(payload) == sorted(payload)
    assert payload["planning"]["long_chain_threshold"] == 3
