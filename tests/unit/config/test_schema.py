"""
scaffold-planner unit tests for config schema validation.

Covers the built-in defaults, structured issues for unknown keys and bad
types, schema version guidance, and rejection of embedded secrets.
"""

from __future__ import annotations

import pytest

from scaffold_planner.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def _issue_map(config: object) -> dict[str, str]:
    result = validate_config(config)
    assert result.config is None
    return {issue.path: issue.message for issue in result.issues}


@pytest.mark.unit
def test_defaults_validate_and_are_copied() -> None:
    first = default_config()
    first["research"]["max_concurrency"] = 99

    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["research"]["max_concurrency"] == 4
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion


@pytest.mark.unit
def test_unknown_keys_and_bad_types_are_reported_by_path() -> None:
    config = merge_config(
        default_config(),
        {
            "extra": {},
            "planning": {"long_chain_threshold": 0, "fallback_to_input_order": "yes"},
            "research": {"timeout_seconds": -1, "workers": 2},
        },
    )

    issues = _issue_map(config)

    assert issues == {
        "extra": "unknown field",
        "planning.fallback_to_input_order": "expected boolean, got str",
        "planning.long_chain_threshold": "must be >= 1",
        "research.timeout_seconds": "must be > 0",
        "research.workers": "unknown field",
    }


@pytest.mark.unit
def test_missing_sections_and_fields() -> None:
    config = default_config()
    del config["research"]["timeout_seconds"]
    payload = dict(config)
    del payload["planning"]

    issues = _issue_map(payload)

    assert issues == {
        "planning": "missing required section",
        "research.timeout_seconds": "missing required field",
    }
    assert _issue_map(["not", "a", "mapping"]) == {"<root>": "expected object, got list"}


@pytest.mark.unit
def test_secret_looking_keys_are_rejected() -> None:
    config = merge_config(
        default_config(), {"research": {"apiKey": "sk-live", "client_secret": "x"}}
    )

    issues = _issue_map(config)

    assert set(issues) == {"research.apiKey", "research.client_secret"}
    assert all("embedded secret values are forbidden" in message for message in issues.values())


@pytest.mark.unit
def test_log_level_is_normalized_to_upper_case() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": " debug "}})

    validated = assert_valid_config(config)

    assert validated["observability"]["log_level"] == "DEBUG"

    bad = merge_config(default_config(), {"observability": {"log_level": "TRACE"}})
    assert "expected one of: DEBUG, INFO, WARNING, ERROR" in _issue_map(bad)[
        "observability.log_level"
    ]


@pytest.mark.unit
def test_schema_version_mismatch_carries_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert "upgrade scaffold-planner" in str(excinfo.value)
    assert excinfo.value.issues[0].path == "meta.schema_version"
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


@pytest.mark.unit
def test_merge_config_does_not_mutate_inputs() -> None:
    base = default_config()
    overlay = {"research": {"max_concurrency": 8}}

    merged = merge_config(base, overlay)

    assert merged["research"] == {"max_concurrency": 8, "timeout_seconds": 120.0}
    assert base["research"]["max_concurrency"] == 4
    assert overlay == {"research": {"max_concurrency": 8}}
