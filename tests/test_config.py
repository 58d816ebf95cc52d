"""Tests for configuration loading and validation."""

from __future__ import annotations

import json

import pytest

from ambient_assistant.config import AssistantConfig
from ambient_assistant.errors import ConfigurationError


def test_defaults() -> None:
    config = AssistantConfig()

    assert config.screen_sample_interval_ms == 60_000
    assert config.audio_silence_timeout_ms == 2_000
    assert config.quiet_hours is None
    assert config.ultra_lightweight is False


def test_mapping_accepts_camel_case_keys() -> None:
    config = AssistantConfig.from_mapping(
        {"screenSampleIntervalMs": "5000", "quietHoursStart": 22, "quietHoursEnd": 7, "ultraLightweight": True}
    )

    assert config.screen_sample_interval_ms == 5000
    assert config.quiet_hours == (22, 7)
    assert config.ultra_lightweight is True


@pytest.mark.parametrize(
    "payload",
    [
        {"telemetry": True},
        {"volume_threshold": 1.5},
        {"quiet_hours_start": 22},
        {"quiet_hours_start": 25, "quiet_hours_end": 2},
        {"screen_sample_interval_ms": 0},
        {"history_limit": "many"},
    ],
)
def test_invalid_configuration_is_rejected(payload: dict) -> None:
    with pytest.raises(ConfigurationError):
        AssistantConfig.from_mapping(payload)


def test_environment_overrides() -> None:
    config = AssistantConfig.from_env(
        {
            "AMBIENT_ASSISTANT_ULTRA_LIGHTWEIGHT": "yes",
            "AMBIENT_ASSISTANT_VOLUME_THRESHOLD": "0.25",
            "AMBIENT_ASSISTANT_DB_PATH": "/tmp/assistant.sqlite",
            "AMBIENT_ASSISTANT_HISTORY_LIMIT": "",
        }
    )

    assert config.ultra_lightweight is True
    assert config.volume_threshold == pytest.approx(0.25)
    assert config.db_path == "/tmp/assistant.sqlite"
    assert config.history_limit == 100


def test_environment_defaults_to_home_database() -> None:
    config = AssistantConfig.from_env({})

    assert config.db_path.endswith("assistant.sqlite")
    assert config.db_path != ":memory:"


def test_from_file(tmp_path) -> None:
    path = tmp_path / "assistant.json"
    path.write_text(json.dumps({"minUtteranceMs": 250, "dbPath": ":memory:"}), encoding="utf-8")

    config = AssistantConfig.from_file(path)

    assert config.min_utterance_ms == 250


@pytest.mark.parametrize("content", ["not json", "[1, 2]"])
def test_unreadable_file_is_a_configuration_error(tmp_path, content: str) -> None:
    path = tmp_path / "assistant.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        AssistantConfig.from_file(path)


def test_missing_file_is_a_configuration_error(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        AssistantConfig.from_file(tmp_path / "missing.json")
