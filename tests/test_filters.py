"""Unit tests for app and audio filter rules."""

from __future__ import annotations

import pytest

from ambient_assistant.errors import ConfigurationError
from ambient_assistant.filters import FilterStore, app_key
from ambient_assistant.models import AppFilter, AudioFilter


def test_blacklist_wins_over_whitelist() -> None:
    """An app flagged both ways is treated as blacklisted."""

    store = FilterStore([AppFilter("Chrome", is_whitelisted=True, is_blacklisted=True)])

    assert store.allows_app("Chrome") is False
    assert store.allows_app("Slack") is True


def test_active_whitelist_excludes_other_apps() -> None:
    store = FilterStore([AppFilter("Code", is_whitelisted=True)])

    assert store.allows_app("code.exe") is True
    assert store.allows_app("Chrome") is False


def test_whitelisted_window_patterns_require_title_match() -> None:
    store = FilterStore([AppFilter("Chrome", is_whitelisted=True, window_patterns=["Jira"])])

    assert store.allows_app("Chrome", "PROJ-12 - Jira") is True
    assert store.allows_app("Chrome", "YouTube") is False


def test_app_names_match_case_insensitively_and_replace() -> None:
    store = FilterStore()
    store.add_app_filter(AppFilter("chrome", is_blacklisted=True))
    store.add_app_filter(AppFilter("Chrome.app", is_blacklisted=False))

    assert len(store.list_app_filters()) == 1
    assert store.allows_app("CHROME") is True
    assert app_key("Chrome.exe") == "chrome"


def test_remove_app_filter() -> None:
    store = FilterStore([AppFilter("Chrome", is_blacklisted=True)])

    assert store.remove_app_filter("chrome") is True
    assert store.remove_app_filter("chrome") is False
    assert store.allows_app("Chrome") is True


def test_audio_source_rules_and_thresholds() -> None:
    store = FilterStore(
        audio_filters=[
            AudioFilter("microphone", is_whitelisted=True, volume_threshold=0.3, keywords=["assistant"]),
            AudioFilter("system", is_blacklisted=True),
        ]
    )

    assert store.allows_audio_source("Microphone") is True
    assert store.allows_audio_source("system") is False
    assert store.allows_audio_source("line-in") is False
    assert store.volume_threshold_for("microphone", 0.1) == pytest.approx(0.3)
    assert store.volume_threshold_for("line-in", 0.1) == pytest.approx(0.1)
    assert store.transcript_passes("microphone", "Hey Assistant, open chrome") is True
    assert store.transcript_passes("microphone", "just chatting") is False
    assert store.transcript_passes("line-in", "anything") is True


@pytest.mark.parametrize(
    "bad_filter",
    [
        AppFilter(""),
        AppFilter("Chrome", window_patterns="Jira"),  # type: ignore[arg-type]
        AppFilter("Chrome", window_patterns=[1]),  # type: ignore[list-item]
    ],
)
def test_invalid_app_filters_are_rejected(bad_filter: AppFilter) -> None:
    with pytest.raises(ConfigurationError):
        FilterStore().add_app_filter(bad_filter)


@pytest.mark.parametrize("threshold", [-0.1, 1.5, True])
def test_invalid_volume_threshold_is_rejected(threshold) -> None:
    with pytest.raises(ConfigurationError):
        FilterStore().add_audio_filter(AudioFilter("microphone", volume_threshold=threshold))
