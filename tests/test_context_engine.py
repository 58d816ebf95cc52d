"""Tests for context fusion, pattern matching and quiet hours."""

from __future__ import annotations

from datetime import datetime

import pytest
from conftest import FakeClock

from ambient_assistant.context import ContextEngine, infer_user_intent
from ambient_assistant.errors import ConfigurationError
from ambient_assistant.models import AudioSession, ContextPattern, ScreenSnapshot
from ambient_assistant.utils import content_hash

# Naive datetimes are read as local time, which is what quiet hours use.
NOON = datetime(2024, 5, 6, 12, 0)
LATE = datetime(2024, 5, 6, 23, 30)


def screen(app: str = "Outlook", title: str = "Inbox", text: str = "Quarterly report attached") -> ScreenSnapshot:
    return ScreenSnapshot(
        app_name=app,
        window_title=title,
        extracted_text=text,
        content_hash=content_hash(text),
        captured_at=NOON,
    )


def speech(text: str) -> AudioSession:
    return AudioSession(transcript=text, source_name="microphone", start_time=NOON, end_time=NOON, is_final=True)


def pattern(name: str, **kwargs) -> ContextPattern:
    kwargs.setdefault("trigger_actions", [f"run {name}"])
    return ContextPattern(pattern_name=name, **kwargs)


def test_update_merges_last_writer_wins() -> None:
    engine = ContextEngine(clock=FakeClock(NOON))

    first = engine.update(screen_snapshot=screen())
    second = engine.update(audio_session=speech("let's set up a meeting"))

    assert first.audio_session is None
    assert second.screen_snapshot is first.screen_snapshot
    assert second.app_name == "Outlook"
    assert second.audio_transcript == "let's set up a meeting"
    assert second.user_intent == "communication"

    third = engine.update(screen_snapshot=screen(app="Code", title="main.py", text="def main"))
    assert third.app_name == "Code"
    assert third.audio_session is second.audio_session
    assert engine.recent_snapshots(2) == [third, second]


def test_every_matching_pattern_fires_once() -> None:
    """N matching active patterns yield exactly N triggers."""

    engine = ContextEngine(
        [
            pattern("any-report", screen_keywords=["report"]),
            pattern("outlook", app_name="outlook"),
            pattern("inbox-window", window_pattern="inb"),
            pattern("disabled", is_active=False),
            pattern("slack", app_name="Slack"),
        ],
        clock=FakeClock(NOON),
    )
    snapshot = engine.update(screen_snapshot=screen())

    triggers = engine.evaluate(snapshot)

    assert sorted(t.pattern_name for t in triggers) == ["any-report", "inbox-window", "outlook"]
    assert len({t.trigger_id for t in triggers}) == 3
    assert all(t.snapshot is snapshot for t in triggers)


def test_keyword_lists_match_either_channel() -> None:
    engine = ContextEngine(
        [pattern("deadline", audio_keywords=["deadline"], screen_keywords=["due date"])],
        clock=FakeClock(NOON),
    )

    by_audio = engine.update(audio_session=speech("The DEADLINE is friday"), app_name="Zoom")
    assert [t.pattern_name for t in engine.evaluate(by_audio)] == ["deadline"]

    engine2 = ContextEngine([pattern("deadline", audio_keywords=["deadline"])], clock=FakeClock(NOON))
    screen_only = engine2.update(screen_snapshot=screen(text="the deadline is friday"))
    assert engine2.evaluate(screen_only) == []


def test_window_pattern_accepts_regex_and_bad_regex_as_text() -> None:
    engine = ContextEngine(
        [
            pattern("ticket", window_pattern=r"PROJ-\d+"),
            pattern("literal", window_pattern="[draft"),
        ],
        clock=FakeClock(NOON),
    )

    matched = engine.evaluate(engine.update(screen_snapshot=screen(title="PROJ-42 [draft] - Jira")))

    assert sorted(t.pattern_name for t in matched) == ["literal", "ticket"]


def test_quiet_hours_suppress_triggers_but_record_snapshots() -> None:
    clock = FakeClock(LATE)
    engine = ContextEngine([pattern("always")], quiet_hours=(22, 7), clock=clock)

    triggers = engine.process(screen_snapshot=screen())

    assert triggers == []
    assert engine.suppressed_triggers == 1
    assert len(engine.recent_snapshots()) == 1

    clock.now = NOON
    assert [t.pattern_name for t in engine.process(screen_snapshot=screen())] == ["always"]


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(21, False), (22, True), (23, True), (0, True), (6, True), (7, False), (12, False)],
)
def test_quiet_hours_wrap_past_midnight(hour: int, expected: bool) -> None:
    engine = ContextEngine(quiet_hours=(22, 7))

    assert engine.in_quiet_hours(datetime(2024, 5, 6, hour, 15)) is expected


def test_quiet_hours_with_equal_bounds_are_disabled() -> None:
    engine = ContextEngine(quiet_hours=(9, 9))

    assert engine.in_quiet_hours(datetime(2024, 5, 6, 9, 0)) is False


def test_pattern_round_trip_and_replacement() -> None:
    engine = ContextEngine()
    original = pattern("standup", app_name="Zoom", audio_keywords=["standup"])

    engine.add_pattern(original)
    assert engine.list_patterns() == [original]

    replacement = pattern("standup", app_name="Teams")
    engine.add_pattern(replacement)
    assert engine.list_patterns() == [replacement]

    assert engine.remove_pattern("standup") is True
    assert engine.list_patterns() == []


@pytest.mark.parametrize(
    "bad",
    [
        ContextPattern(pattern_name=""),
        ContextPattern(pattern_name="x", trigger_actions=[]),
        ContextPattern(pattern_name="x", trigger_actions=["open chrome"], audio_keywords="meeting"),  # type: ignore[arg-type]
    ],
)
def test_malformed_patterns_are_rejected(bad: ContextPattern) -> None:
    with pytest.raises(ConfigurationError):
        ContextEngine().add_pattern(bad)


@pytest.mark.parametrize("hours", [(24, 1), (-1, 5), (1.5, 3)])
def test_invalid_quiet_hours_are_rejected(hours) -> None:
    with pytest.raises(ConfigurationError):
        ContextEngine().set_quiet_hours(*hours)


def test_listeners_receive_triggers_and_failures_are_contained() -> None:
    engine = ContextEngine([pattern("one"), pattern("two")], clock=FakeClock(NOON))
    received = []

    def broken(trigger) -> None:
        raise RuntimeError("listener bug")

    engine.subscribe(broken)
    engine.subscribe(received.append)
    engine.process(screen_snapshot=screen())

    assert [t.pattern_name for t in received] == ["one", "two"]


def test_recorder_receives_every_snapshot() -> None:
    recorded = []
    engine = ContextEngine(recorder=recorded.append, clock=FakeClock(NOON))

    engine.update(screen_snapshot=screen())
    engine.update(audio_session=speech("hi"))

    assert len(recorded) == 2


@pytest.mark.parametrize(
    ("text", "intent"),
    [
        ("Compose new mail", "email_composition"),
        ("Traceback in programming task", "coding"),
        ("search results for flights", "information_search"),
        ("Join the meeting", "communication"),
        ("", None),
        ("lunch menu", None),
    ],
)
def test_infer_user_intent(text: str, intent) -> None:
    assert infer_user_intent(text) == intent
