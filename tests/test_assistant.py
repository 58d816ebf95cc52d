"""End-to-end tests for the assistant facade with fake perception backends."""

from __future__ import annotations

import threading
import time

from conftest import FakeClarifier, FakeClock, FakeExtractor, FakeTranscriber, FakeWindowSource, RecordingOpener, loud

from ambient_assistant import AmbientAssistant, AssistantConfig
from ambient_assistant.audio_capture import AudioChunk
from ambient_assistant.models import AppFilter, AudioFilter, ContextPattern


class QueueSource:
    """Audio source that hands out queued chunks, then reports silence."""

    def __init__(self, chunks=()) -> None:
        self.chunks = list(chunks)
        self.closed = False

    def open(self) -> None:
        pass

    def read(self, timeout: float):
        if self.chunks:
            return self.chunks.pop(0)
        time.sleep(timeout)
        return None

    def close(self) -> None:
        self.closed = True


def frame(rect):
    return object()


def build(config: AssistantConfig, opener: RecordingOpener, **kwargs) -> AmbientAssistant:
    kwargs.setdefault("window_source", FakeWindowSource("Outlook", "Inbox"))
    kwargs.setdefault("extractor", FakeExtractor("Quarterly report attached"))
    kwargs.setdefault("frame_source", frame)
    return AmbientAssistant(config, url_opener=opener, platform="linux", **kwargs)


def test_ultra_lightweight_mode_keeps_commands_only(config: AssistantConfig, opener: RecordingOpener) -> None:
    config.ultra_lightweight = True

    with AmbientAssistant(config, url_opener=opener, platform="linux") as assistant:
        assert assistant.screen is None and assistant.audio is None
        assert assistant.start_screen_perception() is False
        assert assistant.start_audio_perception() is False

        response = assistant.execute_command("search for react tutorial")

        assert response.success is True
        assert opener.urls == ["https://www.google.com/search?q=react+tutorial"]
        assert assistant.status()["ultra_lightweight"] is True


def test_screen_pattern_runs_its_actions(config: AssistantConfig, opener: RecordingOpener) -> None:
    """A screen snapshot matching a pattern is routed on the trigger worker."""

    assistant = build(config, opener)
    assistant.add_context_pattern(
        ContextPattern("reports", app_name="outlook", screen_keywords=["report"], trigger_actions=["search for quarterly report"])
    )
    fired = threading.Event()
    seen = []

    def on_trigger(trigger, responses) -> None:
        seen.append((trigger, responses))
        fired.set()

    assistant.on_trigger(on_trigger)
    try:
        assistant.start_context_manager()
        assert fired.wait(5)
    finally:
        assistant.close()

    trigger, responses = seen[0]
    assert trigger.pattern_name == "reports"
    assert [r.success for r in responses] == [True]
    assert opener.urls == ["https://www.google.com/search?q=quarterly+report"]
    assert assistant.context_running is False


def test_snapshots_are_fused_only_while_context_manager_runs(config: AssistantConfig, opener: RecordingOpener) -> None:
    with build(config, opener) as assistant:
        snapshot = assistant.screen.sample()

        assert snapshot is not None
        assert assistant.get_screen_snapshots() == [snapshot]
        assert assistant.get_context_snapshots() == []
        assert assistant.context.current is None


def test_blacklisted_app_is_never_captured(config: AssistantConfig, opener: RecordingOpener) -> None:
    extractor = FakeExtractor("Bank balance")
    with build(config, opener, window_source=FakeWindowSource("Chrome", "Bank"), extractor=extractor) as assistant:
        assistant.add_screen_filter(AppFilter("chrome", is_blacklisted=True))

        assert assistant.screen.sample() is None
        assert extractor.calls == 0
        assert assistant.get_screen_snapshots() == []


def test_audio_session_triggers_pattern(opener: RecordingOpener) -> None:
    clock = FakeClock()
    config = AssistantConfig(db_path=":memory:", min_utterance_ms=0, audio_silence_timeout_ms=1_000)
    source = QueueSource([AudioChunk(loud()), AudioChunk(loud())])
    window = FakeWindowSource()
    window.info = None
    assistant = build(
        config,
        opener,
        window_source=window,
        transcriber=FakeTranscriber("hello"),
        audio_source=source,
        clock=clock,
    )
    assistant.add_context_pattern(ContextPattern("greeting", audio_keywords=["hello"], trigger_actions=["help"]))
    fired = threading.Event()
    assistant.on_trigger(lambda trigger, responses: fired.set())

    try:
        assistant.start_context_manager()
        for _ in range(500):
            if assistant.audio.status()["current_transcript"] == "hello hello":
                break
            time.sleep(0.01)
        clock.advance(seconds=2)
        assert fired.wait(5)
    finally:
        assistant.close()

    (session,) = assistant.get_audio_sessions()
    assert session.transcript == "hello hello"
    assert source.closed


def test_rules_and_history_survive_restart(tmp_path, opener: RecordingOpener) -> None:
    config = AssistantConfig(db_path=str(tmp_path / "assistant.sqlite"), ultra_lightweight=True)
    with AmbientAssistant(config, url_opener=opener, platform="linux") as first:
        first.add_screen_filter(AppFilter("Slack", is_blacklisted=True))
        first.add_audio_filter(AudioFilter("system", is_blacklisted=True))
        first.add_context_pattern(ContextPattern("standup", app_name="Zoom", trigger_actions=["open notion"]))
        first.execute_command("search for cats")

    with AmbientAssistant(config, url_opener=opener, platform="linux") as second:
        assert second.filters.allows_app("Slack") is False
        assert second.filters.allows_audio_source("system") is False
        assert [p.pattern_name for p in second.list_context_patterns()] == ["standup"]
        assert [e.command for e in second.get_command_history()] == ["search for cats"]
        assert second.get_command_suggestions("sea")[0] == "search for cats"

        assert second.remove_context_pattern("standup") is True
        assert second.remove_screen_filter("slack") is True

    with AmbientAssistant(config, url_opener=opener, platform="linux") as third:
        assert third.list_context_patterns() == []
        assert third.filters.allows_app("Slack") is True


def test_clarified_command_through_facade(config: AssistantConfig, opener: RecordingOpener) -> None:
    config.ultra_lightweight = True
    with AmbientAssistant(
        config, url_opener=opener, platform="linux", clarifier=FakeClarifier(["search for flights"])
    ) as assistant:
        response = assistant.execute_command("sort out my holiday")

        assert response.needs_confirmation is True
        assert opener.urls == []

        result = assistant.confirm_and_execute(response.clarification.request_id, "yes")

        assert result.executed is True
        assert opener.urls == ["https://www.google.com/search?q=flights"]


def test_settings_and_quiet_hours(config: AssistantConfig, opener: RecordingOpener) -> None:
    config.ultra_lightweight = True
    with AmbientAssistant(config, url_opener=opener, platform="linux") as assistant:
        assistant.set_quiet_hours(22, 7)

        response = assistant.execute_command("show settings")

        assert response.success is True
        assert response.result.data["quiet_hours_start"] == 22
        assert assistant.context.quiet_hours == (22, 7)

        assistant.clear_quiet_hours()
        assert assistant.config.quiet_hours is None
