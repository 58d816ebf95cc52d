"""Tests for the Idle/Capturing audio segmenter."""

from __future__ import annotations

import time
from datetime import timedelta

import numpy as np
import pytest
from conftest import FakeClock, FakeTranscriber, loud, quiet

from ambient_assistant.audio_capture import AudioChunk, rms_level
from ambient_assistant.audio_sentinel import AudioSentinel, SentinelState
from ambient_assistant.errors import TranscriptionError
from ambient_assistant.filters import FilterStore
from ambient_assistant.models import AudioFilter


def build(text: str = "hello", **kwargs):
    clock = FakeClock()
    transcriber = FakeTranscriber(text)
    sentinel = AudioSentinel(transcriber, clock=clock, **kwargs)
    return sentinel, transcriber, clock


def test_rms_level_scales_integer_pcm() -> None:
    assert rms_level(np.zeros(10, dtype=np.int16)) == 0.0
    assert rms_level(np.full(10, 32767, dtype=np.int16)) == pytest.approx(1.0)
    assert rms_level(np.array([], dtype=np.float32)) == 0.0
    assert rms_level(loud(0.5)) == pytest.approx(0.5)


def test_session_seals_only_after_full_silence_timeout() -> None:
    """A session is emitted once silence reaches the configured timeout, not before."""

    sentinel, _, clock = build(silence_timeout_ms=2_000, min_utterance_ms=500)
    emitted = []
    sentinel.subscribe(emitted.append)

    start = clock.now
    for offset in (0.0, 0.3, 0.6):
        sentinel.feed(loud(), at=start + timedelta(seconds=offset))
    assert sentinel.state is SentinelState.CAPTURING

    assert sentinel.feed(quiet(), at=start + timedelta(seconds=1.0)) is None
    assert sentinel.tick(start + timedelta(seconds=2.59)) is None
    assert emitted == []

    session = sentinel.tick(start + timedelta(seconds=2.6))

    assert session is not None
    assert session.is_final is True
    assert session.transcript == "hello hello hello"
    assert session.end_time - (start + timedelta(seconds=0.6)) >= timedelta(seconds=2)
    assert emitted == [session]
    assert sentinel.state is SentinelState.IDLE


def test_voice_resets_the_silence_timer() -> None:
    sentinel, _, clock = build(silence_timeout_ms=1_000, min_utterance_ms=0)
    start = clock.now

    sentinel.feed(loud(), at=start)
    sentinel.feed(quiet(), at=start + timedelta(seconds=0.9))
    sentinel.feed(loud(), at=start + timedelta(seconds=0.95))

    assert sentinel.tick(start + timedelta(seconds=1.5)) is None
    assert sentinel.tick(start + timedelta(seconds=1.95)) is not None


def test_short_utterances_are_discarded_as_noise() -> None:
    sentinel, _, clock = build(silence_timeout_ms=1_000, min_utterance_ms=500)
    start = clock.now

    sentinel.feed(loud(), at=start)
    sentinel.feed(loud(), at=start + timedelta(seconds=0.2))

    assert sentinel.tick(start + timedelta(seconds=1.5)) is None
    assert sentinel.discarded_sessions == 1
    assert sentinel.state is SentinelState.IDLE


def test_sessions_without_transcript_are_not_emitted() -> None:
    sentinel, _, clock = build(text="", silence_timeout_ms=1_000, min_utterance_ms=0)
    start = clock.now

    sentinel.feed(loud(), at=start)
    sentinel.feed(loud(), at=start + timedelta(seconds=0.8))

    assert sentinel.tick(start + timedelta(seconds=2)) is None


def test_quiet_audio_never_opens_a_session() -> None:
    sentinel, _, clock = build(volume_threshold=0.1)

    sentinel.feed(loud(0.05), at=clock.now)

    assert sentinel.state is SentinelState.IDLE
    assert sentinel.current_session is None


def test_transcription_error_seals_with_partial_transcript() -> None:
    sentinel, transcriber, clock = build(text="open", silence_timeout_ms=2_000, min_utterance_ms=500)
    emitted = []
    sentinel.subscribe(emitted.append)
    start = clock.now

    sentinel.feed(loud(), at=start)
    transcriber.error = TranscriptionError("decoder crashed")
    session = sentinel.feed(loud(), at=start + timedelta(seconds=0.1))

    assert session is not None
    assert session.transcript == "open"
    assert session.is_final is True
    assert emitted == [session]
    assert sentinel.state is SentinelState.IDLE


def test_source_threshold_and_keywords_from_filters() -> None:
    filters = FilterStore(audio_filters=[AudioFilter("microphone", volume_threshold=0.6, keywords=["assistant"])])
    sentinel, transcriber, clock = build(text="assistant open chrome", filters=filters, min_utterance_ms=0)
    start = clock.now

    sentinel.feed(loud(0.5), at=start)
    assert sentinel.state is SentinelState.IDLE

    sentinel.feed(loud(0.9), at=start)
    assert sentinel.tick(start + timedelta(seconds=3)) is not None

    transcriber.text = "unrelated chatter"
    sentinel.feed(loud(0.9), at=start + timedelta(seconds=4))
    assert sentinel.tick(start + timedelta(seconds=7)) is None


def test_blacklisted_source_is_ignored() -> None:
    filters = FilterStore(audio_filters=[AudioFilter("system", is_blacklisted=True)])
    sentinel, _, clock = build(filters=filters)

    sentinel.feed(loud(), source_name="system", at=clock.now)

    assert sentinel.current_session is None


class ListSource:
    def __init__(self, chunks) -> None:
        self.chunks = list(chunks)
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def read(self, timeout: float):
        if self.chunks:
            return self.chunks.pop(0)
        time.sleep(timeout)
        return None

    def close(self) -> None:
        self.closed = True


def test_stop_seals_open_session_and_is_idempotent() -> None:
    source = ListSource([])
    sentinel, _, clock = build(source=source, min_utterance_ms=0, poll_interval_s=0.01)
    emitted = []
    sentinel.subscribe(emitted.append)

    sentinel.feed(loud(), at=clock.now)
    sentinel.feed(loud(), at=clock.advance(seconds=0.5))
    sentinel.start()
    session = sentinel.stop()

    assert source.opened and source.closed
    assert session is not None and session.is_final
    assert emitted == [session]
    assert sentinel.stop() is None


def test_background_loop_consumes_source_chunks() -> None:
    source = ListSource([AudioChunk(loud()), AudioChunk(loud())])
    sentinel, _, clock = build(source=source, min_utterance_ms=0, poll_interval_s=0.01)

    sentinel.start()
    for _ in range(200):
        if not source.chunks:
            break
        time.sleep(0.01)
    session = sentinel.stop()

    assert session is not None
    assert session.transcript.startswith("hello")


def test_start_without_source_fails() -> None:
    sentinel, _, _ = build()

    with pytest.raises(RuntimeError):
        sentinel.start()
