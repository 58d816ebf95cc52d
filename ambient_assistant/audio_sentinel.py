"""Continuous audio segmentation into transcribed sessions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from .audio_capture import AudioSource, Transcriber, rms_level
from .filters import FilterStore
from .models import AudioSession
from .utils import utcnow

logger = logging.getLogger(__name__)

SessionListener = Callable[[AudioSession], None]


class SentinelState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"


class AudioSentinel:
    """Two-state speech segmenter.

    Idle -> Capturing when a chunk's level reaches the source threshold.
    Voiced chunks are transcribed and appended to the open session.
    Capturing -> Idle once the time since the last voiced chunk reaches the
    silence timeout; the session is sealed and emitted unless it is shorter
    than ``min_utterance_ms``, has no transcript, or fails the source's
    keyword filter.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        *,
        filters: FilterStore | None = None,
        source: AudioSource | None = None,
        silence_timeout_ms: int = 2_000,
        min_utterance_ms: int = 500,
        volume_threshold: float = 0.1,
        poll_interval_s: float = 0.1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transcriber = transcriber
        self.filters = filters or FilterStore()
        self.source = source
        self.silence_timeout = timedelta(milliseconds=silence_timeout_ms)
        self.min_utterance = timedelta(milliseconds=min_utterance_ms)
        self.volume_threshold = volume_threshold
        self.poll_interval_s = poll_interval_s
        self._clock = clock
        self._lock = threading.RLock()
        self._state = SentinelState.IDLE
        self._session: Optional[AudioSession] = None
        self._last_voice_at: Optional[datetime] = None
        self._listeners: List[SessionListener] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.discarded_sessions = 0

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    @property
    def state(self) -> SentinelState:
        return self._state

    @property
    def current_session(self) -> Optional[AudioSession]:
        return self._session

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def feed(
        self,
        samples: np.ndarray,
        *,
        source_name: str = "microphone",
        at: datetime | None = None,
    ) -> Optional[AudioSession]:
        """Process one chunk; return a session if this chunk sealed one."""

        now = at or self._clock()
        with self._lock:
            sealed = self._finish(self._check_silence(now))
            if not self.filters.allows_audio_source(source_name):
                return sealed
            if self._session is not None and self._session.source_name != source_name:
                return sealed
            return self._finish(self._consume(samples, source_name, now)) or sealed

    def _consume(self, samples: np.ndarray, source_name: str, now: datetime) -> Optional[AudioSession]:
        threshold = self.filters.volume_threshold_for(source_name, self.volume_threshold)
        if rms_level(samples) < threshold:
            return None
        if self._session is None:
            self._session = AudioSession(transcript="", source_name=source_name, start_time=now)
            self._state = SentinelState.CAPTURING
            logger.info("Audio session started (%s)", source_name)
        self._last_voice_at = now
        try:
            text = self.transcriber.transcribe(samples)
        except Exception:
            logger.exception("Transcription failed; sealing session with partial transcript")
            return self._seal(now, keep_short=True)
        if text and text.strip():
            self._session.transcript = " ".join(part for part in (self._session.transcript, text.strip()) if part)
        return None

    def tick(self, at: datetime | None = None) -> Optional[AudioSession]:
        """Advance the silence timer without new audio."""

        with self._lock:
            return self._finish(self._check_silence(at or self._clock()))

    def flush(self, at: datetime | None = None) -> Optional[AudioSession]:
        """Seal the open session immediately, if any."""

        with self._lock:
            if self._session is None:
                return None
            return self._finish(self._seal(at or self._clock()))

    def _check_silence(self, now: datetime) -> Optional[AudioSession]:
        if self._session is None or self._last_voice_at is None:
            return None
        if now - self._last_voice_at < self.silence_timeout:
            return None
        return self._seal(now)

    def _seal(self, now: datetime, *, keep_short: bool = False) -> Optional[AudioSession]:
        session, last_voice = self._session, self._last_voice_at
        self._session = None
        self._last_voice_at = None
        self._state = SentinelState.IDLE
        if session is None:
            return None
        session.end_time = now
        session.is_final = True
        spoken = (last_voice or session.start_time) - session.start_time
        if spoken < self.min_utterance and not keep_short:
            self.discarded_sessions += 1
            logger.debug("Discarding %sms utterance as noise", int(spoken.total_seconds() * 1000))
            return None
        if not session.transcript.strip():
            self.discarded_sessions += 1
            logger.debug("Discarding session without transcript")
            return None
        if not self.filters.transcript_passes(session.source_name, session.transcript):
            self.discarded_sessions += 1
            logger.debug("Session from %s filtered by keywords", session.source_name)
            return None
        return session

    def _finish(self, session: Optional[AudioSession]) -> Optional[AudioSession]:
        if session is None:
            return None
        logger.info("Audio session ended: %s", session.transcript[:50])
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Audio session listener failed")
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        if self.source is None:
            raise RuntimeError("AudioSentinel has no audio source")
        self.source.open()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="audio-sentinel", daemon=True)
        self._thread.start()
        logger.info("Audio perception started")

    def stop(self, timeout: float | None = 5.0) -> Optional[AudioSession]:
        """Stop sampling; the open session is sealed rather than dropped."""

        thread = self._thread
        if thread is not None:
            self._stop_event.set()
            if thread is not threading.current_thread():
                thread.join(timeout)
            self._thread = None
            if self.source is not None:
                try:
                    self.source.close()
                except Exception:
                    logger.exception("Failed to close audio source")
            logger.info("Audio perception stopped")
        return self.flush()

    def _run(self) -> None:
        assert self.source is not None
        while not self._stop_event.is_set():
            try:
                chunk = self.source.read(self.poll_interval_s)
            except Exception:
                logger.exception("Audio source read failed")
                self._stop_event.wait(self.poll_interval_s)
                continue
            if chunk is None:
                self.tick()
            else:
                self.feed(chunk.samples, source_name=chunk.source_name)

    def status(self) -> dict:
        session = self._session
        return {
            "is_active": self.is_running,
            "state": self._state.value,
            "current_transcript": session.transcript if session else "",
            "last_voice_at": self._last_voice_at.isoformat() if self._last_voice_at else None,
            "discarded_sessions": self.discarded_sessions,
        }
