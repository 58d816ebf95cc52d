"""End-to-end orchestration: perception, context, commands and recovery."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .actions import ActionHandler, UrlOpener, default_handlers
from .active_window import ActiveWindowProvider
from .audio_capture import AudioSource, MicrophoneSource, Transcriber
from .audio_sentinel import AudioSentinel
from .clarifier import Clarifier
from .config import AssistantConfig
from .context import ContextEngine
from .fallback import FallbackResolver
from .filters import FilterStore
from .models import (
    AppFilter,
    AudioFilter,
    AudioSession,
    CommandHistoryEntry,
    CommandResponse,
    ConfirmationResponse,
    ContextPattern,
    ContextSnapshot,
    IntentCategory,
    ScreenSnapshot,
    Trigger,
)
from .ocr import OpenVinoTextExtractor, TextExtractor
from .router import CommandRouter
from .screen_capture import FrameGrabber
from .screen_sentinel import FrameSource, ScreenSentinel, WindowSource
from .store import RecordStore
from .utils import utcnow

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[Trigger, List[CommandResponse]], None]

_STOP = object()


class AmbientAssistant:
    """Coordinates the modules that make up the assistant.

    Sentinels feed the context engine; matching patterns are queued as
    triggers and routed on a worker thread, so a slow command never delays
    the next screen or audio tick.
    """

    def __init__(
        self,
        config: AssistantConfig | None = None,
        *,
        store: RecordStore | None = None,
        extractor: TextExtractor | None = None,
        transcriber: Transcriber | None = None,
        window_source: WindowSource | None = None,
        frame_source: FrameSource | None = None,
        audio_source: AudioSource | None = None,
        clarifier: Clarifier | None = None,
        url_opener: UrlOpener | None = None,
        platform: str | None = None,
        handlers: Mapping[IntentCategory, ActionHandler] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or AssistantConfig()
        self.store = store or RecordStore(self.config.db_path)
        self.filters = FilterStore(
            self.store.query("app_filters", limit=None),
            self.store.query("audio_filters", limit=None),
        )
        self.context = ContextEngine(
            self.store.query("context_patterns", limit=None),
            quiet_hours=self.config.quiet_hours,
            buffer_size=self.config.snapshot_buffer_size,
            recorder=self.store.save,
            clock=clock,
        )
        self.context.subscribe(self._enqueue_trigger)

        action_handlers = default_handlers(
            url_opener=url_opener,
            context_provider=lambda: self.context.current,
            settings_provider=self._settings,
            platform=platform,
            events_dir=self._events_dir(),
        )
        action_handlers.update(handlers or {})
        self.router = CommandRouter(
            action_handlers,
            resolver=FallbackResolver(platform=platform, url_opener=url_opener),
            clarifier=clarifier,
            clarifier_timeout_ms=self.config.clarifier_timeout_ms,
            confirmation_ttl_s=self.config.confirmation_ttl_s,
            history_limit=self.config.history_limit,
            history=reversed(self.store.query("command_history", limit=self.config.history_limit)),
            recorder=self.store.save,
            clock=clock,
        )

        self.screen: Optional[ScreenSentinel] = None
        self.audio: Optional[AudioSentinel] = None
        if self.config.ultra_lightweight:
            logger.info("Ultra-lightweight mode: screen and audio perception disabled")
        else:
            self.screen = ScreenSentinel(
                window_source or ActiveWindowProvider(platform),
                extractor or OpenVinoTextExtractor(),
                filters=self.filters,
                frame_source=frame_source or FrameGrabber(),
                interval_ms=self.config.screen_sample_interval_ms,
                clock=clock,
            )
            self.screen.subscribe(self._on_screen_snapshot)
            if transcriber is not None:
                self.audio = AudioSentinel(
                    transcriber,
                    filters=self.filters,
                    source=audio_source or (MicrophoneSource() if MicrophoneSource.is_available() else None),
                    silence_timeout_ms=self.config.audio_silence_timeout_ms,
                    min_utterance_ms=self.config.min_utterance_ms,
                    volume_threshold=self.config.volume_threshold,
                    clock=clock,
                )
                self.audio.subscribe(self._on_audio_session)
            else:
                logger.info("No transcriber configured; audio perception unavailable")

        self._triggers: "queue.Queue[object]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._context_running = False
        self._trigger_callbacks: List[TriggerCallback] = []

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def execute_command(self, text: str, *, session_id: str = "default") -> CommandResponse:
        return self.router.execute(text, self.context.current, session_id)

    def confirm_and_execute(self, request_id: str, confirmation: str | bool) -> ConfirmationResponse:
        return self.router.confirm(request_id, confirmation)

    def get_command_suggestions(self, partial_text: str, limit: int = 5) -> List[str]:
        return self.router.suggestions(partial_text, limit)

    def get_command_history(self, limit: int = 10) -> List[CommandHistoryEntry]:
        return self.router.history(limit)

    # ------------------------------------------------------------------
    # Perception lifecycle
    # ------------------------------------------------------------------

    def start_screen_perception(self) -> bool:
        if self.screen is None:
            logger.warning("Screen perception is disabled")
            return False
        self.screen.start()
        return True

    def stop_screen_perception(self) -> None:
        if self.screen is not None:
            self.screen.stop()

    def start_audio_perception(self) -> bool:
        if self.audio is None or self.audio.source is None:
            logger.warning("Audio perception is unavailable")
            return False
        self.audio.start()
        return True

    def stop_audio_perception(self) -> Optional[AudioSession]:
        if self.audio is None:
            return None
        return self.audio.stop()

    def start_context_manager(self) -> None:
        """Fuse sentinel output and route matching triggers."""

        if self._context_running:
            return
        self._context_running = True
        self._worker = threading.Thread(target=self._drain_triggers, name="trigger-worker", daemon=True)
        self._worker.start()
        self.start_screen_perception()
        self.start_audio_perception()
        logger.info("Context manager started")

    def stop_context_manager(self, timeout: float | None = 5.0) -> None:
        if not self._context_running:
            return
        self.stop_screen_perception()
        self.stop_audio_perception()
        self._context_running = False
        self._triggers.put(_STOP)
        worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
        logger.info("Context manager stopped")

    @property
    def context_running(self) -> bool:
        return self._context_running

    def on_trigger(self, callback: TriggerCallback) -> None:
        self._trigger_callbacks.append(callback)

    def _on_screen_snapshot(self, snapshot: ScreenSnapshot) -> None:
        self.store.save(snapshot)
        if self._context_running:
            self.context.process(screen_snapshot=snapshot)

    def _on_audio_session(self, session: AudioSession) -> None:
        self.store.save(session)
        if self._context_running:
            self.context.process(audio_session=session)

    def _enqueue_trigger(self, trigger: Trigger) -> None:
        self._triggers.put(trigger)

    def _drain_triggers(self) -> None:
        while True:
            item = self._triggers.get()
            if item is _STOP:
                break
            self.handle_trigger(item)

    def handle_trigger(self, trigger: Trigger) -> List[CommandResponse]:
        """Route each action of ``trigger`` in order."""

        session_id = f"trigger:{trigger.pattern_name}"
        responses = [
            self.router.execute(action, trigger.snapshot, session_id) for action in trigger.actions if action.strip()
        ]
        for callback in list(self._trigger_callbacks):
            try:
                callback(trigger, responses)
            except Exception:
                logger.exception("Trigger callback failed")
        return responses

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_screen_filter(self, app_filter: AppFilter) -> None:
        self.filters.add_app_filter(app_filter)
        self.store.save(app_filter)

    def remove_screen_filter(self, app_name: str) -> bool:
        self.store.delete("app_filters", app_name)
        return self.filters.remove_app_filter(app_name)

    def add_audio_filter(self, audio_filter: AudioFilter) -> None:
        self.filters.add_audio_filter(audio_filter)
        self.store.save(audio_filter)

    def remove_audio_filter(self, source_name: str) -> bool:
        self.store.delete("audio_filters", source_name)
        return self.filters.remove_audio_filter(source_name)

    def add_context_pattern(self, pattern: ContextPattern) -> None:
        self.context.add_pattern(pattern)
        self.store.save(pattern)

    def remove_context_pattern(self, pattern_name: str) -> bool:
        self.store.delete("context_patterns", pattern_name)
        return self.context.remove_pattern(pattern_name)

    def list_context_patterns(self) -> List[ContextPattern]:
        return self.context.list_patterns()

    def set_quiet_hours(self, start_hour: int, end_hour: int) -> None:
        self.context.set_quiet_hours(start_hour, end_hour)
        self.config.quiet_hours_start, self.config.quiet_hours_end = start_hour, end_hour

    def clear_quiet_hours(self) -> None:
        self.context.clear_quiet_hours()
        self.config.quiet_hours_start = self.config.quiet_hours_end = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_screen_snapshots(self, limit: int = 20) -> List[ScreenSnapshot]:
        return self.store.query("screen_snapshots", limit=limit)

    def get_audio_sessions(self, limit: int = 20) -> List[AudioSession]:
        return self.store.query("audio_sessions", limit=limit)

    def get_context_snapshots(self, limit: int = 20) -> List[ContextSnapshot]:
        return self.store.query("context_snapshots", limit=limit)

    def status(self) -> dict:
        return {
            "ultra_lightweight": self.config.ultra_lightweight,
            "context_manager": self._context_running,
            "screen": self.screen.status() if self.screen else {"is_active": False},
            "audio": self.audio.status() if self.audio else {"is_active": False},
            "context": self.context.status(),
            "pending_triggers": self._triggers.qsize(),
        }

    def _events_dir(self) -> Optional[Path]:
        if self.config.db_path == ":memory:":
            return None
        return Path(self.config.db_path).expanduser().parent / "events"

    def _settings(self) -> dict:
        settings = asdict(self.config)
        settings["patterns"] = len(self.context.list_patterns())
        settings["app_filters"] = len(self.filters.list_app_filters())
        settings["audio_filters"] = len(self.filters.list_audio_filters())
        return settings

    def close(self) -> None:
        self.stop_context_manager()
        self.stop_screen_perception()
        self.stop_audio_perception()
        self.router.close()
        self.store.close()

    def __enter__(self) -> "AmbientAssistant":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
