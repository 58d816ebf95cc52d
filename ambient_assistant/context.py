"""Context fusion and pattern-based trigger evaluation."""

from __future__ import annotations

import logging
import re
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence

from .errors import ConfigurationError
from .models import AudioSession, ContextPattern, ContextSnapshot, ScreenSnapshot, Trigger
from .utils import contains_any, generate_id, hour_in_window, utcnow

logger = logging.getLogger(__name__)

TriggerListener = Callable[[Trigger], None]
SnapshotRecorder = Callable[[ContextSnapshot], None]

_WILDCARD_APPS = {"", "*"}


@dataclass(slots=True)
class IntentRule:
    """Keyword rule used to label the fused context with a user intent."""

    intent: str
    keywords: Sequence[str]


DEFAULT_INTENT_RULES: List[IntentRule] = [
    IntentRule("email_composition", ("email", "mail", "inbox", "compose")),
    IntentRule("coding", ("code", "programming", "debug", "traceback", "def ", "function")),
    IntentRule("information_search", ("search", "find", "lookup", "look up")),
    IntentRule("communication", ("meeting", "call", "zoom", "video")),
]


def infer_user_intent(text: str, rules: Iterable[IntentRule] = DEFAULT_INTENT_RULES) -> Optional[str]:
    """Return the first intent whose keywords appear in ``text``."""

    if not text.strip():
        return None
    for rule in rules:
        if contains_any(text, rule.keywords):
            return rule.intent
    return None


@dataclass(slots=True)
class _CompiledPattern:
    pattern: ContextPattern
    window_regex: Optional[re.Pattern[str]]


def validate_pattern(pattern: ContextPattern) -> Optional[re.Pattern[str]]:
    """Reject malformed patterns; return the compiled window regex, if any."""

    if not isinstance(pattern.pattern_name, str) or not pattern.pattern_name.strip():
        raise ConfigurationError("ContextPattern.pattern_name must be a non-empty string")
    if not isinstance(pattern.app_name, str) or not isinstance(pattern.window_pattern, str):
        raise ConfigurationError("ContextPattern.app_name and window_pattern must be strings")
    for name in ("audio_keywords", "screen_keywords", "trigger_actions"):
        values = getattr(pattern, name)
        if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
            raise ConfigurationError(f"ContextPattern.{name} must be a list of strings")
    if not any(action.strip() for action in pattern.trigger_actions):
        raise ConfigurationError(f"Pattern {pattern.pattern_name!r} has no trigger actions")
    if not pattern.window_pattern:
        return None
    try:
        return re.compile(pattern.window_pattern, re.IGNORECASE)
    except re.error:
        # Not a regex; substring matching still applies.
        return None


def pattern_matches(
    pattern: ContextPattern,
    snapshot: ContextSnapshot,
    window_regex: Optional[re.Pattern[str]] = None,
) -> bool:
    """App AND window AND (any audio keyword OR any screen keyword)."""

    if pattern.app_name.strip() not in _WILDCARD_APPS:
        if pattern.app_name.strip().lower() != snapshot.app_name.strip().lower():
            return False
    if pattern.window_pattern:
        title = snapshot.window_title
        substring = pattern.window_pattern.lower() in title.lower()
        if not substring and (window_regex is None or window_regex.search(title) is None):
            return False
    if pattern.audio_keywords or pattern.screen_keywords:
        audio_hit = contains_any(snapshot.audio_transcript, pattern.audio_keywords)
        screen_hit = contains_any(snapshot.screen_text, pattern.screen_keywords)
        if not (audio_hit or screen_hit):
            return False
    return True


class ContextEngine:
    """Fuses sentinel output into a current snapshot and evaluates patterns.

    ``update`` and ``evaluate`` share one lock, so concurrent sentinels see a
    single writer for the fused snapshot. Trigger listeners run after the
    lock is released.
    """

    def __init__(
        self,
        patterns: Iterable[ContextPattern] = (),
        *,
        quiet_hours: Optional[tuple[int, int]] = None,
        buffer_size: int = 128,
        recorder: SnapshotRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._lock = threading.RLock()
        self._patterns: Dict[str, _CompiledPattern] = {}
        self._history: Deque[ContextSnapshot] = deque(maxlen=buffer_size)
        self._current: Optional[ContextSnapshot] = None
        self._quiet_hours: Optional[tuple[int, int]] = None
        self._listeners: List[TriggerListener] = []
        self._recorder = recorder
        self._clock = clock
        self.suppressed_triggers = 0
        for pattern in patterns:
            self.add_pattern(pattern)
        if quiet_hours is not None:
            self.set_quiet_hours(*quiet_hours)

    def subscribe(self, listener: TriggerListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def add_pattern(self, pattern: ContextPattern) -> None:
        regex = validate_pattern(pattern)
        with self._lock:
            if pattern.pattern_name in self._patterns:
                logger.info("Replacing context pattern %s", pattern.pattern_name)
            self._patterns[pattern.pattern_name] = _CompiledPattern(pattern, regex)

    def remove_pattern(self, pattern_name: str) -> bool:
        with self._lock:
            return self._patterns.pop(pattern_name, None) is not None

    def list_patterns(self) -> List[ContextPattern]:
        with self._lock:
            return [compiled.pattern for compiled in self._patterns.values()]

    # ------------------------------------------------------------------
    # Quiet hours
    # ------------------------------------------------------------------

    def set_quiet_hours(self, start_hour: int, end_hour: int) -> None:
        for hour in (start_hour, end_hour):
            if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
                raise ConfigurationError(f"Quiet hour must be an integer in [0, 23]: {hour!r}")
        with self._lock:
            self._quiet_hours = (start_hour, end_hour)
        logger.info("Quiet hours set: %02d:00 - %02d:00", start_hour, end_hour)

    def clear_quiet_hours(self) -> None:
        with self._lock:
            self._quiet_hours = None

    @property
    def quiet_hours(self) -> Optional[tuple[int, int]]:
        return self._quiet_hours

    def in_quiet_hours(self, at: datetime | None = None) -> bool:
        window = self._quiet_hours
        if window is None:
            return False
        # Quiet hours are wall-clock hours in the user's local zone.
        moment = (at or self._clock()).astimezone()
        return hour_in_window(moment.hour, *window)

    # ------------------------------------------------------------------
    # Fusion and evaluation
    # ------------------------------------------------------------------

    def update(
        self,
        screen_snapshot: ScreenSnapshot | None = None,
        audio_session: AudioSession | None = None,
        *,
        app_name: str | None = None,
        window_title: str | None = None,
    ) -> ContextSnapshot:
        """Merge the newest signals into the current snapshot and record it."""

        with self._lock:
            previous = self._current
            screen = screen_snapshot or (previous.screen_snapshot if previous else None)
            audio = audio_session or (previous.audio_session if previous else None)
            if app_name is None:
                app_name = screen_snapshot.app_name if screen_snapshot else (previous.app_name if previous else "")
            if window_title is None:
                window_title = (
                    screen_snapshot.window_title if screen_snapshot else (previous.window_title if previous else "")
                )
            fused_text = " ".join(part for part in ((screen.extracted_text if screen else ""), (audio.transcript if audio else "")) if part)
            snapshot = ContextSnapshot(
                app_name=app_name,
                window_title=window_title,
                screen_snapshot=screen,
                audio_session=audio,
                user_intent=infer_user_intent(fused_text),
                timestamp=self._clock(),
            )
            self._current = snapshot
            self._history.append(snapshot)
        if self._recorder is not None:
            try:
                self._recorder(snapshot)
            except Exception:
                logger.exception("Failed to record context snapshot")
        return snapshot

    def evaluate(self, snapshot: ContextSnapshot) -> List[Trigger]:
        """One trigger per matching active pattern; none during quiet hours."""

        with self._lock:
            compiled = list(self._patterns.values())
            quiet = self.in_quiet_hours()
        triggers: List[Trigger] = []
        for entry in compiled:
            pattern = entry.pattern
            if not pattern.is_active or not pattern_matches(pattern, snapshot, entry.window_regex):
                continue
            triggers.append(
                Trigger(
                    trigger_id=generate_id("trg"),
                    pattern_name=pattern.pattern_name,
                    actions=list(pattern.trigger_actions),
                    snapshot=snapshot,
                    created_at=self._clock(),
                )
            )
        if quiet and triggers:
            self.suppressed_triggers += len(triggers)
            logger.info("Quiet hours: suppressed %d trigger(s)", len(triggers))
            return []
        return triggers

    def process(
        self,
        screen_snapshot: ScreenSnapshot | None = None,
        audio_session: AudioSession | None = None,
        **metadata: str,
    ) -> List[Trigger]:
        """``update`` then ``evaluate`` as one critical section; notify listeners."""

        with self._lock:
            snapshot = self.update(screen_snapshot, audio_session, **metadata)
            triggers = self.evaluate(snapshot)
        for trigger in triggers:
            logger.info("Pattern %s matched in %s", trigger.pattern_name, snapshot.app_name)
            for listener in list(self._listeners):
                try:
                    listener(trigger)
                except Exception:
                    logger.exception("Trigger listener failed")
        return triggers

    @property
    def current(self) -> Optional[ContextSnapshot]:
        return self._current

    def recent_snapshots(self, limit: int = 20) -> List[ContextSnapshot]:
        with self._lock:
            return list(reversed(self._history))[:limit]

    def status(self) -> dict:
        current = self._current
        return {
            "current_app": current.app_name if current else None,
            "is_quiet_hours": self.in_quiet_hours(),
            "patterns_count": len(self._patterns),
            "suppressed_triggers": self.suppressed_triggers,
        }
