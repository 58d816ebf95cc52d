"""Periodic sampling of the foreground window's visible text."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from .active_window import ActiveWindowInfo
from .errors import ExtractionError
from .filters import FilterStore, app_key
from .models import ScreenSnapshot
from .ocr import TextExtractor
from .utils import content_hash, jaccard_similarity, utcnow

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[ScreenSnapshot], None]
FrameSource = Callable[[tuple[int, int, int, int]], object]


class WindowSource(Protocol):
    def current(self) -> Optional[ActiveWindowInfo]:
        """Return the foreground window or ``None`` when it cannot be read."""


class ScreenSentinel:
    """Emits a ``ScreenSnapshot`` whenever the foreground app's text changes.

    Each tick reads the foreground window, consults the filter rules, grabs a
    frame and extracts its text. A snapshot is emitted only when the content
    hash differs from the previous one recorded for the same application.
    Failures in a tick are logged and the next tick runs as usual.
    """

    def __init__(
        self,
        window_source: WindowSource,
        extractor: TextExtractor,
        *,
        filters: FilterStore | None = None,
        frame_source: FrameSource | None = None,
        interval_ms: int = 60_000,
        min_change_ratio: float = 0.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.window_source = window_source
        self.extractor = extractor
        self.filters = filters or FilterStore()
        self.frame_source = frame_source
        self.interval_ms = interval_ms
        self.min_change_ratio = min_change_ratio
        self._clock = clock
        self._last_hash: Dict[str, str] = {}
        self._last_text: Dict[str, str] = {}
        self._listeners: List[SnapshotListener] = []
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._latest: Optional[ScreenSnapshot] = None
        self.failed_samples = 0

    def subscribe(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self) -> Optional[ScreenSnapshot]:
        """Run one tick; return the new snapshot or ``None``."""

        try:
            info = self.window_source.current()
            if info is None:
                return None
            app_name = info.app_label
            if not self.filters.allows_app(app_name, info.title):
                logger.debug("Skipping filtered app %s", app_name)
                return None
            frame = self.frame_source(info.rect) if self.frame_source else None
            text = self.extractor.extract(frame)
        except ExtractionError as exc:
            self.failed_samples += 1
            logger.warning("Screen text extraction failed: %s", exc)
            return None
        except Exception:
            self.failed_samples += 1
            logger.exception("Screen sample failed")
            return None

        snapshot = self._diff(app_name, info.title, text or "")
        if snapshot is None:
            return None
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Screen snapshot listener failed")
        return snapshot

    def _diff(self, app_name: str, window_title: str, text: str) -> Optional[ScreenSnapshot]:
        digest = content_hash(text)
        key = app_key(app_name)
        with self._state_lock:
            previous_hash = self._last_hash.get(key)
            if digest == previous_hash:
                return None
            previous_text = self._last_text.get(key)
            if (
                previous_text is not None
                and self.min_change_ratio > 0
                and jaccard_similarity(previous_text, text) > 1.0 - self.min_change_ratio
            ):
                return None
            self._last_hash[key] = digest
            self._last_text[key] = text
            snapshot = ScreenSnapshot(
                app_name=app_name,
                window_title=window_title,
                extracted_text=text,
                content_hash=digest,
                captured_at=self._clock(),
            )
            self._latest = snapshot
        logger.info("Captured snapshot: %s - %s", app_name, window_title[:50])
        return snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="screen-sentinel", daemon=True)
        self._thread.start()
        logger.info("Screen perception started (interval: %sms)", self.interval_ms)

    def stop(self, timeout: float | None = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Screen perception stopped")

    def _run(self) -> None:
        interval_s = self.interval_ms / 1000
        while not self._stop_event.is_set():
            self.sample()
            self._stop_event.wait(interval_s)

    def status(self) -> dict:
        latest = self._latest
        return {
            "is_active": self.is_running,
            "current_app": latest.app_name if latest else None,
            "last_snapshot_time": latest.captured_at.isoformat() if latest else None,
            "failed_samples": self.failed_samples,
        }
