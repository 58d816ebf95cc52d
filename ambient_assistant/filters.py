"""Whitelist/blacklist rules for monitored applications and audio sources."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List

from .errors import ConfigurationError
from .models import AppFilter, AudioFilter
from .utils import contains_any

logger = logging.getLogger(__name__)


class FilterStore:
    """Holds filter rules and answers whether a source may be sampled.

    Names are compared case-insensitively. Registering a rule for a name that
    already has one replaces it.
    """

    def __init__(
        self,
        app_filters: Iterable[AppFilter] = (),
        audio_filters: Iterable[AudioFilter] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._app_filters: Dict[str, AppFilter] = {}
        self._audio_filters: Dict[str, AudioFilter] = {}
        for app_filter in app_filters:
            self.add_app_filter(app_filter)
        for audio_filter in audio_filters:
            self.add_audio_filter(audio_filter)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_app_filter(self, app_filter: AppFilter) -> None:
        validate_app_filter(app_filter)
        key = app_key(app_filter.app_name)
        with self._lock:
            self._app_filters[key] = app_filter
        if app_filter.is_whitelisted and app_filter.is_blacklisted:
            logger.warning("Filter for %s is both white- and blacklisted; blacklist wins", app_filter.app_name)

    def add_audio_filter(self, audio_filter: AudioFilter) -> None:
        validate_audio_filter(audio_filter)
        key = audio_filter.source_name.strip().lower()
        with self._lock:
            self._audio_filters[key] = audio_filter

    def remove_app_filter(self, app_name: str) -> bool:
        with self._lock:
            return self._app_filters.pop(app_key(app_name), None) is not None

    def remove_audio_filter(self, source_name: str) -> bool:
        with self._lock:
            return self._audio_filters.pop(source_name.strip().lower(), None) is not None

    def list_app_filters(self) -> List[AppFilter]:
        with self._lock:
            return list(self._app_filters.values())

    def list_audio_filters(self) -> List[AudioFilter]:
        with self._lock:
            return list(self._audio_filters.values())

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def allows_app(self, app_name: str, window_title: str = "") -> bool:
        with self._lock:
            rule = self._app_filters.get(app_key(app_name))
            whitelist_active = any(f.is_whitelisted and not f.is_blacklisted for f in self._app_filters.values())
        if rule is not None and rule.is_blacklisted:
            return False
        if rule is None or not rule.is_whitelisted:
            return not whitelist_active
        if not rule.window_patterns:
            return True
        title = window_title.lower()
        return any(pattern.lower() in title for pattern in rule.window_patterns)

    def allows_audio_source(self, source_name: str) -> bool:
        with self._lock:
            rule = self._audio_filters.get(source_name.strip().lower())
            whitelist_active = any(f.is_whitelisted and not f.is_blacklisted for f in self._audio_filters.values())
        if rule is not None and rule.is_blacklisted:
            return False
        if rule is None or not rule.is_whitelisted:
            return not whitelist_active
        return True

    def volume_threshold_for(self, source_name: str, default: float) -> float:
        with self._lock:
            rule = self._audio_filters.get(source_name.strip().lower())
        return rule.volume_threshold if rule is not None else default

    def transcript_passes(self, source_name: str, transcript: str) -> bool:
        """Keyword gate for a sealed transcript; sources without keywords pass."""

        with self._lock:
            rule = self._audio_filters.get(source_name.strip().lower())
        if rule is None or not rule.keywords:
            return True
        return contains_any(transcript, rule.keywords)


def app_key(app_name: str) -> str:
    """Lookup key for an application: ``Chrome``, ``chrome.exe`` and ``Chrome.app`` agree."""

    key = app_name.strip().lower()
    for suffix in (".exe", ".app"):
        if key.endswith(suffix):
            key = key[: -len(suffix)]
    return key


def _require_string_list(values: object, field_name: str) -> None:
    if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
        raise ConfigurationError(f"{field_name} must be a list of strings")


def validate_app_filter(app_filter: AppFilter) -> None:
    if not isinstance(app_filter.app_name, str) or not app_filter.app_name.strip():
        raise ConfigurationError("AppFilter.app_name must be a non-empty string")
    _require_string_list(app_filter.window_patterns, "AppFilter.window_patterns")


def validate_audio_filter(audio_filter: AudioFilter) -> None:
    if not isinstance(audio_filter.source_name, str) or not audio_filter.source_name.strip():
        raise ConfigurationError("AudioFilter.source_name must be a non-empty string")
    threshold = audio_filter.volume_threshold
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        raise ConfigurationError("AudioFilter.volume_threshold must be within [0, 1]")
    _require_string_list(audio_filter.keywords, "AudioFilter.keywords")
