"""Runtime configuration for the assistant core."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ConfigurationError

ENV_PREFIX = "AMBIENT_ASSISTANT_"

# camelCase names accepted in JSON config files
_ALIASES = {
    "screenSampleIntervalMs": "screen_sample_interval_ms",
    "audioSilenceTimeoutMs": "audio_silence_timeout_ms",
    "minUtteranceMs": "min_utterance_ms",
    "volumeThreshold": "volume_threshold",
    "quietHoursStart": "quiet_hours_start",
    "quietHoursEnd": "quiet_hours_end",
    "ultraLightweight": "ultra_lightweight",
    "clarifierTimeoutMs": "clarifier_timeout_ms",
    "confirmationTtlS": "confirmation_ttl_s",
    "historyLimit": "history_limit",
    "snapshotBufferSize": "snapshot_buffer_size",
    "dbPath": "db_path",
}


def default_db_path() -> Path:
    root = Path(os.getenv(f"{ENV_PREFIX}HOME", "~/.ambient_assistant")).expanduser()
    return root / "assistant.sqlite"


@dataclass(slots=True)
class AssistantConfig:
    """Recognised options; every interval is in milliseconds."""

    screen_sample_interval_ms: int = 60_000
    audio_silence_timeout_ms: int = 2_000
    min_utterance_ms: int = 500
    volume_threshold: float = 0.1
    quiet_hours_start: Optional[int] = None
    quiet_hours_end: Optional[int] = None
    ultra_lightweight: bool = False
    clarifier_timeout_ms: int = 2_500
    confirmation_ttl_s: float = 120.0
    history_limit: int = 100
    snapshot_buffer_size: int = 128
    db_path: str = ":memory:"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.screen_sample_interval_ms <= 0:
            raise ConfigurationError("screen_sample_interval_ms must be positive")
        if self.audio_silence_timeout_ms <= 0:
            raise ConfigurationError("audio_silence_timeout_ms must be positive")
        if self.min_utterance_ms < 0:
            raise ConfigurationError("min_utterance_ms must not be negative")
        if not 0.0 <= self.volume_threshold <= 1.0:
            raise ConfigurationError("volume_threshold must be within [0, 1]")
        if (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            raise ConfigurationError("quiet_hours_start and quiet_hours_end must be set together")
        for hour in (self.quiet_hours_start, self.quiet_hours_end):
            if hour is not None and not 0 <= hour <= 23:
                raise ConfigurationError(f"quiet hour out of range: {hour}")
        if self.clarifier_timeout_ms <= 0:
            raise ConfigurationError("clarifier_timeout_ms must be positive")
        if self.confirmation_ttl_s <= 0:
            raise ConfigurationError("confirmation_ttl_s must be positive")
        if self.history_limit <= 0 or self.snapshot_buffer_size <= 0:
            raise ConfigurationError("history_limit and snapshot_buffer_size must be positive")

    @property
    def quiet_hours(self) -> Optional[tuple[int, int]]:
        if self.quiet_hours_start is None or self.quiet_hours_end is None:
            return None
        return (self.quiet_hours_start, self.quiet_hours_end)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AssistantConfig":
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, raw in payload.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            values[name] = _coerce(name, raw)
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path | str) -> "AssistantConfig":
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to read configuration {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Configuration file must contain a JSON object")
        return cls.from_mapping(payload)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AssistantConfig":
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None and raw != "":
                values[f.name] = raw
        config = cls.from_mapping(values)
        if "db_path" not in values:
            config.db_path = str(default_db_path())
        return config


def _coerce(name: str, raw: Any) -> Any:
    if raw is None:
        return None
    try:
        if name == "ultra_lightweight":
            if isinstance(raw, str):
                return raw.strip().lower() in {"1", "true", "yes", "on"}
            return bool(raw)
        if name in {"volume_threshold", "confirmation_ttl_s"}:
            return float(raw)
        if name == "db_path":
            return str(raw)
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from exc
