"""Ambient assistant core: screen and audio perception, context triggers and command routing."""

from .assistant import AmbientAssistant
from .clarifier import CompletionClarifier
from .config import AssistantConfig
from .context import ContextEngine
from .errors import ActionUnavailable, ConfigurationError
from .fallback import FallbackResolver
from .filters import FilterStore
from .models import (
    AppFilter,
    AudioFilter,
    AudioSession,
    CommandHistoryEntry,
    ContextPattern,
    ContextSnapshot,
    FallbackRequest,
    FallbackResponse,
    Intent,
    ScreenSnapshot,
    Trigger,
)
from .router import CommandRouter
from .store import RecordStore

__all__ = [
    "AmbientAssistant",
    "AssistantConfig",
    "ContextEngine",
    "CommandRouter",
    "FallbackResolver",
    "FilterStore",
    "RecordStore",
    "CompletionClarifier",
    "ActionUnavailable",
    "ConfigurationError",
    "AppFilter",
    "AudioFilter",
    "AudioSession",
    "CommandHistoryEntry",
    "ContextPattern",
    "ContextSnapshot",
    "FallbackRequest",
    "FallbackResponse",
    "Intent",
    "ScreenSnapshot",
    "Trigger",
]
