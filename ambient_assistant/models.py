"""Data models shared by the perception, context and command layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class AppFilter:
    """Whitelist/blacklist rule for a foreground application."""

    app_name: str
    is_whitelisted: bool = False
    is_blacklisted: bool = False
    window_patterns: List[str] = field(default_factory=list)


@dataclass(slots=True)
class AudioFilter:
    """Whitelist/blacklist rule for an audio source."""

    source_name: str
    is_whitelisted: bool = False
    is_blacklisted: bool = False
    volume_threshold: float = 0.1
    keywords: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ScreenSnapshot:
    """Visible text of one application at one sampling tick."""

    app_name: str
    window_title: str
    extracted_text: str
    content_hash: str
    captured_at: datetime


@dataclass(slots=True)
class AudioSession:
    """A spoken segment; the transcript grows until the session is sealed."""

    transcript: str
    source_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    is_final: bool = False

    @property
    def duration_ms(self) -> int:
        if self.end_time is None:
            return 0
        return int((self.end_time - self.start_time).total_seconds() * 1000)


@dataclass(slots=True)
class ContextPattern:
    """User-authored rule describing a situation worth acting on."""

    pattern_name: str
    app_name: str = ""
    window_pattern: str = ""
    audio_keywords: List[str] = field(default_factory=list)
    screen_keywords: List[str] = field(default_factory=list)
    trigger_actions: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass(slots=True)
class ContextSnapshot:
    """Fused view of the latest screen and audio state."""

    app_name: str
    timestamp: datetime
    window_title: str = ""
    screen_snapshot: Optional[ScreenSnapshot] = None
    audio_session: Optional[AudioSession] = None
    user_intent: Optional[str] = None

    @property
    def screen_text(self) -> str:
        return self.screen_snapshot.extracted_text if self.screen_snapshot else ""

    @property
    def audio_transcript(self) -> str:
        return self.audio_session.transcript if self.audio_session else ""


@dataclass(slots=True)
class Trigger:
    """Emitted when a context pattern matches a snapshot."""

    trigger_id: str
    pattern_name: str
    actions: List[str]
    snapshot: ContextSnapshot
    created_at: datetime


class IntentCategory(str, Enum):
    OPEN = "open"
    SEARCH = "search"
    EMAIL = "email"
    YOUTUBE = "youtube"
    SUMMARIZE = "summarize"
    SETTINGS = "settings"
    URL = "url"
    CALENDAR = "calendar"
    HELP = "help"
    CLARIFIED = "clarified"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class Intent:
    """Typed interpretation of a free-text command."""

    function_name: str
    confidence: float
    raw_command: str
    extracted_args: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> IntentCategory:
        try:
            return IntentCategory(self.function_name)
        except ValueError:
            return IntentCategory.UNKNOWN


class FallbackReason(str, Enum):
    MISSING_APP = "missing_app"
    MISSING_OAUTH = "missing_oauth"
    MISSING_PERMISSION = "missing_permission"
    MISSING_SCRIPT = "missing_script"
    UNKNOWN_ACTION = "unknown_action"


class FallbackAction(str, Enum):
    INSTALL_APP = "install_app"
    OPEN_OAUTH = "open_oauth"
    REQUEST_PERMISSION = "request_permission"
    GENERATE_SCRIPT = "generate_script"
    MANUAL_INSTRUCTION = "manual_instruction"


@dataclass(slots=True)
class FallbackDetails:
    app_name: Optional[str] = None
    app_url: Optional[str] = None
    oauth_provider: Optional[str] = None
    permission_type: Optional[str] = None
    action: Optional[str] = None


@dataclass(slots=True)
class FallbackRequest:
    """Why an action could not proceed, plus what would unblock it."""

    reason: FallbackReason | str
    proposal: str = ""
    details: FallbackDetails = field(default_factory=FallbackDetails)


@dataclass(slots=True)
class FallbackResponse:
    success: bool
    message: str
    action: FallbackAction
    next_steps: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ActionResult:
    """Outcome of running an action handler."""

    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    next_steps: List[str] = field(default_factory=list)
    fallback: Optional[FallbackResponse] = None


@dataclass(slots=True)
class Clarification:
    """Structured reading of an ambiguous command returned by a clarifier."""

    clarified_intent: str
    action_steps: List[str]
    context: str = ""
    confidence: float = 0.5
    request_id: Optional[str] = None


class RouteStatus(str, Enum):
    RESOLVED = "resolved"
    NEEDS_CONFIRMATION = "needs_confirmation"
    UNRESOLVED = "unresolved"


@dataclass(slots=True)
class RoutingOutcome:
    status: RouteStatus
    clarification: Optional[Clarification] = None
    request_id: Optional[str] = None
    strategy: str = ""


@dataclass(slots=True)
class CommandHistoryEntry:
    command: str
    success: bool
    timestamp: datetime
    result_summary: str = ""


@dataclass(slots=True)
class CommandResponse:
    """Reply to ``execute_command``."""

    success: bool
    result: Optional[ActionResult] = None
    error: Optional[str] = None
    intent: Optional[Intent] = None
    needs_confirmation: bool = False
    clarification: Optional[Clarification] = None


@dataclass(slots=True)
class StepResult:
    step: str
    intent: Intent
    result: ActionResult


@dataclass(slots=True)
class ConfirmationResponse:
    """Reply to ``confirm_and_execute``."""

    success: bool
    executed: bool
    results: List[StepResult] = field(default_factory=list)
    message: str = ""
