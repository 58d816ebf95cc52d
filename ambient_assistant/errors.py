"""Exception types raised inside the assistant core."""

from __future__ import annotations

from .models import FallbackRequest


class ConfigurationError(ValueError):
    """Raised when configuration, a filter or a pattern is malformed."""


class ExtractionError(RuntimeError):
    """Raised by a text extractor that cannot read the current frame."""


class TranscriptionError(RuntimeError):
    """Raised by a transcriber that cannot decode an audio chunk."""


class ActionUnavailable(Exception):
    """Raised by an action handler that needs something the system lacks.

    The router turns the attached request into a recovery plan instead of
    surfacing the exception.
    """

    def __init__(self, request: FallbackRequest, message: str | None = None) -> None:
        super().__init__(message or request.proposal or str(request.reason))
        self.request = request
