"""Shared fakes for capability interfaces used across the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import numpy as np
import pytest

from ambient_assistant.active_window import ActiveWindowInfo
from ambient_assistant.config import AssistantConfig
from ambient_assistant.models import Clarification


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeWindowSource:
    def __init__(self, app: str = "Code", title: str = "main.py") -> None:
        self.info: Optional[ActiveWindowInfo] = ActiveWindowInfo(title=title, process_name=app)

    def show(self, app: str, title: str = "") -> None:
        self.info = ActiveWindowInfo(title=title, process_name=app)

    def current(self) -> Optional[ActiveWindowInfo]:
        return self.info


class FakeExtractor:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.error: Optional[Exception] = None
        self.calls = 0

    def extract(self, frame) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FakeTranscriber:
    def __init__(self, text: str = "hello") -> None:
        self.text = text
        self.error: Optional[Exception] = None

    def transcribe(self, audio_chunk) -> str:
        if self.error is not None:
            raise self.error
        return self.text


class FakeClarifier:
    def __init__(self, steps: List[str], intent: str = "do the thing") -> None:
        self.steps = steps
        self.intent = intent
        self.calls: List[str] = []

    def clarify(self, command, context=None) -> Clarification:
        self.calls.append(command)
        return Clarification(clarified_intent=self.intent, action_steps=list(self.steps), confidence=0.7)


class RecordingOpener:
    def __init__(self) -> None:
        self.urls: List[str] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        return True


def loud(level: float = 0.5, size: int = 1600) -> np.ndarray:
    return np.full(size, level, dtype=np.float32)


def quiet(size: int = 1600) -> np.ndarray:
    return np.zeros(size, dtype=np.float32)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def opener() -> RecordingOpener:
    return RecordingOpener()


@pytest.fixture
def config() -> AssistantConfig:
    return AssistantConfig(db_path=":memory:")
