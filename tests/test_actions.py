"""Tests for the web address and calendar event handlers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import RecordingOpener

from ambient_assistant.actions import (
    CalendarEventHandler,
    OpenUrlHandler,
    looks_like_url,
    normalize_url,
    parse_event_request,
)
from ambient_assistant.errors import ActionUnavailable
from ambient_assistant.models import FallbackReason, Intent, IntentCategory

NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


def url_intent(target: str, **extra) -> Intent:
    return Intent(IntentCategory.URL.value, 1.0, f"go to {target}", {"url": target, **extra})


def calendar_intent(text: str) -> Intent:
    return Intent(IntentCategory.CALENDAR.value, 1.0, f"schedule {text}", {"text": text})


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("github.com", True),
        ("https://example.org/docs?q=1", True),
        ("localhost:8000", True),
        ("docs.python.org/3/", True),
        ("chrome", False),
        ("rust book", False),
        ("notepad++", False),
    ],
)
def test_looks_like_url(text: str, expected: bool) -> None:
    assert looks_like_url(text) is expected


def test_normalize_url_adds_a_scheme_only_when_missing() -> None:
    assert normalize_url("github.com") == "https://github.com"
    assert normalize_url("http://example.org") == "http://example.org"
    assert normalize_url("localhost:3000") == "http://localhost:3000"


def test_open_url_searches_with_the_configured_engine(opener: RecordingOpener) -> None:
    handler = OpenUrlHandler(search_engine="duckduckgo", url_opener=opener)

    result = handler.run(url_intent("best pizza"))

    assert result.success is True
    assert opener.urls == ["https://duckduckgo.com/?q=best+pizza"]
    assert result.data["original_url"] == "best pizza"


def test_open_url_without_a_browser_is_a_missing_app() -> None:
    handler = OpenUrlHandler(url_opener=lambda url: False)

    with pytest.raises(ActionUnavailable) as excinfo:
        handler.run(url_intent("github.com"))

    assert excinfo.value.request.reason is FallbackReason.MISSING_APP


def test_open_url_needs_a_target(opener: RecordingOpener) -> None:
    result = OpenUrlHandler(url_opener=opener).run(url_intent(""))

    assert result.success is False
    assert opener.urls == []


@pytest.mark.parametrize(
    ("text", "title", "start", "end"),
    [
        ("standup tomorrow at 9:30 for 15 minutes", "Standup", datetime(2024, 5, 7, 9, 30), datetime(2024, 5, 7, 9, 45)),
        ("dentist at 3pm", "Dentist", datetime(2024, 5, 6, 15, 0), datetime(2024, 5, 6, 16, 0)),
        ("gym at 9am", "Gym", datetime(2024, 5, 7, 9, 0), datetime(2024, 5, 7, 10, 0)),
        ("review tomorrow", "Review", datetime(2024, 5, 7, 12, 0), datetime(2024, 5, 7, 13, 0)),
        ("call 3 vendors", "Call 3 vendors", datetime(2024, 5, 6, 13, 0), datetime(2024, 5, 6, 14, 0)),
        ("offsite for 2 hours", "Offsite", datetime(2024, 5, 6, 13, 0), datetime(2024, 5, 6, 15, 0)),
        ("dinner tonight at 8", "Dinner", datetime(2024, 5, 6, 20, 0), datetime(2024, 5, 6, 21, 0)),
    ],
)
def test_parse_event_request(text: str, title: str, start: datetime, end: datetime) -> None:
    draft = parse_event_request(text, NOW)

    assert draft.title == title
    assert draft.start == start.replace(tzinfo=timezone.utc)
    assert draft.end == end.replace(tzinfo=timezone.utc)


def test_calendar_event_is_written_and_opened(tmp_path, opener: RecordingOpener) -> None:
    handler = CalendarEventHandler(events_dir=tmp_path, url_opener=opener, clock=lambda: NOW)

    result = handler.run(calendar_intent("Lunch, with Sam; Bob tomorrow at 12:30"))

    assert result.success is True
    (path,) = tmp_path.glob("*.ics")
    assert opener.urls == [path.as_uri()]
    content = path.read_text(encoding="utf-8")
    assert content.startswith("BEGIN:VCALENDAR\r\n")
    assert "SUMMARY:Lunch\\, with Sam\\; Bob\r\n" in content
    assert "DTSTART:20240507T123000Z\r\n" in content
    assert "DTEND:20240507T133000Z\r\n" in content
    assert result.data["start"] == "2024-05-07T12:30:00+00:00"


def test_calendar_without_an_app_is_a_missing_app(tmp_path) -> None:
    handler = CalendarEventHandler(events_dir=tmp_path, url_opener=lambda url: False, clock=lambda: NOW)

    with pytest.raises(ActionUnavailable) as excinfo:
        handler.run(calendar_intent("standup at 9:30"))

    assert excinfo.value.request.reason is FallbackReason.MISSING_APP
    assert excinfo.value.request.details.app_name == "Calendar"


def test_calendar_needs_a_description(tmp_path, opener: RecordingOpener) -> None:
    result = CalendarEventHandler(events_dir=tmp_path, url_opener=opener).run(calendar_intent(""))

    assert result.success is False
    assert list(tmp_path.iterdir()) == []
