"""Action handlers that carry out routed intents."""

from __future__ import annotations

import getpass
import glob
import logging
import os
import re
import shutil
import subprocess
import sys
import tempfile
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol
from urllib.parse import quote, quote_plus

from .errors import ActionUnavailable
from .fallback import normalize_platform
from .models import (
    ActionResult,
    ContextSnapshot,
    FallbackDetails,
    FallbackReason,
    FallbackRequest,
    Intent,
    IntentCategory,
)
from .ocr import summarize_text
from .utils import generate_id

logger = logging.getLogger(__name__)

UrlOpener = Callable[[str], object]
Launcher = Callable[[List[str]], object]
ContextProvider = Callable[[], Optional[ContextSnapshot]]

GOOGLE_SEARCH_URL = "https://www.google.com/search?q="
YOUTUBE_SEARCH_URL = "https://www.youtube.com/results?search_query="


class ActionHandler(Protocol):
    def run(self, intent: Intent) -> ActionResult:
        """Carry out ``intent``; raise ``ActionUnavailable`` when blocked."""


# ----------------------------------------------------------------------
# Application catalog
# ----------------------------------------------------------------------


@dataclass(slots=True)
class AppSpec:
    name: str
    display_name: str
    aliases: List[str] = field(default_factory=list)
    windows_path: Optional[str] = None
    mac_path: Optional[str] = None
    linux_path: Optional[str] = None
    url: Optional[str] = None
    download_url: Optional[str] = None

    def path_for(self, platform: str) -> Optional[str]:
        return {"win32": self.windows_path, "darwin": self.mac_path}.get(platform, self.linux_path)


APP_CATALOG: List[AppSpec] = [
    AppSpec(
        "chrome",
        "Google Chrome",
        ["browser", "google chrome", "web browser", "chromium"],
        windows_path=r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        mac_path="/Applications/Google Chrome.app",
        linux_path="google-chrome",
        download_url="https://www.google.com/chrome/",
    ),
    AppSpec(
        "notepad",
        "Notepad",
        ["text editor", "notepad++"],
        windows_path="notepad.exe",
        mac_path="/System/Applications/TextEdit.app",
        linux_path="gedit",
    ),
    AppSpec(
        "calculator",
        "Calculator",
        ["calc", "calculator app"],
        windows_path="calc.exe",
        mac_path="/System/Applications/Calculator.app",
        linux_path="gnome-calculator",
    ),
    AppSpec(
        "explorer",
        "File Explorer",
        ["file explorer", "files", "finder", "file manager"],
        windows_path="explorer.exe",
        mac_path="/System/Library/CoreServices/Finder.app",
        linux_path="nautilus",
    ),
    AppSpec(
        "spotify",
        "Spotify",
        ["music", "spotify app"],
        windows_path=r"C:\Users\%USERNAME%\AppData\Roaming\Spotify\Spotify.exe",
        mac_path="/Applications/Spotify.app",
        linux_path="spotify",
        download_url="https://www.spotify.com/download/",
    ),
    AppSpec(
        "discord",
        "Discord",
        ["discord app"],
        windows_path=r"C:\Users\%USERNAME%\AppData\Local\Discord\app-*\Discord.exe",
        mac_path="/Applications/Discord.app",
        linux_path="discord",
        download_url="https://discord.com/download",
    ),
    AppSpec(
        "vscode",
        "Visual Studio Code",
        ["code", "visual studio code", "vs code"],
        windows_path=r"C:\Users\%USERNAME%\AppData\Local\Programs\Microsoft VS Code\Code.exe",
        mac_path="/Applications/Visual Studio Code.app",
        linux_path="code",
        download_url="https://code.visualstudio.com/download",
    ),
    AppSpec("figma", "Figma", ["figma app"], url="https://www.figma.com"),
    AppSpec(
        "zoom",
        "Zoom",
        ["zoom app", "video call"],
        windows_path=r"C:\Users\%USERNAME%\AppData\Roaming\Zoom\bin\Zoom.exe",
        mac_path="/Applications/zoom.us.app",
        linux_path="zoom",
        download_url="https://zoom.us/download",
    ),
    AppSpec("notion", "Notion", ["notion app", "workspace"], url="https://www.notion.so"),
]


def find_app(name: str, catalog: List[AppSpec] = APP_CATALOG) -> Optional[AppSpec]:
    """Exact lookup by canonical name, display name or alias."""

    wanted = name.strip().lower()
    for spec in catalog:
        if wanted in (spec.name, spec.display_name.lower()) or wanted in spec.aliases:
            return spec
    return None


def app_vocabulary(catalog: List[AppSpec] = APP_CATALOG) -> Dict[str, str]:
    """Every spoken form of an app mapped to its canonical name."""

    vocabulary: Dict[str, str] = {}
    for spec in catalog:
        vocabulary[spec.name] = spec.name
        vocabulary[spec.display_name.lower()] = spec.name
        for alias in spec.aliases:
            vocabulary.setdefault(alias, spec.name)
    return vocabulary


def locate_executable(raw_path: str, platform: str) -> Optional[str]:
    """Resolve a catalog path to something launchable on this machine."""

    if platform == "win32":
        expanded = raw_path.replace("%USERNAME%", getpass.getuser())
        expanded = os.path.expandvars(expanded)
        if "*" in expanded:
            matches = sorted(glob.glob(expanded))
            return matches[-1] if matches else None
        if Path(expanded).exists():
            return expanded
        return shutil.which(expanded)
    if platform == "darwin" and raw_path.startswith("/"):
        return raw_path if Path(raw_path).exists() else None
    return shutil.which(raw_path)


def _default_launcher(argv: List[str]) -> object:
    return subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, start_new_session=True)


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


class OpenAppHandler:
    """Launches desktop apps from the catalog or opens web apps in the browser."""

    def __init__(
        self,
        *,
        platform: str | None = None,
        url_opener: UrlOpener | None = None,
        launcher: Launcher | None = None,
        locator: Callable[[str, str], Optional[str]] = locate_executable,
        catalog: List[AppSpec] | None = None,
    ) -> None:
        self.platform = normalize_platform(platform)
        self._open_url = url_opener or webbrowser.open
        self._launch = launcher or _default_launcher
        self._locate = locator
        self.catalog = catalog if catalog is not None else APP_CATALOG

    def run(self, intent: Intent) -> ActionResult:
        requested = str(intent.extracted_args.get("app", "")).strip()
        if not requested:
            return ActionResult(
                success=False,
                message="Which app should I open?",
                next_steps=['Try "open chrome" or "launch calculator"'],
            )
        spec = find_app(requested, self.catalog)
        if spec is not None and spec.url:
            self._open_url(spec.url)
            return ActionResult(
                success=True,
                message=f"Opening {spec.display_name} in your browser",
                data={"app": spec.name, "type": "web", "url": spec.url},
            )

        raw_path = spec.path_for(self.platform) if spec else requested
        path = self._locate(raw_path, self.platform) if raw_path else None
        display = spec.display_name if spec else requested
        if path is None:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_APP,
                    proposal=f"Install {display}",
                    details=FallbackDetails(app_name=display, app_url=spec.download_url if spec else None),
                )
            )
        argv = ["open", path] if self.platform == "darwin" else [path]
        try:
            self._launch(argv)
        except PermissionError as exc:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_PERMISSION,
                    proposal=f"Allow launching {display}",
                    details=FallbackDetails(app_name=display, permission_type="files"),
                )
            ) from exc
        except FileNotFoundError as exc:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_APP,
                    proposal=f"Install {display}",
                    details=FallbackDetails(app_name=display, app_url=spec.download_url if spec else None),
                )
            ) from exc
        logger.info("Launched %s (%s)", display, path)
        return ActionResult(
            success=True,
            message=f"Launching {display}",
            data={"app": spec.name if spec else requested, "type": "desktop", "path": path},
        )


class WebSearchHandler:
    """Opens a search results page for the intent's query."""

    def __init__(
        self,
        *,
        base_url: str = GOOGLE_SEARCH_URL,
        site_label: str = "the web",
        url_opener: UrlOpener | None = None,
    ) -> None:
        self.base_url = base_url
        self.site_label = site_label
        self._open_url = url_opener or webbrowser.open

    def run(self, intent: Intent) -> ActionResult:
        query = str(intent.extracted_args.get("query", "")).strip()
        if not query:
            return ActionResult(
                success=False,
                message=f"What should I search {self.site_label} for?",
                next_steps=['Try "search for react tutorial"'],
            )
        url = self.base_url + quote_plus(query)
        self._open_url(url)
        return ActionResult(
            success=True,
            message=f'Searching {self.site_label} for "{query}"',
            data={"query": query, "url": url},
            next_steps=[f'Open a web search for "{query}"'],
        )


def youtube_handler(url_opener: UrlOpener | None = None) -> WebSearchHandler:
    return WebSearchHandler(base_url=YOUTUBE_SEARCH_URL, site_label="YouTube", url_opener=url_opener)


SEARCH_ENGINES: Dict[str, str] = {
    "google": GOOGLE_SEARCH_URL,
    "bing": "https://www.bing.com/search?q=",
    "duckduckgo": "https://duckduckgo.com/?q=",
}

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_URL = re.compile(
    r"^(?:[a-z][a-z0-9+.-]*://)?"
    r"(?:localhost|[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*\.[a-z]{2,})"
    r"(?::\d{1,5})?(?:[/?#]\S*)?$",
    re.IGNORECASE,
)


def looks_like_url(text: str) -> bool:
    """True for "github.com", "https://example.org/x" or "localhost:8000"."""

    return bool(_URL.match(text.strip()))


def normalize_url(text: str) -> str:
    text = text.strip()
    if _SCHEME.match(text):
        return text
    scheme = "http" if text.lower().startswith("localhost") else "https"
    return f"{scheme}://{text}"


class OpenUrlHandler:
    """Opens a web address in the browser, or searches for anything else."""

    def __init__(self, *, search_engine: str = "google", url_opener: UrlOpener | None = None) -> None:
        self.search_engine = search_engine if search_engine in SEARCH_ENGINES else "google"
        self._open_url = url_opener or webbrowser.open

    def run(self, intent: Intent) -> ActionResult:
        target = str(intent.extracted_args.get("url", "")).strip()
        if not target:
            return ActionResult(
                success=False,
                message="Which site should I open?",
                next_steps=['Try "go to github.com"'],
            )
        engine = str(intent.extracted_args.get("search_engine", self.search_engine)).lower()
        if looks_like_url(target):
            url = normalize_url(target)
        else:
            url = SEARCH_ENGINES.get(engine, GOOGLE_SEARCH_URL) + quote_plus(target)
        if self._open_url(url) is False:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_APP,
                    proposal="Set a default web browser",
                    details=FallbackDetails(app_name="Web browser", action="open url"),
                )
            )
        return ActionResult(
            success=True,
            message=f"Opening {url}",
            data={"original_url": target, "url": url, "search_engine": engine},
        )


# ----------------------------------------------------------------------
# Calendar events
# ----------------------------------------------------------------------

_DAY = re.compile(r"\b(today|tonight|tomorrow)\b", re.IGNORECASE)
_TIME = re.compile(
    r"\b(?P<at>at\s+)?(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>am|pm)?\b",
    re.IGNORECASE,
)
_DURATION = re.compile(r"\bfor\s+(?P<amount>\d+)\s*(?P<unit>minutes?|mins?|hours?|hrs?)\b", re.IGNORECASE)
_TITLE_EDGES = re.compile(r"^(?:(?:a|an|the|on|at|for)\s+)+|(?:\s+(?:on|at|for))+$", re.IGNORECASE)


@dataclass(slots=True)
class EventDraft:
    title: str
    start: datetime
    end: datetime

    def to_ics(self, uid: str, stamp: datetime) -> str:
        lines = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//ambient-assistant//EN",
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"DTSTAMP:{_ics_time(stamp)}",
            f"DTSTART:{_ics_time(self.start)}",
            f"DTEND:{_ics_time(self.end)}",
            f"SUMMARY:{_ics_escape(self.title)}",
            "END:VEVENT",
            "END:VCALENDAR",
        ]
        return "\r\n".join(lines) + "\r\n"


def _ics_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _ics_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")


def _find_time(text: str) -> Optional[re.Match]:
    # A bare number is only a time with "at", minutes or am/pm attached.
    for match in _TIME.finditer(text):
        if not (match.group("at") or match.group("minute") or match.group("meridiem")):
            continue
        hour = int(match.group("hour"))
        minute = int(match.group("minute") or 0)
        meridiem = (match.group("meridiem") or "").lower()
        if meridiem and not 1 <= hour <= 12:
            continue
        if hour < 24 and minute < 60:
            return match
    return None


def parse_event_request(text: str, now: datetime) -> EventDraft:
    """Turn "standup tomorrow at 9:30 for 15 minutes" into an event.

    Without a time the event starts an hour from ``now`` ("tomorrow" alone
    means this time tomorrow). A time that has already passed today moves
    to tomorrow unless a day was named. Events last an hour by default.
    """

    spans: List[tuple] = []
    day_match = _DAY.search(text)
    day = day_match.group(1).lower() if day_match else None
    if day_match:
        spans.append(day_match.span())

    duration = timedelta(hours=1)
    duration_match = _DURATION.search(text)
    if duration_match:
        amount = int(duration_match.group("amount"))
        unit = duration_match.group("unit").lower()
        duration = timedelta(hours=amount) if unit.startswith("h") else timedelta(minutes=amount)
        spans.append(duration_match.span())

    time_match = _find_time(text)
    base = now.replace(second=0, microsecond=0)
    if time_match:
        spans.append(time_match.span())
        hour = int(time_match.group("hour"))
        minute = int(time_match.group("minute") or 0)
        meridiem = (time_match.group("meridiem") or "").lower()
        if (meridiem == "pm" or (day == "tonight" and not meridiem)) and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        start = base.replace(hour=hour, minute=minute)
        if day == "tomorrow":
            start += timedelta(days=1)
        elif day is None and start <= now:
            start += timedelta(days=1)
    elif day == "tomorrow":
        start = base + timedelta(days=1)
    elif day == "tonight":
        start = base.replace(hour=19, minute=0)
    else:
        start = base + timedelta(hours=1)

    title = text
    for begin, end in sorted(spans, reverse=True):
        title = title[:begin] + " " + title[end:]
    title = _TITLE_EDGES.sub("", " ".join(title.split())).strip()
    title = title[:1].upper() + title[1:] if title else "New Event"
    return EventDraft(title=title, start=start, end=start + duration)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class CalendarEventHandler:
    """Writes the event as an .ics file and hands it to the default calendar app."""

    def __init__(
        self,
        *,
        events_dir: str | Path | None = None,
        url_opener: UrlOpener | None = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.events_dir = (
            Path(events_dir).expanduser() if events_dir else Path(tempfile.gettempdir()) / "ambient-assistant" / "events"
        )
        self._open_url = url_opener or webbrowser.open
        self._clock = clock

    def run(self, intent: Intent) -> ActionResult:
        text = str(intent.extracted_args.get("text", "")).strip()
        if not text:
            return ActionResult(
                success=False,
                message="What should I put on the calendar?",
                next_steps=['Try "schedule standup tomorrow at 9:30"'],
            )
        now = self._clock()
        draft = parse_event_request(text, now)
        uid = generate_id("evt")
        path = self.events_dir / f"{uid}.ics"
        try:
            self.events_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(draft.to_ics(uid, now), encoding="utf-8", newline="")
        except PermissionError as exc:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_PERMISSION,
                    proposal=f"Allow writing calendar files to {self.events_dir}",
                    details=FallbackDetails(permission_type="files", action="create calendar event"),
                )
            ) from exc
        if self._open_url(path.as_uri()) is False:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_APP,
                    proposal="Set up a calendar app",
                    details=FallbackDetails(app_name="Calendar", action="create calendar event"),
                )
            )
        logger.info("Created calendar event %s at %s", draft.title, path)
        return ActionResult(
            success=True,
            message=f'Adding "{draft.title}" on {draft.start.strftime("%a %d %b %H:%M")}',
            data={
                "title": draft.title,
                "start": draft.start.isoformat(),
                "end": draft.end.isoformat(),
                "path": str(path),
            },
            next_steps=["Confirm the event in your calendar app"],
        )


_RECIPIENT = re.compile(r"\bto\s+([^\s,]+)", re.IGNORECASE)
_REQUEST = re.compile(r".*?\b(?:asking for|requesting)\s+", re.IGNORECASE)
_ABOUT = re.compile(r".*?\babout\s+", re.IGNORECASE)


@dataclass(slots=True)
class EmailDraft:
    recipient: str
    subject: str
    body: str

    @property
    def mailto(self) -> str:
        return f"mailto:{self.recipient}?subject={quote(self.subject)}&body={quote(self.body)}"


def parse_email_request(text: str) -> EmailDraft:
    """Pull a recipient, subject and body out of a spoken email request."""

    found = _RECIPIENT.search(text)
    recipient = found.group(1) if found else ""
    lowered = text.lower()
    if "time off" in lowered:
        subject = "Time Off Request"
        body = "I would like to request time off. Please let me know if you need any additional information."
    elif _REQUEST.match(text):
        subject = "Request"
        body = _REQUEST.sub("", text, count=1)
    elif _ABOUT.match(text):
        body = _ABOUT.sub("", text, count=1)
        subject = body[:1].upper() + body[1:]
    else:
        subject = "Email"
        body = text
    return EmailDraft(recipient=recipient, subject=subject, body=body.strip())


class EmailDraftHandler:
    """Opens a pre-filled draft in the default mail client; never sends."""

    def __init__(self, *, url_opener: UrlOpener | None = None) -> None:
        self._open_url = url_opener or webbrowser.open

    def run(self, intent: Intent) -> ActionResult:
        draft = parse_email_request(str(intent.extracted_args.get("text", "")))
        opened = self._open_url(draft.mailto)
        if opened is False:
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_APP,
                    proposal="Configure a default email client",
                    details=FallbackDetails(app_name="Mail", action="draft email"),
                )
            )
        target = f" to {draft.recipient}" if draft.recipient else ""
        return ActionResult(
            success=True,
            message=f"Drafting email{target}",
            data={"recipient": draft.recipient, "subject": draft.subject, "body": draft.body, "url": draft.mailto},
            next_steps=["Review the draft and press send when ready"],
        )


HELP_TEXT = "\n".join(
    [
        "Here is what I can do:",
        'Apps: "open chrome", "launch calculator"',
        'Web search: "search for react tutorial"',
        'Websites: "go to github.com"',
        'Calendar: "schedule standup tomorrow at 9:30"',
        'Email: "email team about the meeting"',
        'YouTube: "youtube react tutorial"',
        'Screen: "summarize this page"',
        'Settings: "show settings"',
    ]
)


class HelpHandler:
    def run(self, intent: Intent) -> ActionResult:
        return ActionResult(success=True, message=HELP_TEXT, data={"type": "help"})


class SummarizeScreenHandler:
    """Summarises the text currently visible in the foreground app."""

    def __init__(self, context_provider: ContextProvider) -> None:
        self._context = context_provider

    def run(self, intent: Intent) -> ActionResult:
        snapshot = self._context()
        text = snapshot.screen_text if snapshot else ""
        if not text.strip():
            raise ActionUnavailable(
                FallbackRequest(
                    reason=FallbackReason.MISSING_PERMISSION,
                    proposal="Enable screen reading to summarise the current window",
                    details=FallbackDetails(permission_type="screen_recording", action="summarize screen"),
                )
            )
        summary = summarize_text(text)
        return ActionResult(
            success=True,
            message=summary,
            data={"app": snapshot.app_name, "window_title": snapshot.window_title, "summary": summary},
        )


class SettingsHandler:
    """Reports the assistant's current settings and component status."""

    def __init__(self, settings_provider: Callable[[], dict]) -> None:
        self._settings = settings_provider

    def run(self, intent: Intent) -> ActionResult:
        settings = self._settings()
        lines = [f"{key}: {value}" for key, value in sorted(settings.items())]
        return ActionResult(success=True, message="\n".join(lines) or "No settings available", data=settings)


def default_handlers(
    *,
    url_opener: UrlOpener | None = None,
    context_provider: ContextProvider | None = None,
    settings_provider: Callable[[], dict] | None = None,
    platform: str | None = None,
    launcher: Launcher | None = None,
    search_engine: str = "google",
    events_dir: str | Path | None = None,
) -> Dict[IntentCategory, ActionHandler]:
    handlers: Dict[IntentCategory, ActionHandler] = {
        IntentCategory.OPEN: OpenAppHandler(platform=platform or sys.platform, url_opener=url_opener, launcher=launcher),
        IntentCategory.SEARCH: WebSearchHandler(url_opener=url_opener),
        IntentCategory.YOUTUBE: youtube_handler(url_opener),
        IntentCategory.EMAIL: EmailDraftHandler(url_opener=url_opener),
        IntentCategory.URL: OpenUrlHandler(search_engine=search_engine, url_opener=url_opener),
        IntentCategory.CALENDAR: CalendarEventHandler(events_dir=events_dir, url_opener=url_opener),
        IntentCategory.HELP: HelpHandler(),
    }
    if context_provider is not None:
        handlers[IntentCategory.SUMMARIZE] = SummarizeScreenHandler(context_provider)
    if settings_provider is not None:
        handlers[IntentCategory.SETTINGS] = SettingsHandler(settings_provider)
    return handlers
