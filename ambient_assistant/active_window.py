"""Foreground window inspection for the screen sentinel."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

try:  # pragma: no cover - optional dependency
    import psutil  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    psutil = None  # type: ignore

_COMMAND_TIMEOUT_S = 2.0


@dataclass(slots=True)
class ActiveWindowInfo:
    """Details describing the current foreground window."""

    title: str
    process_name: str
    process_path: Optional[Path] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rect: tuple[int, int, int, int] = (0, 0, 0, 0)
    handle: int = 0

    @property
    def app_label(self) -> str:
        if self.process_name:
            return self.process_name
        if self.process_path:
            return self.process_path.name
        return "Unknown"


class ActiveWindowProvider:
    """Reads foreground window metadata on Windows, macOS and Linux (X11)."""

    def __init__(self, platform: str | None = None) -> None:
        self.platform = platform or sys.platform
        self._supported = False
        self._init_platform()

    def _init_platform(self) -> None:
        if self.platform.startswith("win"):
            self._supported = self._init_win32()
        elif self.platform == "darwin":
            self._supported = shutil.which("osascript") is not None
        elif self.platform.startswith("linux"):
            self._supported = shutil.which("xdotool") is not None
        if not self._supported:
            logger.warning("Active window monitoring is unavailable on %s", self.platform)

    def is_supported(self) -> bool:
        return self._supported

    def current(self) -> Optional[ActiveWindowInfo]:
        if not self._supported:
            return None
        if self.platform.startswith("win"):
            return self._current_win32()
        if self.platform == "darwin":
            return self._current_macos()
        return self._current_linux()

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def _init_win32(self) -> bool:
        try:
            import ctypes
            from ctypes import wintypes

            self._ctypes = ctypes  # type: ignore[attr-defined]
            self._wintypes = wintypes  # type: ignore[attr-defined]
            self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        except (ImportError, AttributeError, OSError) as exc:  # pragma: no cover - platform specific
            logger.warning("Failed to initialise Win32 window access: %s", exc)
            return False
        return True

    def _current_win32(self) -> Optional[ActiveWindowInfo]:  # pragma: no cover - platform specific
        user32 = self._user32
        hwnd = user32.GetForegroundWindow()
        if not hwnd:
            return None
        length = user32.GetWindowTextLengthW(hwnd) or 1024
        buffer = self._ctypes.create_unicode_buffer(length + 1)
        user32.GetWindowTextW(hwnd, buffer, length + 1)
        pid = self._wintypes.DWORD()
        user32.GetWindowThreadProcessId(hwnd, self._ctypes.byref(pid))
        rect = self._wintypes.RECT()
        bounds = (0, 0, 0, 0)
        if user32.GetWindowRect(hwnd, self._ctypes.byref(rect)):
            bounds = (rect.left, rect.top, rect.right, rect.bottom)
        name, path = process_details(int(pid.value))
        return ActiveWindowInfo(
            title=buffer.value.strip(),
            process_name=name,
            process_path=path,
            rect=bounds,
            handle=int(hwnd),
        )

    # ------------------------------------------------------------------
    # macOS
    # ------------------------------------------------------------------

    _MACOS_SCRIPT = (
        'tell application "System Events"\n'
        "  set frontProc to first application process whose frontmost is true\n"
        "  set appName to name of frontProc\n"
        '  set winTitle to ""\n'
        "  try\n"
        "    set winTitle to name of first window of frontProc\n"
        "  end try\n"
        "end tell\n"
        'return appName & "|" & winTitle'
    )

    def _current_macos(self) -> Optional[ActiveWindowInfo]:
        output = _run(["osascript", "-e", self._MACOS_SCRIPT])
        if not output:
            return None
        app_name, _, title = output.partition("|")
        return ActiveWindowInfo(title=title.strip(), process_name=app_name.strip())

    # ------------------------------------------------------------------
    # Linux
    # ------------------------------------------------------------------

    def _current_linux(self) -> Optional[ActiveWindowInfo]:
        window_id = _run(["xdotool", "getactivewindow"])
        if not window_id:
            return None
        title = _run(["xdotool", "getwindowname", window_id]) or ""
        pid_text = _run(["xdotool", "getwindowpid", window_id]) or ""
        name, path = process_details(int(pid_text)) if pid_text.isdigit() else ("", None)
        return ActiveWindowInfo(
            title=title,
            process_name=name,
            process_path=path,
            rect=_linux_geometry(window_id),
            handle=int(window_id) if window_id.isdigit() else 0,
        )


def _linux_geometry(window_id: str) -> tuple[int, int, int, int]:
    output = _run(["xdotool", "getwindowgeometry", "--shell", window_id])
    if not output:
        return (0, 0, 0, 0)
    values: dict[str, int] = {}
    for line in output.splitlines():
        key, _, value = line.partition("=")
        if value.strip().lstrip("-").isdigit():
            values[key.strip()] = int(value)
    left, top = values.get("X", 0), values.get("Y", 0)
    return (left, top, left + values.get("WIDTH", 0), top + values.get("HEIGHT", 0))


def _run(command: list[str]) -> Optional[str]:
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=_COMMAND_TIMEOUT_S,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Command %s failed: %s", command[0], exc)
        return None
    return completed.stdout.strip()


def process_details(pid: int) -> tuple[str, Optional[Path]]:
    """Resolve process name and executable path for ``pid`` via psutil."""

    if pid <= 0 or psutil is None:
        return "", None
    try:
        proc = psutil.Process(pid)
        name = proc.name()
        exe = proc.exe()
    except (psutil.AccessDenied, psutil.NoSuchProcess, psutil.ZombieProcess):  # type: ignore[attr-defined]
        return "", None
    return name, Path(exe) if exe else None
