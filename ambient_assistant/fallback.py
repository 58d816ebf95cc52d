"""Recovery plans for actions the assistant cannot complete on its own."""

from __future__ import annotations

import dataclasses
import logging
import sys
import webbrowser
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

from .models import FallbackAction, FallbackDetails, FallbackReason, FallbackRequest, FallbackResponse

logger = logging.getLogger(__name__)

UrlOpener = Callable[[str], object]

OAUTH_URLS: Dict[str, str] = {
    "google": "https://accounts.google.com/o/oauth2/v2/auth",
    "microsoft": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    "github": "https://github.com/login/oauth/authorize",
    "slack": "https://slack.com/oauth/v2/authorize",
    "discord": "https://discord.com/api/oauth2/authorize",
    "zoom": "https://zoom.us/oauth/authorize",
    "dropbox": "https://www.dropbox.com/oauth2/authorize",
    "box": "https://account.box.com/api/oauth2/authorize",
}

STORE_SEARCH_URLS: Dict[str, str] = {
    "darwin": "macappstore://search.itunes.apple.com/WebObjects/MZSearch.woa/wa/search?media=software&term=",
    "win32": "ms-windows-store://search/?query=",
    "linux": "https://flathub.org/apps/search?q=",
}

_STORE_NAMES = {"darwin": "the Mac App Store", "win32": "the Microsoft Store", "linux": "your distribution's software center"}


def _mac_privacy(category: str, *extra: str) -> List[str]:
    return [
        "Open System Settings > Privacy & Security",
        f'Select "{category}" from the list',
        "Unlock to make changes if prompted",
        "Add Ambient Assistant to the list of allowed apps",
        *extra,
    ]


def _windows_privacy(category: str, toggle: str) -> List[str]:
    return [
        f"Open Settings > Privacy & security > {category}",
        f'Turn on "{toggle}"',
        "Allow Ambient Assistant in the list of apps",
    ]


PERMISSION_GUIDES: Dict[str, Dict[str, List[str]]] = {
    "darwin": {
        "accessibility": _mac_privacy("Accessibility", "Restart Ambient Assistant after granting permission"),
        "screen_recording": _mac_privacy("Screen Recording", "Restart Ambient Assistant after granting permission"),
        "microphone": _mac_privacy("Microphone"),
        "camera": _mac_privacy("Camera"),
        "files": _mac_privacy("Files and Folders", "Choose the folders the assistant may read"),
    },
    "win32": {
        "accessibility": _windows_privacy("Accessibility", "Let apps access your accessibility features"),
        "microphone": _windows_privacy("Microphone", "Microphone access"),
        "camera": _windows_privacy("Camera", "Camera access"),
        "files": _windows_privacy("File system", "File system access"),
    },
    "linux": {
        "microphone": [
            "Open your desktop's Settings > Privacy > Microphone",
            "Make sure microphone access is enabled",
            "Check that the input device is not muted in the sound settings",
        ],
        "screen_recording": [
            "On Wayland, allow screen sharing when the portal dialog appears",
            "Or log in to an X11 session so the screen can be captured",
        ],
    },
}

_GENERIC_PERMISSION_STEPS: Dict[str, List[str]] = {
    "darwin": [
        "Open System Settings > Privacy & Security",
        "Find the relevant permission category",
        "Add Ambient Assistant to the allowed apps",
    ],
    "win32": [
        "Open Settings > Privacy & security",
        "Find the relevant permission category",
        "Allow Ambient Assistant in the list of apps",
    ],
    "linux": [
        "Open your desktop's privacy settings",
        "Find the relevant permission category",
        "Grant access to Ambient Assistant",
    ],
}

SCRIPT_STEPS = [
    "Analyse the requested action",
    "Generate an automation script for it",
    "Test the generated script in a safe dry run",
    "Cache the script for future use",
    "Offer to install any app the script needs",
]

SCRIPT_HINTS = [
    (("calendar", "event", "meeting"), ["Set up calendar integration if it is not configured", "Grant calendar access if needed"]),
    (("email", "mail"), ["Set up mail integration if it is not configured", "Configure email accounts if needed"]),
]

UNKNOWN_ACTION_STEPS = [
    "Try rephrasing your request",
    "Break complex actions into simpler steps",
    "Check that the required app is installed",
    "Verify that the necessary permissions are granted",
]


def normalize_platform(platform: str | None = None) -> str:
    name = (platform or sys.platform).lower()
    if name.startswith("win"):
        return "win32"
    if name in {"darwin", "mac", "macos", "osx"}:
        return "darwin"
    return "linux"


class FallbackResolver:
    """Turns a ``FallbackRequest`` into actionable next steps.

    Resolution never raises. At most one external URL (a store search or an
    OAuth page) is opened through ``url_opener``.
    """

    def __init__(self, platform: str | None = None, url_opener: UrlOpener | None = None) -> None:
        self.platform = normalize_platform(platform)
        self._open_url = url_opener or webbrowser.open
        self._handlers: Dict[FallbackReason, Callable[[FallbackRequest, FallbackDetails], FallbackResponse]] = {
            FallbackReason.MISSING_APP: self._missing_app,
            FallbackReason.MISSING_OAUTH: self._missing_oauth,
            FallbackReason.MISSING_PERMISSION: self._missing_permission,
            FallbackReason.MISSING_SCRIPT: self._missing_script,
            FallbackReason.UNKNOWN_ACTION: self._unknown_action,
        }

    def resolve(self, request: FallbackRequest) -> FallbackResponse:
        try:
            reason = FallbackReason(request.reason)
        except ValueError:
            logger.warning("Unrecognised fallback reason: %r", request.reason)
            return FallbackResponse(
                success=False,
                message=f"Unknown fallback reason: {request.reason}",
                action=FallbackAction.MANUAL_INSTRUCTION,
                next_steps=list(UNKNOWN_ACTION_STEPS),
            )
        details = request.details or FallbackDetails()
        try:
            response = self._handlers[reason](request, details)
        except Exception:
            logger.exception("Fallback handler for %s failed", reason.value)
            return FallbackResponse(
                success=False,
                message=f"Could not prepare a recovery plan for {reason.value}.",
                action=FallbackAction.MANUAL_INSTRUCTION,
                next_steps=list(UNKNOWN_ACTION_STEPS),
            )
        logger.info("Fallback %s -> %s", reason.value, response.action.value)
        return response

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _missing_app(self, request: FallbackRequest, details: FallbackDetails) -> FallbackResponse:
        if not details.app_name:
            return _needs_detail("App name")
        store = _STORE_NAMES[self.platform]
        steps: List[str] = []
        if details.app_url:
            steps.append(f"Open {details.app_url} in your browser and download {details.app_name}")
            steps.append(f"Or install it from {store} if available")
        else:
            steps.append(f"Search for {details.app_name} in {store}")
            steps.append("Or download it from the official website")
        steps.append(f"Run the command again once {details.app_name} is installed")
        self._open(STORE_SEARCH_URLS[self.platform] + quote(details.app_name))
        return FallbackResponse(
            success=True,
            message=f'App "{details.app_name}" is not installed. Install it to continue.',
            action=FallbackAction.INSTALL_APP,
            next_steps=steps,
        )

    def _missing_oauth(self, request: FallbackRequest, details: FallbackDetails) -> FallbackResponse:
        provider = details.oauth_provider
        if not provider:
            return _needs_detail("OAuth provider")
        url = OAUTH_URLS.get(provider.strip().lower())
        if url:
            steps = [
                f"Open the {provider} authorization page",
                "Complete the authorization flow",
                "Copy the authorization code or token",
                "Add the token in the assistant settings",
            ]
            self._open(url)
        else:
            steps = [f"Search for the {provider} OAuth documentation", "Follow the official OAuth setup guide"]
        return FallbackResponse(
            success=True,
            message=f"An OAuth token for {provider} is required. Complete the authorization flow.",
            action=FallbackAction.OPEN_OAUTH,
            next_steps=steps,
        )

    def _missing_permission(self, request: FallbackRequest, details: FallbackDetails) -> FallbackResponse:
        permission = details.permission_type
        if not permission:
            return _needs_detail("Permission type")
        guides = PERMISSION_GUIDES.get(self.platform, {})
        steps = guides.get(permission.strip().lower()) or _GENERIC_PERMISSION_STEPS[self.platform]
        return FallbackResponse(
            success=True,
            message=f"The {permission} permission is required. Grant it in the system settings.",
            action=FallbackAction.REQUEST_PERMISSION,
            next_steps=list(steps),
        )

    def _missing_script(self, request: FallbackRequest, details: FallbackDetails) -> FallbackResponse:
        action = details.action or request.proposal or "unknown action"
        steps = list(SCRIPT_STEPS)
        lowered = action.lower()
        for keywords, hints in SCRIPT_HINTS:
            if any(keyword in lowered for keyword in keywords):
                steps.extend(hints)
        return FallbackResponse(
            success=True,
            message=f"A new automation script is needed for: {action}.",
            action=FallbackAction.GENERATE_SCRIPT,
            next_steps=steps,
        )

    def _unknown_action(self, request: FallbackRequest, details: FallbackDetails) -> FallbackResponse:
        action = details.action or request.proposal or "unspecified"
        return FallbackResponse(
            success=False,
            message=f"Unknown action requested: {action}. The assistant cannot perform it.",
            action=FallbackAction.MANUAL_INSTRUCTION,
            next_steps=list(UNKNOWN_ACTION_STEPS),
        )

    def _open(self, url: str) -> None:
        try:
            self._open_url(url)
        except Exception:
            logger.warning("Failed to open %s", url, exc_info=True)


def _needs_detail(label: str) -> FallbackResponse:
    return FallbackResponse(
        success=False,
        message=f"{label} was not specified in the fallback request.",
        action=FallbackAction.MANUAL_INSTRUCTION,
        next_steps=list(UNKNOWN_ACTION_STEPS),
    )


def fallback_tool_schema() -> List[dict]:
    """Tool definition for completion services that can ask for a fallback."""

    return [
        {
            "name": "fallback_request",
            "description": "Request recovery guidance for a missing app, OAuth token, permission or script",
            "parameters": {
                "type": "object",
                "properties": {
                    "reason": {
                        "type": "string",
                        "enum": [reason.value for reason in FallbackReason],
                        "description": "Why the action cannot proceed",
                    },
                    "proposal": {"type": "string", "description": "What needs to be done, in plain words"},
                    "details": {
                        "type": "object",
                        "properties": {
                            "app_name": {"type": "string", "description": "App that needs to be installed"},
                            "app_url": {"type": "string", "description": "Download URL for the app"},
                            "oauth_provider": {"type": "string", "description": "Provider that needs authorization"},
                            "permission_type": {"type": "string", "description": "Permission that is missing"},
                            "action": {"type": "string", "description": "Action that could not be performed"},
                        },
                    },
                },
                "required": ["reason", "proposal"],
            },
        }
    ]


def request_from_mapping(payload: dict) -> FallbackRequest:
    """Build a request from a tool-call payload; camelCase keys are accepted."""

    raw_details: Optional[dict] = payload.get("details") or {}
    aliases = {"appName": "app_name", "appUrl": "app_url", "oauthProvider": "oauth_provider", "permissionType": "permission_type"}
    renamed = {aliases.get(key, key): value for key, value in raw_details.items()}
    known = {field.name: renamed.get(field.name) for field in dataclasses.fields(FallbackDetails)}
    return FallbackRequest(
        reason=payload.get("reason", ""),
        proposal=str(payload.get("proposal", "")),
        details=FallbackDetails(**known),
    )
