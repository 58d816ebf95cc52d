"""Clarification of ambiguous commands through a text-completion service."""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, List, Optional, Protocol

from .models import Clarification, ContextSnapshot

logger = logging.getLogger(__name__)

CompletionFn = Callable[[str], str]

_NUMBERED_STEP = re.compile(r"^\s*(?:\d+[.)]|[-*])\s+(.*\S)\s*$")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class Clarifier(Protocol):
    def clarify(self, command: str, context: Optional[ContextSnapshot] = None) -> Clarification:
        """Return a structured reading of ``command``; may raise on transport errors."""


def build_prompt(command: str, context: Optional[ContextSnapshot] = None) -> str:
    lines = [
        "You help a desktop assistant understand what the user wants to do.",
        f'User request: "{command}"',
    ]
    if context is not None:
        lines.append(f"Active application: {context.app_name or 'unknown'}")
        if context.window_title:
            lines.append(f"Window title: {context.window_title}")
        if context.user_intent:
            lines.append(f"Inferred activity: {context.user_intent}")
        if context.screen_text:
            lines.append(f"Visible text (excerpt): {context.screen_text[:300]}")
    lines.extend(
        [
            "Reply with JSON only, using this shape:",
            '{"clarifiedIntent": "<one sentence>", "actionSteps": ["<short command>", ...], "context": "<notes>"}',
            'Each action step should read like a command such as "open chrome" or "search for flights".',
        ]
    )
    return "\n".join(lines)


def parse_reply(reply: str, command: str) -> Clarification:
    """Parse a completion reply, tolerating prose around the JSON body."""

    match = _JSON_OBJECT.search(reply or "")
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            steps = [str(step).strip() for step in payload.get("actionSteps", []) if str(step).strip()]
            intent = str(payload.get("clarifiedIntent") or command).strip()
            return Clarification(
                clarified_intent=intent,
                action_steps=steps or [command],
                context=str(payload.get("context") or ""),
                confidence=_confidence(payload.get("confidence")),
            )

    steps: List[str] = []
    for line in (reply or "").splitlines():
        found = _NUMBERED_STEP.match(line)
        if found:
            steps.append(found.group(1))
    if steps:
        return Clarification(clarified_intent=command, action_steps=steps)
    logger.debug("Clarifier reply had no structure; using the command as the only step")
    return Clarification(clarified_intent=command, action_steps=[command])


def _confidence(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    return min(max(number, 0.0), 1.0)


class CompletionClarifier:
    """Clarifier backed by any ``complete(prompt) -> str`` callable."""

    def __init__(self, complete: CompletionFn) -> None:
        self._complete = complete

    def clarify(self, command: str, context: Optional[ContextSnapshot] = None) -> Clarification:
        reply = self._complete(build_prompt(command, context))
        return parse_reply(reply, command)
