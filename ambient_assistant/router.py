"""Free-text command routing with a confirmation step for clarified commands."""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from rapidfuzz import fuzz, process

from .actions import ActionHandler, app_vocabulary, looks_like_url
from .clarifier import Clarifier
from .errors import ActionUnavailable
from .fallback import FallbackResolver
from .models import (
    ActionResult,
    Clarification,
    CommandHistoryEntry,
    CommandResponse,
    ConfirmationResponse,
    ContextSnapshot,
    FallbackDetails,
    FallbackReason,
    FallbackRequest,
    Intent,
    IntentCategory,
    RouteStatus,
    RoutingOutcome,
    StepResult,
)
from .utils import generate_id, normalize_text, utcnow

logger = logging.getLogger(__name__)

HistoryRecorder = Callable[[CommandHistoryEntry], None]

# Leading phrase -> category. Longest phrase wins, so "open settings" beats "open".
PHRASE_TABLE: Dict[IntentCategory, List[str]] = {
    IntentCategory.OPEN: ["open", "launch", "start", "run"],
    IntentCategory.SEARCH: ["search for", "search", "google", "look up", "find"],
    IntentCategory.EMAIL: ["email", "send an email to", "send email to", "write an email to", "draft an email to"],
    IntentCategory.YOUTUBE: ["youtube", "search youtube for", "play", "watch", "video"],
    IntentCategory.SUMMARIZE: ["summarize", "summarise", "summarize this", "summarize this page", "tldr"],
    IntentCategory.SETTINGS: ["settings", "open settings", "show settings", "preferences"],
    IntentCategory.URL: ["go to", "visit", "browse to", "navigate to", "open url", "open website", "open site"],
    IntentCategory.CALENDAR: ["schedule", "add event", "create event", "add an event", "add to my calendar", "put on my calendar"],
    IntentCategory.HELP: ["help", "what can you do"],
}

SYNONYMS: Dict[str, IntentCategory] = {
    "compose": IntentCategory.EMAIL,
    "send": IntentCategory.EMAIL,
    "mail": IntentCategory.EMAIL,
    "browse": IntentCategory.SEARCH,
    "lookup": IntentCategory.SEARCH,
    "query": IntentCategory.SEARCH,
    "boot": IntentCategory.OPEN,
    "load": IntentCategory.OPEN,
    "stream": IntentCategory.YOUTUBE,
    "recap": IntentCategory.SUMMARIZE,
    "summary": IntentCategory.SUMMARIZE,
    "configure": IntentCategory.SETTINGS,
    "config": IntentCategory.SETTINGS,
    "navigate": IntentCategory.URL,
    "website": IntentCategory.URL,
    "calendar": IntentCategory.CALENDAR,
    "appointment": IntentCategory.CALENDAR,
}

# Categories whose remainder text becomes an argument, and under which key.
ARGUMENT_KEYS: Dict[IntentCategory, str] = {
    IntentCategory.OPEN: "app",
    IntentCategory.SEARCH: "query",
    IntentCategory.YOUTUBE: "query",
    IntentCategory.EMAIL: "text",
    IntentCategory.URL: "url",
    IntentCategory.CALENDAR: "text",
}

EXAMPLE_COMMANDS = [
    "open chrome",
    "search for react tutorial",
    "go to github.com",
    "schedule standup tomorrow at 9:30",
    "email team about the meeting",
    "youtube react tutorial",
    "summarize this page",
    "help",
]

AFFIRMATIVE = {"yes", "y", "yeah", "yep", "sure", "ok", "okay", "go ahead", "proceed", "confirm", "do it"}

_LEADING_FILLERS = ("please", "can you", "could you", "would you", "will you", "hey assistant", "hey", "assistant")
_TRAILING_FILLERS = ("please", "for me", "thanks", "thank you", "now")
_ARTICLES = ("the ", "a ", "an ", "for ", "about ")
_PUNCTUATION = re.compile(r"[?!.,;:]+$")

FUZZY_CUTOFF = 70.0
FUZZY_CEILING = 0.95
SYNONYM_CONFIDENCE = 0.9


def normalize_command(raw: str) -> str:
    """Case-fold, trim and strip polite fillers from a command."""

    text = normalize_text(raw).lower()
    text = _PUNCTUATION.sub("", text).strip()
    changed = True
    while changed and text:
        changed = False
        for filler in _LEADING_FILLERS:
            if text == filler:
                continue
            if text.startswith(filler + " ") or text.startswith(filler + ","):
                text = text[len(filler) + 1 :].lstrip(" ,")
                changed = True
        for filler in _TRAILING_FILLERS:
            if text.endswith(" " + filler):
                text = text[: -len(filler) - 1].rstrip(" ,")
                changed = True
    return text


def _strip_articles(text: str) -> str:
    for article in _ARTICLES:
        if text.startswith(article):
            return text[len(article) :]
    return text


def _original_case(raw_command: str, text: str) -> str:
    """Recover ``text`` as the user typed it; normalisation lowercases."""

    index = raw_command.lower().rfind(text)
    if not text or index < 0:
        return text
    return raw_command[index : index + len(text)]


@dataclass(slots=True)
class PendingConfirmation:
    request_id: str
    session_id: str
    command: str
    clarification: Clarification
    context: Optional[ContextSnapshot]
    expires_at: datetime


class CommandRouter:
    """Maps commands to intents and dispatches them to action handlers.

    Routing tries an exact phrase table first, then fuzzy and synonym
    matching, then an optional clarifier. A clarified command is parked as a
    pending confirmation and runs only after ``confirm``.
    """

    def __init__(
        self,
        handlers: Mapping[IntentCategory, ActionHandler] | None = None,
        *,
        resolver: FallbackResolver | None = None,
        clarifier: Clarifier | None = None,
        clarifier_timeout_ms: int = 2_500,
        confirmation_ttl_s: float = 120.0,
        history_limit: int = 100,
        history: Iterable[CommandHistoryEntry] = (),
        recorder: HistoryRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._handlers: Dict[IntentCategory, ActionHandler] = dict(handlers or {})
        self.resolver = resolver or FallbackResolver()
        self.clarifier = clarifier
        self.clarifier_timeout_s = clarifier_timeout_ms / 1000
        self.confirmation_ttl = timedelta(seconds=confirmation_ttl_s)
        self._history: Deque[CommandHistoryEntry] = deque(history, maxlen=history_limit)
        self._recorder = recorder
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingConfirmation] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._phrases: List[Tuple[str, IntentCategory]] = sorted(
            ((phrase, category) for category, phrases in PHRASE_TABLE.items() for phrase in phrases),
            key=lambda item: len(item[0]),
            reverse=True,
        )
        self._verbs: Dict[str, IntentCategory] = {
            phrase: category for phrase, category in self._phrases if " " not in phrase
        }
        self._apps = app_vocabulary()

    def register(self, category: IntentCategory, handler: ActionHandler) -> None:
        self._handlers[category] = handler

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(
        self,
        raw_command: str,
        context: ContextSnapshot | None = None,
        session_id: str = "default",
    ) -> Tuple[Intent, RoutingOutcome]:
        self._discard_expired()
        intent = self._route_local(raw_command)
        if intent is not None:
            strategy = "exact" if intent.confidence >= 1.0 else "fuzzy"
            logger.debug("Routed %r to %s via %s (%.2f)", raw_command, intent.function_name, strategy, intent.confidence)
            return intent, RoutingOutcome(status=RouteStatus.RESOLVED, strategy=strategy)

        clarification = self._clarify(raw_command, context)
        if clarification is None:
            unknown = Intent(function_name=IntentCategory.UNKNOWN.value, confidence=0.0, raw_command=raw_command)
            return unknown, RoutingOutcome(status=RouteStatus.UNRESOLVED, strategy="none")

        request_id = generate_id("clr")
        clarification.request_id = request_id
        pending = PendingConfirmation(
            request_id=request_id,
            session_id=session_id,
            command=raw_command,
            clarification=clarification,
            context=context,
            expires_at=self._clock() + self.confirmation_ttl,
        )
        with self._lock:
            for stale in [rid for rid, entry in self._pending.items() if entry.session_id == session_id]:
                del self._pending[stale]
            self._pending[request_id] = pending
        intent = Intent(
            function_name=IntentCategory.CLARIFIED.value,
            confidence=clarification.confidence,
            raw_command=raw_command,
            extracted_args={
                "clarified_intent": clarification.clarified_intent,
                "action_steps": list(clarification.action_steps),
            },
        )
        return intent, RoutingOutcome(
            status=RouteStatus.NEEDS_CONFIRMATION,
            clarification=clarification,
            request_id=request_id,
            strategy="clarifier",
        )

    def _discard_expired(self) -> None:
        now = self._clock()
        with self._lock:
            for stale in [rid for rid, entry in self._pending.items() if entry.expires_at < now]:
                logger.debug("Dropping expired confirmation %s", stale)
                del self._pending[stale]

    def _route_local(self, raw_command: str) -> Optional[Intent]:
        command = normalize_command(raw_command)
        if not command:
            return None
        return self._match_exact(command, raw_command) or self._match_fuzzy(command, raw_command)

    def _match_exact(self, command: str, raw_command: str) -> Optional[Intent]:
        for phrase, category in self._phrases:
            if command == phrase or command.startswith(phrase + " "):
                remainder = command[len(phrase) :].strip()
                category = self._retarget(category, remainder)
                args = self._arguments(category, remainder, raw_command)
                if args is None:
                    continue
                quality = args.pop("app_match", 100.0)
                confidence = 1.0 if quality >= 100.0 else round(quality / 100 * FUZZY_CEILING, 4)
                return Intent(category.value, confidence, raw_command, args)
        return None

    def _match_fuzzy(self, command: str, raw_command: str) -> Optional[Intent]:
        head, _, remainder = command.partition(" ")
        remainder = remainder.strip()

        category = SYNONYMS.get(head)
        score = SYNONYM_CONFIDENCE
        if category is None:
            best = process.extractOne(head, list(self._verbs), scorer=fuzz.ratio, score_cutoff=FUZZY_CUTOFF)
            if best is None:
                best = process.extractOne(head, list(SYNONYMS), scorer=fuzz.ratio, score_cutoff=FUZZY_CUTOFF)
                if best is None:
                    return self._match_whole_phrase(command, raw_command)
                category = SYNONYMS[best[0]]
            else:
                category = self._verbs[best[0]]
            score = best[1] / 100 * FUZZY_CEILING

        category = self._retarget(category, remainder)
        args = self._arguments(category, remainder, raw_command)
        if args is None:
            return None
        if category is IntentCategory.OPEN and args.get("app_match", 100.0) < 100.0:
            score *= args["app_match"] / 100
        args.pop("app_match", None)
        return Intent(category.value, round(min(score, FUZZY_CEILING), 4), raw_command, args)

    def _match_whole_phrase(self, command: str, raw_command: str) -> Optional[Intent]:
        # Argument-free commands such as "waht can you do".
        candidates = {
            phrase: category
            for phrase, category in self._phrases
            if category not in ARGUMENT_KEYS
        }
        best = process.extractOne(command, list(candidates), scorer=fuzz.ratio, score_cutoff=85.0)
        if best is None:
            return None
        return Intent(candidates[best[0]].value, round(best[1] / 100 * FUZZY_CEILING, 4), raw_command, {})

    def _retarget(self, category: IntentCategory, remainder: str) -> IntentCategory:
        # "open github.com" is a web address, not an app.
        if category is IntentCategory.OPEN:
            target = _strip_articles(remainder)
            if target not in self._apps and looks_like_url(target):
                return IntentCategory.URL
        return category

    def _arguments(self, category: IntentCategory, remainder: str, raw_command: str = "") -> Optional[dict]:
        key = ARGUMENT_KEYS.get(category)
        if key is None:
            return {}
        if category is IntentCategory.URL:
            target = _strip_articles(remainder)
            return {"url": _original_case(raw_command, target)} if target else None
        if category is IntentCategory.CALENDAR:
            return {"text": _original_case(raw_command, remainder)}
        if category is IntentCategory.OPEN:
            if not remainder:
                return None
            app, quality = self._resolve_app(_strip_articles(remainder))
            return {"app": app, "app_match": quality}
        if category is IntentCategory.EMAIL:
            return {"text": remainder}
        return {key: _strip_articles(remainder) if remainder.startswith("for ") else remainder}

    def _resolve_app(self, name: str) -> Tuple[str, float]:
        if name in self._apps:
            return self._apps[name], 100.0
        best = process.extractOne(name, list(self._apps), scorer=fuzz.ratio, score_cutoff=FUZZY_CUTOFF)
        if best is None:
            return name, 100.0
        return self._apps[best[0]], float(best[1])

    def _clarify(self, command: str, context: ContextSnapshot | None) -> Optional[Clarification]:
        if self.clarifier is None:
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="clarifier")
        future = self._executor.submit(self.clarifier.clarify, command, context)
        try:
            clarification = future.result(timeout=self.clarifier_timeout_s)
        except FutureTimeout:
            future.cancel()
            logger.warning("Clarifier timed out after %.1fs for %r", self.clarifier_timeout_s, command)
            return None
        except Exception:
            logger.exception("Clarifier failed for %r", command)
            return None
        if not clarification.action_steps:
            return None
        return clarification

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def dispatch(self, intent: Intent) -> ActionResult:
        """Run the handler for ``intent``; failures come back as results."""

        handler = self._handlers.get(intent.category)
        if handler is None:
            return self.fallback(
                FallbackRequest(
                    reason=FallbackReason.MISSING_SCRIPT,
                    proposal=f"Automate: {intent.raw_command}",
                    details=FallbackDetails(action=intent.raw_command),
                )
            )
        try:
            return handler.run(intent)
        except ActionUnavailable as exc:
            logger.info("Action %s unavailable: %s", intent.function_name, exc)
            return self.fallback(exc.request)
        except Exception as exc:
            logger.exception("Handler for %s failed", intent.function_name)
            return ActionResult(success=False, message=f"Could not {intent.function_name}: {exc}")

    def fallback(self, request: FallbackRequest) -> ActionResult:
        response = self.resolver.resolve(request)
        return ActionResult(
            success=False,
            message=response.message,
            next_steps=list(response.next_steps),
            fallback=response,
        )

    def execute(
        self,
        raw_command: str,
        context: ContextSnapshot | None = None,
        session_id: str = "default",
    ) -> CommandResponse:
        if not raw_command or not raw_command.strip():
            return CommandResponse(success=False, error="Command is empty")
        intent, outcome = self.route(raw_command, context, session_id)

        if outcome.status is RouteStatus.NEEDS_CONFIRMATION:
            return CommandResponse(
                success=True,
                intent=intent,
                needs_confirmation=True,
                clarification=outcome.clarification,
            )
        if outcome.status is RouteStatus.UNRESOLVED:
            result = self.fallback(
                FallbackRequest(
                    reason=FallbackReason.UNKNOWN_ACTION,
                    proposal=raw_command,
                    details=FallbackDetails(action=raw_command),
                )
            )
        else:
            result = self.dispatch(intent)
        self._record(raw_command, result)
        return CommandResponse(
            success=result.success,
            result=result,
            error=None if result.success else result.message,
            intent=intent,
        )

    def confirm(self, request_id: str, confirmation: str | bool) -> ConfirmationResponse:
        """Run or discard a parked clarification."""

        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            return ConfirmationResponse(success=False, executed=False, message="No pending request with that id")
        if self._clock() > pending.expires_at:
            logger.info("Confirmation %s expired", request_id)
            return ConfirmationResponse(success=False, executed=False, message="The pending request has expired")
        if not _is_affirmative(confirmation):
            return ConfirmationResponse(success=True, executed=False, message="Execution cancelled by user")

        results: List[StepResult] = []
        for step in pending.clarification.action_steps:
            intent = self._route_local(step)
            if intent is None:
                intent = Intent(IntentCategory.UNKNOWN.value, 0.0, step)
                result = self.fallback(
                    FallbackRequest(
                        reason=FallbackReason.UNKNOWN_ACTION,
                        proposal=step,
                        details=FallbackDetails(action=step),
                    )
                )
            else:
                result = self.dispatch(intent)
            results.append(StepResult(step=step, intent=intent, result=result))
        succeeded = all(step.result.success for step in results)
        self._record(pending.command, results[-1].result if results else ActionResult(False, "No steps"), succeeded)
        done = sum(1 for step in results if step.result.success)
        return ConfirmationResponse(
            success=succeeded,
            executed=True,
            results=results,
            message=f"Completed {done} of {len(results)} step(s)",
        )

    def pending_for(self, session_id: str = "default") -> Optional[Clarification]:
        with self._lock:
            for entry in self._pending.values():
                if entry.session_id == session_id:
                    return entry.clarification
        return None

    # ------------------------------------------------------------------
    # History and suggestions
    # ------------------------------------------------------------------

    def _record(self, command: str, result: ActionResult, success: bool | None = None) -> None:
        entry = CommandHistoryEntry(
            command=command.strip(),
            success=result.success if success is None else success,
            timestamp=self._clock(),
            result_summary=result.message[:200],
        )
        with self._lock:
            self._history.append(entry)
        if self._recorder is not None:
            try:
                self._recorder(entry)
            except Exception:
                logger.exception("Failed to persist command history")

    def history(self, limit: int = 10) -> List[CommandHistoryEntry]:
        """Most recent entries first."""

        with self._lock:
            return list(reversed(self._history))[:limit]

    def suggestions(self, partial: str, limit: int = 5) -> List[str]:
        query = normalize_text(partial).lower()
        with self._lock:
            entries = [entry for entry in self._history if entry.success]

        frequency: Counter[str] = Counter()
        last_seen: Dict[str, int] = {}
        display: Dict[str, str] = {}
        for index, entry in enumerate(entries):
            key = entry.command.lower()
            if query and query not in key:
                continue
            frequency[key] += 1
            last_seen[key] = index
            display[key] = entry.command
        ranked = sorted(
            frequency,
            key=lambda key: (not key.startswith(query), -frequency[key], -last_seen[key]),
        )

        phrases = [phrase for table in PHRASE_TABLE.values() for phrase in table]
        apps = [f"open {name}" for name in sorted(set(self._apps.values()))]
        statics = EXAMPLE_COMMANDS + phrases + apps
        matching = [phrase for phrase in statics if not query or query in phrase]
        matching.sort(key=lambda phrase: not phrase.startswith(query))

        results: List[str] = []
        seen = set()
        for candidate in [display[key] for key in ranked] + matching:
            if candidate.lower() in seen:
                continue
            seen.add(candidate.lower())
            results.append(candidate)
            if len(results) >= limit:
                break
        return results

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)


def _is_affirmative(confirmation: str | bool) -> bool:
    if isinstance(confirmation, bool):
        return confirmation
    return normalize_command(str(confirmation)) in AFFIRMATIVE
