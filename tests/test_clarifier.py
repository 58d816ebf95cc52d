"""Tests for clarifier prompts and reply parsing."""

from __future__ import annotations

from datetime import datetime

from ambient_assistant.clarifier import CompletionClarifier, build_prompt, parse_reply
from ambient_assistant.models import ContextSnapshot, ScreenSnapshot


def test_json_reply_embedded_in_prose() -> None:
    reply = (
        "Sure! Here is what I think:\n"
        '{"clarifiedIntent": "Check the weather", "actionSteps": ["search for weather today", " "],'
        ' "context": "morning", "confidence": 1.7}\nHope that helps.'
    )

    clarification = parse_reply(reply, "what's it like outside")

    assert clarification.clarified_intent == "Check the weather"
    assert clarification.action_steps == ["search for weather today"]
    assert clarification.context == "morning"
    assert clarification.confidence == 1.0


def test_numbered_lines_become_steps() -> None:
    reply = "1. open chrome\n2) search for flights\n- email bob about the trip\nThat's it."

    clarification = parse_reply(reply, "plan my trip")

    assert clarification.action_steps == ["open chrome", "search for flights", "email bob about the trip"]
    assert clarification.clarified_intent == "plan my trip"
    assert clarification.confidence == 0.5


def test_unstructured_reply_uses_command_as_single_step() -> None:
    clarification = parse_reply("I am not sure what you mean.", "do the thing")

    assert clarification.action_steps == ["do the thing"]


def test_broken_json_falls_through_to_lines() -> None:
    clarification = parse_reply('{"clarifiedIntent": oops}\n1. help', "help me")

    assert clarification.action_steps == ["help"]


def test_prompt_includes_context_excerpt() -> None:
    now = datetime(2024, 5, 6, 9, 0)
    screen = ScreenSnapshot("Outlook", "Inbox", "Meeting moved to 3pm", "h", now)
    context = ContextSnapshot(
        app_name="Outlook",
        window_title="Inbox",
        screen_snapshot=screen,
        user_intent="email_composition",
        timestamp=now,
    )

    prompt = build_prompt("reply to that", context)

    assert 'User request: "reply to that"' in prompt
    assert "Active application: Outlook" in prompt
    assert "Meeting moved to 3pm" in prompt
    assert "actionSteps" in prompt


def test_completion_clarifier_passes_prompt_through() -> None:
    prompts = []

    def complete(prompt: str) -> str:
        prompts.append(prompt)
        return '{"clarifiedIntent": "Open the browser", "actionSteps": ["open chrome"]}'

    clarification = CompletionClarifier(complete).clarify("browser pls")

    assert clarification.action_steps == ["open chrome"]
    assert "browser pls" in prompts[0]
