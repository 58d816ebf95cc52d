"""Tests for the command-line entry point."""

from __future__ import annotations

import argparse

import pytest

from ambient_assistant.models import ActionResult, Clarification, CommandResponse
from main import build_config, main, parse_quiet_hours, render_response


def test_parse_quiet_hours() -> None:
    assert parse_quiet_hours("22-7") == (22, 7)
    with pytest.raises(argparse.ArgumentTypeError):
        parse_quiet_hours("late")


def test_build_config_applies_overrides(tmp_path) -> None:
    args = argparse.Namespace(
        config=None,
        interval=0.01,
        quiet_hours=(23, 6),
        ultra_lightweight=True,
        db=str(tmp_path / "a.sqlite"),
    )

    config = build_config(args)

    assert config.screen_sample_interval_ms == 100
    assert config.quiet_hours == (23, 6)
    assert config.ultra_lightweight is True


def test_render_response_shows_next_steps_and_clarified_plan() -> None:
    failed = CommandResponse(
        success=False,
        result=ActionResult(False, "Unknown action requested", next_steps=["Try rephrasing your request"]),
        error="Unknown action requested",
    )
    pending = CommandResponse(
        success=True,
        needs_confirmation=True,
        clarification=Clarification("Plan a trip", ["search for flights"], request_id="clr_1"),
    )

    assert render_response(failed) == ["[!!] Unknown action requested", "  - Try rephrasing your request"]
    assert render_response(pending) == ["? Plan a trip", "  1. search for flights"]


def test_one_shot_command(capsys) -> None:
    assert main(["--ultra-lightweight", "--db", ":memory:", "--command", "help"]) == 0

    assert "Here is what I can do" in capsys.readouterr().out


def test_suggestions(capsys) -> None:
    assert main(["--ultra-lightweight", "--db", ":memory:", "--suggest", "open ch"]) == 0

    assert capsys.readouterr().out.splitlines() == ["open chrome"]


def test_invalid_quiet_hours_exit_code() -> None:
    assert main(["--ultra-lightweight", "--db", ":memory:", "--quiet-hours", "25-3"]) == 2
