"""Ambient assistant command line: one-shot commands or a live context monitor."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import List, Optional, Sequence

from ambient_assistant.assistant import AmbientAssistant
from ambient_assistant.config import AssistantConfig
from ambient_assistant.errors import ConfigurationError
from ambient_assistant.models import CommandResponse, ScreenSnapshot, Trigger

logger = logging.getLogger(__name__)


def parse_quiet_hours(value: str) -> tuple[int, int]:
    try:
        start, end = (int(part) for part in value.split("-", 1))
    except ValueError as exc:
        raise argparse.ArgumentTypeError("quiet hours must look like 22-7") from exc
    return start, end


def build_config(args: argparse.Namespace) -> AssistantConfig:
    config = AssistantConfig.from_file(args.config) if args.config else AssistantConfig.from_env()
    if args.interval is not None:
        config.screen_sample_interval_ms = max(100, int(args.interval * 1000))
    if args.quiet_hours is not None:
        config.quiet_hours_start, config.quiet_hours_end = args.quiet_hours
    if args.ultra_lightweight:
        config.ultra_lightweight = True
    if args.db:
        config.db_path = args.db
    config.validate()
    return config


def render_response(response: CommandResponse) -> List[str]:
    lines: List[str] = []
    if response.needs_confirmation and response.clarification:
        lines.append(f"? {response.clarification.clarified_intent}")
        for index, step in enumerate(response.clarification.action_steps, start=1):
            lines.append(f"  {index}. {step}")
        return lines
    marker = "ok" if response.success else "!!"
    result = response.result
    lines.append(f"[{marker}] {result.message if result else response.error}")
    if result is not None:
        for step in result.next_steps:
            lines.append(f"  - {step}")
    return lines


def print_snapshot(snapshot: ScreenSnapshot) -> None:
    timestamp_local = snapshot.captured_at.astimezone().strftime("%H:%M:%S")
    print(f"[{timestamp_local}] {snapshot.app_name} -> {snapshot.window_title}")
    text = snapshot.extracted_text
    if text:
        trimmed = text if len(text) <= 200 else text[:197].rstrip() + "..."
        print(f"  screen-text: {trimmed}")


def print_trigger(trigger: Trigger, responses: List[CommandResponse]) -> None:
    print(f"* pattern '{trigger.pattern_name}' matched in {trigger.snapshot.app_name}")
    for action, response in zip(trigger.actions, responses):
        print(f"  {action}:")
        for line in render_response(response):
            print(f"    {line}")


def monitor(assistant: AmbientAssistant) -> None:
    if assistant.screen is not None:
        assistant.screen.subscribe(print_snapshot)
    assistant.on_trigger(print_trigger)
    assistant.start_context_manager()
    patterns = assistant.list_context_patterns()
    print(f"Monitoring with {len(patterns)} pattern(s). Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nStopped monitoring.")
    finally:
        assistant.stop_context_manager()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Ambient assistant")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--interval", type=float, help="Screen sampling interval in seconds")
    parser.add_argument("--quiet-hours", type=parse_quiet_hours, metavar="START-END", help="Suppress triggers, e.g. 22-7")
    parser.add_argument("--ultra-lightweight", action="store_true", help="Disable screen and audio perception")
    parser.add_argument("--command", help="Run one command and exit")
    parser.add_argument("--suggest", help="Print suggestions for a partial command and exit")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = build_config(args)
    except ConfigurationError as exc:
        sys.stderr.write(f"Invalid configuration: {exc}\n")
        return 2

    with AmbientAssistant(config) as assistant:
        if args.suggest is not None:
            for suggestion in assistant.get_command_suggestions(args.suggest):
                print(suggestion)
            return 0
        if args.command:
            response = assistant.execute_command(args.command)
            for line in render_response(response):
                print(line)
            return 0 if response.success else 1
        monitor(assistant)
    return 0


if __name__ == "__main__":
    sys.exit(main())
