#!/usr/bin/env python3
"""Inbox Agent CLI."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any

from inbox_agent.agent import InboxAgent
from inbox_agent.config import ConfigError, load_settings
from inbox_agent.llm import AnthropicError, CompletionService, resolve_config
from inbox_agent.task_store import InvalidTransition


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inbox-agent",
        description="Turn inbox and chat threads into suggested to-dos.",
    )
    parser.add_argument(
        "--instance",
        default="default",
        help="Agent instance id (selects its storage).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show scan quota, usage and next wake.")
    subparsers.add_parser("scan", help="Run one quota-gated inbox scan now.")
    subparsers.add_parser("scan-threads", help="Scan queued chat threads now.")

    config_parser = subparsers.add_parser("config", help="Show or update scan config.")
    config_parser.add_argument(
        "overrides",
        nargs="*",
        help="field=value pairs, e.g. maxScansPerDay=24 enabled=false",
    )

    tasks_parser = subparsers.add_parser("tasks", help="List tasks.")
    tasks_parser.add_argument("--archived", action="store_true", help="List the archive instead.")

    add_parser = subparsers.add_parser("add", help="Create a task.")
    add_parser.add_argument("title")
    add_parser.add_argument("--description")
    add_parser.add_argument("--date", dest="scheduled_date", help="Scheduled date (YYYY-MM-DD).")

    for name, help_text in (
        ("accept", "Accept a suggestion."),
        ("complete", "Mark a task completed."),
        ("delete", "Delete a task."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("task_id")

    decline_parser = subparsers.add_parser("decline", help="Decline a suggestion.")
    decline_parser.add_argument("task_id")
    decline_parser.add_argument("--reason")

    subparsers.add_parser("memory", help="Show stored memory.")

    events_parser = subparsers.add_parser("events", help="Show recent events.")
    events_parser.add_argument("--limit", type=int, default=20)
    events_parser.add_argument("--type", dest="event_type")

    run_parser = subparsers.add_parser("run", help="Run the background scan loop until interrupted.")
    run_parser.add_argument("--anthropic-model", help="Override the primary model.")

    return parser


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_agent(instance: str, model: str | None = None) -> InboxAgent:
    completion = CompletionService(config=resolve_config(model))
    return InboxAgent(instance, completion=completion)


def _cmd_config(agent: InboxAgent, overrides: list[str]) -> int:
    if not overrides:
        _print_json(agent.get_scan_config())
        return 0
    parsed = {}
    for item in overrides:
        if "=" not in item:
            print(f"Expected field=value, got {item!r}", file=sys.stderr)
            return 2
        key, value = item.split("=", 1)
        parsed[key] = _parse_value(value)
    result = agent.update_scan_config(parsed)
    _print_json(result)
    return 1 if result["rejected"] else 0


def _cmd_run(agent: InboxAgent) -> int:
    agent.scheduler.start()
    status = agent.scheduler.status()
    print(f"Scheduler running; next wake {status.next_wake}. Ctrl+C to stop.")
    try:
        while agent.scheduler.status().running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        agent.scheduler.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    model = getattr(args, "anthropic_model", None) or settings.primary_model
    agent = _build_agent(args.instance, model)

    try:
        if args.command == "status":
            _print_json(agent.get_scan_status())
        elif args.command == "scan":
            load_settings(require_api_key=True)
            _print_json(agent.trigger_scan())
        elif args.command == "scan-threads":
            load_settings(require_api_key=True)
            _print_json(agent.trigger_thread_scan())
        elif args.command == "config":
            return _cmd_config(agent, args.overrides)
        elif args.command == "tasks":
            _print_json(agent.list_archived_tasks() if args.archived else agent.list_tasks())
        elif args.command == "add":
            _print_json(
                agent.create_task(
                    args.title,
                    description=args.description,
                    scheduled_date=args.scheduled_date,
                )
            )
        elif args.command in ("accept", "complete", "delete", "decline"):
            if args.command == "accept":
                result = agent.accept_suggestion(args.task_id)
            elif args.command == "complete":
                result = agent.complete_task(args.task_id)
            elif args.command == "delete":
                result = agent.delete_task(args.task_id)
            else:
                result = agent.decline_suggestion(args.task_id, args.reason)
            if not result:
                print(f"Task not found: {args.task_id}", file=sys.stderr)
                return 1
            _print_json(result)
        elif args.command == "memory":
            _print_json(agent.get_memory())
        elif args.command == "events":
            _print_json(agent.get_events(limit=args.limit, event_type=args.event_type))
        elif args.command == "run":
            load_settings(require_api_key=True)
            return _cmd_run(agent)
    except (ConfigError, AnthropicError, InvalidTransition, ValueError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
