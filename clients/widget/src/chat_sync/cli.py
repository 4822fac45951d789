"""Command-line driver for poking a live messaging backend."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, TextIO

from .config import load_sync_config_from_env
from .engine import ConversationSyncEngine
from .models import ROLES, ViewModel, message_to_dict
from .source import HttpMessageSource


def view_model_to_dict(view_model: ViewModel) -> Dict[str, Any]:
    return {
        "conversations": {
            key: [message_to_dict(message) for message in messages]
            for key, messages in view_model.conversations.items()
        },
        "unread_by_conversation": dict(view_model.unread_by_conversation),
        "total_unread": view_model.total_unread,
    }


def _emit(output: TextIO | None, line: str) -> None:
    stream = output or print
    if callable(stream):
        stream(line)
    else:
        stream.write(line + "\n")


async def _run_snapshot(args: argparse.Namespace, output: TextIO | None) -> int:
    config = load_sync_config_from_env()
    async with HttpMessageSource(args.base_url, args.token, args.role, timeout_s=config.request_timeout_s) as source:
        engine = ConversationSyncEngine(source, args.participant, args.role, config)
        await engine.poll_once()
        await engine.stop()
    _emit(output, json.dumps(view_model_to_dict(engine.view_model), indent=2, sort_keys=True))
    return 0


async def _run_watch(args: argparse.Namespace, output: TextIO | None) -> int:
    config = load_sync_config_from_env()
    async with HttpMessageSource(args.base_url, args.token, args.role, timeout_s=config.request_timeout_s) as source:
        engine = ConversationSyncEngine(source, args.participant, args.role, config)
        try:
            for cycle in range(args.cycles):
                if cycle:
                    await asyncio.sleep(config.poll_interval_s)
                await engine.poll_once()
                view_model = engine.view_model
                _emit(
                    output,
                    json.dumps(
                        {
                            "cycle": cycle + 1,
                            "total_unread": view_model.total_unread,
                            "unread_by_conversation": dict(view_model.unread_by_conversation),
                        },
                        sort_keys=True,
                    ),
                )
        finally:
            await engine.stop()
            await engine.drain()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Course chat sync CLI")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--base-url",
            default=os.environ.get("CHAT_SYNC_BASE_URL", ""),
            help="API base URL including the /api prefix; defaults to $CHAT_SYNC_BASE_URL",
        )
        sub.add_argument(
            "--token",
            default=os.environ.get("CHAT_SYNC_TOKEN", ""),
            help="Bearer token; defaults to $CHAT_SYNC_TOKEN",
        )
        sub.add_argument("--participant", required=True, help="Id of the local participant")
        sub.add_argument("--role", choices=ROLES, required=True, help="Local participant role")

    snapshot_parser = subparsers.add_parser("snapshot", help="Run one sync cycle and print the view model")
    add_common(snapshot_parser)

    watch_parser = subparsers.add_parser("watch", help="Poll repeatedly and print unread counts")
    add_common(watch_parser)
    watch_parser.add_argument("--cycles", type=int, default=5, help="Number of poll cycles to run")
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.base_url:
        parser.error("--base-url or CHAT_SYNC_BASE_URL is required")
    if args.command == "watch" and args.cycles < 1:
        parser.error("--cycles must be at least 1")

    if args.command == "snapshot":
        return asyncio.run(_run_snapshot(args, output))
    return asyncio.run(_run_watch(args, output))


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
