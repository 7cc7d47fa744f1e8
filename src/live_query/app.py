from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, TextIO

from live_query.client import LiveQueryClient
from live_query.models import Subscription, before_after
from live_query.schema import SchemaDef
from live_query.settings import Settings
from live_query.stream import LiveEvent, LiveStream

LOGGER = logging.getLogger(__name__)


def configure_logging(level_name: str | None = None) -> None:
    """Log to stderr; stdout carries the event lines."""

    name = (level_name or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="live_query",
        description="Print change events matching a live query as JSON lines.",
    )
    parser.add_argument("--model", required=True, help="Model (table) to follow")
    parser.add_argument("--group-key", required=True, help="Subscription key shared by replicas")
    parser.add_argument("--schema", default=None, help="Schema document (defaults to LIVE_SCHEMA_PATH)")
    parser.add_argument("--created", type=_json_filter, default=None, help="Filter for created rows")
    parser.add_argument("--updated-before", type=_json_filter, default=None)
    parser.add_argument("--updated-after", type=_json_filter, default=None)
    parser.add_argument(
        "--updated",
        action="store_true",
        help="Follow every update (implied by --updated-before/--updated-after)",
    )
    parser.add_argument("--deleted", type=_json_filter, default=None, help="Filter for deleted rows")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


def build_subscription(args: argparse.Namespace) -> Subscription:
    updated: dict[str, Any] | None = None
    if args.updated or args.updated_before is not None or args.updated_after is not None:
        updated = {"before": args.updated_before, "after": args.updated_after}

    return Subscription.model_validate(
        {
            "model": args.model,
            "group_key": args.group_key,
            "created": args.created,
            "updated": updated,
            "deleted": args.deleted,
        }
    )


def event_to_json(event: LiveEvent) -> str:
    change = before_after(event)
    return json.dumps(
        {
            "type": event.type,
            "id": event.id,
            "transaction_id": event.transaction_id,
            "date": event.date,
            "before": change.before,
            "after": change.after,
        },
        default=_json_default,
    )


async def tail(stream: LiveStream, *, out: TextIO) -> int:
    printed = 0
    async for event in stream:
        out.write(event_to_json(event) + "\n")
        out.flush()
        printed += 1
    return printed


async def run(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    settings = Settings()

    schema_path = args.schema or settings.schema_path
    if not schema_path:
        raise SystemExit("A schema document is required (--schema or LIVE_SCHEMA_PATH)")

    schema = SchemaDef.load(schema_path)
    subscription = build_subscription(args)

    async with LiveQueryClient(schema=schema, settings=settings) as client:
        stream = client.open(subscription)
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop, stream, task)

        LOGGER.info("tail_start", extra={"model": subscription.model, "group": stream.group_name})
        try:
            printed = await tail(stream, out=sys.stdout)
        except asyncio.CancelledError:
            if not stream.stopped:
                raise
            printed = stream.stats.events_yielded
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

        LOGGER.info("tail_stopped", extra={"events": printed})


def _request_stop(stream: LiveStream, task: asyncio.Task[Any] | None) -> None:
    LOGGER.info("shutdown_signal_received")
    stream.stop()
    # The blocking read only returns on new entries, so interrupt it directly.
    if task is not None:
        task.cancel()


def _json_filter(value: str) -> dict[str, Any]:
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON filter: {exc}") from exc
    if not isinstance(decoded, dict):
        raise argparse.ArgumentTypeError("filter must be a JSON object")
    return decoded


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
