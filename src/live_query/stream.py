from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any, Protocol

from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from live_query.discriminator import EventDiscriminator
from live_query.hydration import from_epoch_ms, hydrate_row
from live_query.models import (
    RecordCreatedEvent,
    RecordDeletedEvent,
    RecordUpdatedEvent,
    RowTransition,
    Subscription,
)
from live_query.naming import consumer_group_name, consumer_name, stream_name
from live_query.protocol import ChangeEnvelope, EnvelopeError, entry_value, parse_envelope
from live_query.replica import ReplicaIdentityPreparer
from live_query.schema import ModelSchema
from live_query.settings import NonMatchingPolicy

LOGGER = logging.getLogger(__name__)

DEFAULT_READ_COUNT = 5
DEFAULT_BLOCK_MS = 0
DEFAULT_EMPTY_BACKOFF_S = 1.0

_BUSYGROUP_MARKER = "BUSYGROUP"

StreamEntry = tuple[str, Mapping[str, Any] | None]
LiveEvent = RecordCreatedEvent | RecordUpdatedEvent | RecordDeletedEvent


class StreamsClient(Protocol):
    async def xgroup_create(
        self,
        name: str,
        groupname: str,
        id: str = "$",
        mkstream: bool = False,
    ) -> Any:
        ...

    async def xreadgroup(
        self,
        groupname: str,
        consumername: str,
        streams: dict[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> Any:
        ...

    async def xack(self, name: str, groupname: str, *ids: str) -> Any:
        ...

    def pipeline(self, transaction: bool = True) -> Any:
        ...


class StreamStats(BaseModel):
    entries_read: int = 0
    events_yielded: int = 0
    entries_acknowledged: int = 0
    entries_skipped: int = 0
    entries_left_pending: int = 0


class LiveStream:
    """Ordered, acknowledged sequence of change events matching one subscription.

    Iterate with ``async for``. An event is acknowledged and removed from the
    broker once the caller resumes iteration after receiving it; breaking out
    of the loop leaves the last event pending. ``stop()`` ends iteration at the
    next check, which happens before every read and right after it returns.
    ``on_finished`` is called with the stream once its iteration ends, however
    it ends.
    """

    def __init__(
        self,
        *,
        redis: StreamsClient,
        model: ModelSchema,
        subscription: Subscription,
        client_id: str,
        namespace: str = "live",
        read_count: int = DEFAULT_READ_COUNT,
        block_ms: int = DEFAULT_BLOCK_MS,
        empty_backoff_s: float = DEFAULT_EMPTY_BACKOFF_S,
        non_matching: NonMatchingPolicy = "leave_pending",
        preparer: ReplicaIdentityPreparer | None = None,
        on_finished: Callable[[LiveStream], None] | None = None,
    ) -> None:
        if subscription.model != model.name:
            raise ValueError(
                f"Subscription model {subscription.model!r} does not match schema model {model.name!r}"
            )
        if read_count <= 0:
            raise ValueError("read_count must be > 0")
        if block_ms < 0:
            raise ValueError("block_ms must be >= 0")

        self._redis = redis
        self._model = model
        self._subscription = subscription
        self._read_count = read_count
        self._block_ms = block_ms
        self._empty_backoff_s = empty_backoff_s
        self._non_matching = non_matching
        self._preparer = preparer
        self._on_finished = on_finished
        self._stream_name = stream_name(namespace=namespace, model=model.name)
        self._group_name = consumer_group_name(namespace=namespace, subscription=subscription)
        self._consumer_name = consumer_name(namespace=namespace, client_id=client_id)
        self._discriminator = EventDiscriminator(model=model, subscription=subscription)
        self._stop_event = asyncio.Event()
        self.stats = StreamStats()

    @property
    def subscription(self) -> Subscription:
        return self._subscription

    @property
    def stream_name(self) -> str:
        return self._stream_name

    @property
    def group_name(self) -> str:
        return self._group_name

    @property
    def consumer_name(self) -> str:
        return self._consumer_name

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    async def ensure_consumer_group(self) -> bool:
        """Create the group at the stream tail; False when it already existed."""

        try:
            await self._redis.xgroup_create(
                name=self._stream_name,
                groupname=self._group_name,
                id="$",
                mkstream=True,
            )
        except ResponseError as exc:
            if _BUSYGROUP_MARKER in str(exc):
                return False
            raise

        LOGGER.info(
            "consumer_group_created",
            extra={"stream": self._stream_name, "group": self._group_name},
        )
        return True

    async def __aiter__(self) -> AsyncIterator[LiveEvent]:
        try:
            if self._preparer is not None:
                await self._preparer.prepare(self._model.name)
            await self.ensure_consumer_group()

            LOGGER.info(
                "live_stream_started",
                extra={
                    "stream": self._stream_name,
                    "group": self._group_name,
                    "consumer": self._consumer_name,
                },
            )

            while not self._stop_event.is_set():
                try:
                    entries = await self._read_batch()
                except RedisConnectionError:
                    if self._stop_event.is_set():
                        break
                    raise

                if self._stop_event.is_set():
                    break

                if not entries:
                    await asyncio.sleep(self._empty_backoff_s)
                    continue

                for entry_id, fields in entries:
                    if self._stop_event.is_set():
                        break

                    self.stats.entries_read += 1
                    event = self._decode_entry(entry_id, fields)
                    if event is None:
                        self.stats.entries_skipped += 1
                        await self._settle_unmatched(entry_id)
                        continue

                    if not self._discriminator.matches(event):
                        await self._settle_unmatched(entry_id)
                        continue

                    self.stats.events_yielded += 1
                    yield event
                    await self._acknowledge(entry_id)

            LOGGER.info("live_stream_stopped", extra={"stream": self._stream_name, "group": self._group_name})
        finally:
            if self._on_finished is not None:
                self._on_finished(self)

    async def _read_batch(self) -> list[StreamEntry]:
        response = await self._redis.xreadgroup(
            groupname=self._group_name,
            consumername=self._consumer_name,
            streams={self._stream_name: ">"},
            count=self._read_count,
            block=self._block_ms,
        )
        return _flatten_read_response(response)

    def _decode_entry(self, entry_id: str, fields: Mapping[str, Any] | None) -> LiveEvent | None:
        if not fields:
            return None
        raw = entry_value(fields)
        if raw is None:
            return None
        envelope = parse_envelope(raw)
        if envelope is None:
            return None
        return build_record_event(entry_id=entry_id, envelope=envelope, model=self._model)

    async def _acknowledge(self, entry_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.xack(self._stream_name, self._group_name, entry_id)
            pipe.xdel(self._stream_name, entry_id)
            await pipe.execute()

        self.stats.entries_acknowledged += 1
        LOGGER.debug(
            "live_event_acknowledged",
            extra={"stream": self._stream_name, "group": self._group_name, "entry_id": entry_id},
        )

    async def _settle_unmatched(self, entry_id: str) -> None:
        if self._non_matching == "acknowledge":
            # XACK only: the entry stays in the stream for other groups.
            await self._redis.xack(self._stream_name, self._group_name, entry_id)
            self.stats.entries_acknowledged += 1
            return

        # TODO: add an XAUTOCLAIM sweep so entries left here can be reclaimed or trimmed.
        self.stats.entries_left_pending += 1


def build_record_event(*, entry_id: str, envelope: ChangeEnvelope, model: ModelSchema) -> LiveEvent:
    date = from_epoch_ms(envelope.ts_ms)
    transaction_id = envelope.transaction_id
    operation = envelope.operation

    if operation == "created":
        return RecordCreatedEvent(
            id=entry_id,
            transaction_id=transaction_id,
            date=date,
            created=hydrate_row(model, _require_row(envelope.after, "after", entry_id)),
        )

    if operation == "updated":
        return RecordUpdatedEvent(
            id=entry_id,
            transaction_id=transaction_id,
            date=date,
            updated=RowTransition(
                before=hydrate_row(model, _require_row(envelope.before, "before", entry_id)),
                after=hydrate_row(model, _require_row(envelope.after, "after", entry_id)),
            ),
        )

    return RecordDeletedEvent(
        id=entry_id,
        transaction_id=transaction_id,
        date=date,
        deleted=hydrate_row(model, _require_row(envelope.before, "before", entry_id)),
    )


def _require_row(row: dict[str, Any] | None, side: str, entry_id: str) -> dict[str, Any]:
    if row is None:
        raise EnvelopeError(
            f"Entry {entry_id} has no {side!r} row image; the table needs REPLICA IDENTITY FULL"
        )
    return row


def _flatten_read_response(response: Any) -> list[StreamEntry]:
    if not response:
        return []

    # RESP2 reply: [[stream_name, [(entry_id, fields), ...]], ...]
    batches: Sequence[Any] = [entries for _, entries in response]

    flattened: list[StreamEntry] = []
    for entries in batches:
        for entry in entries or ():
            entry_id, fields = entry[0], entry[1]
            flattened.append((_as_text(entry_id), fields))
    return flattened


def _as_text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)
