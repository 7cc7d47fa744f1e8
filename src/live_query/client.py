from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis

from live_query.models import Subscription, UpdatedFilter, WhereFilter
from live_query.replica import ReplicaIdentityPreparer
from live_query.schema import SchemaDef
from live_query.settings import Settings
from live_query.stream import LiveStream

LOGGER = logging.getLogger(__name__)


def create_redis_client(*, url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True)


class LiveQueryClient:
    """Owns the broker connection shared by every stream it opens.

    ``close()`` stops all open streams before closing the connection, so an
    in-flight blocking read ends the stream cleanly instead of raising.
    """

    def __init__(
        self,
        *,
        schema: SchemaDef,
        settings: Settings,
        redis: Any | None = None,
        preparer: ReplicaIdentityPreparer | None = None,
    ) -> None:
        self._schema = schema
        self._settings = settings
        self._redis = redis
        self._owns_redis = redis is None
        self._streams: list[LiveStream] = []
        self._closed = False

        if preparer is None and settings.ensure_replica_identity:
            preparer = ReplicaIdentityPreparer(conninfo=settings.postgres_conninfo)
        self._preparer = preparer

    @property
    def schema(self) -> SchemaDef:
        return self._schema

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def streams(self) -> list[LiveStream]:
        return list(self._streams)

    async def connect(self) -> None:
        if self._closed:
            raise RuntimeError("LiveQueryClient is closed")
        if self._redis is None:
            self._redis = create_redis_client(url=self._settings.redis_url)
        await self._redis.ping()
        LOGGER.info(
            "live_client_connected",
            extra={"client_id": self._settings.client_id, "namespace": self._settings.namespace},
        )

    def open(self, subscription: Subscription) -> LiveStream:
        if self._closed:
            raise RuntimeError("LiveQueryClient is closed")
        if self._redis is None:
            raise RuntimeError("LiveQueryClient is not connected; call connect() first")

        stream = LiveStream(
            redis=self._redis,
            model=self._schema.model(subscription.model),
            subscription=subscription,
            client_id=self._settings.client_id,
            namespace=self._settings.namespace,
            read_count=self._settings.read_count,
            block_ms=self._settings.block_ms,
            empty_backoff_s=self._settings.empty_backoff_s,
            non_matching=self._settings.non_matching,
            preparer=self._preparer,
            on_finished=self._release,
        )
        self._streams.append(stream)
        LOGGER.info(
            "live_stream_opened",
            extra={"model": subscription.model, "group": stream.group_name},
        )
        return stream

    def stream(
        self,
        *,
        model: str,
        group_key: str,
        created: WhereFilter | None = None,
        updated: UpdatedFilter | dict[str, Any] | None = None,
        deleted: WhereFilter | None = None,
    ) -> LiveStream:
        subscription = Subscription.model_validate(
            {
                "model": model,
                "group_key": group_key,
                "created": created,
                "updated": updated,
                "deleted": deleted,
            }
        )
        return self.open(subscription)

    def _release(self, stream: LiveStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)
            LOGGER.debug("live_stream_released", extra={"group": stream.group_name})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for stream in self._streams:
            stream.stop()

        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()

        LOGGER.info("live_client_closed", extra={"streams": len(self._streams)})
        self._streams.clear()

    async def __aenter__(self) -> LiveQueryClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()
