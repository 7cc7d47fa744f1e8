from __future__ import annotations

import asyncio
from typing import Any

import pytest

from live_query.client import LiveQueryClient
from live_query.models import Subscription
from live_query.replica import ReplicaIdentityPreparer
from live_query.schema import SchemaDef, UnknownModelError
from live_query.settings import Settings


class _StubRedis:
    def __init__(self) -> None:
        self.pings = 0
        self.groups: list[str] = []
        self.closed = False

    async def ping(self) -> bool:
        self.pings += 1
        return True

    async def aclose(self) -> None:
        self.closed = True

    async def xgroup_create(self, **kwargs: Any) -> bool:
        self.groups.append(kwargs["groupname"])
        return True


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "REDIS_URL": "redis://localhost:6379/0",
        "LIVE_CLIENT_ID": "worker-1",
        "LIVE_ENSURE_REPLICA_IDENTITY": False,
    }
    values.update(overrides)
    return Settings(**values)


def test_open_requires_a_connection(schema: SchemaDef) -> None:
    client = LiveQueryClient(schema=schema, settings=_settings(), redis=None)

    with pytest.raises(RuntimeError, match="not connected"):
        client.open(Subscription(model="User", group_key="k", created={}))


def test_streams_share_the_injected_connection(schema: SchemaDef) -> None:
    async def scenario() -> None:
        redis = _StubRedis()

        async with LiveQueryClient(schema=schema, settings=_settings(LIVE_NAMESPACE="app"), redis=redis) as client:
            adults = client.stream(model="User", group_key="adults", created={"age": {"gte": 18}})
            posts = client.stream(model="Post", group_key="posts", deleted={})

            assert redis.pings == 1
            assert adults.stream_name == "app.table.public.User"
            assert posts.stream_name == "app.table.public.Post"
            assert adults.consumer_name == "app.worker-1"
            assert client.streams == [adults, posts]

        assert adults.stopped
        assert posts.stopped
        assert client.closed
        assert client.streams == []
        # Injected connections belong to the caller.
        assert redis.closed is False

    asyncio.run(scenario())


def test_unknown_model_is_rejected(schema: SchemaDef) -> None:
    async def scenario() -> None:
        async with LiveQueryClient(schema=schema, settings=_settings(), redis=_StubRedis()) as client:
            with pytest.raises(UnknownModelError):
                client.stream(model="Comment", group_key="k", created={})

    asyncio.run(scenario())


def test_owned_connection_is_closed_once(schema: SchemaDef, monkeypatch: pytest.MonkeyPatch) -> None:
    async def scenario() -> None:
        redis = _StubRedis()
        urls: list[str] = []

        def fake_create_redis_client(*, url: str) -> _StubRedis:
            urls.append(url)
            return redis

        monkeypatch.setattr("live_query.client.create_redis_client", fake_create_redis_client)

        client = LiveQueryClient(schema=schema, settings=_settings())
        await client.connect()
        await client.close()
        await client.close()

        assert urls == ["redis://localhost:6379/0"]
        assert redis.closed is True

        with pytest.raises(RuntimeError, match="closed"):
            client.open(Subscription(model="User", group_key="k", created={}))
        with pytest.raises(RuntimeError, match="closed"):
            await client.connect()

    asyncio.run(scenario())


def test_streams_receive_a_shared_preparer(schema: SchemaDef) -> None:
    async def scenario() -> None:
        settings = _settings(
            LIVE_ENSURE_REPLICA_IDENTITY=True,
            PGHOST="db",
            PGUSER="postgres",
            PGPASSWORD="postgres",
            PGDATABASE="app",
        )

        async with LiveQueryClient(schema=schema, settings=settings, redis=_StubRedis()) as client:
            first = client.stream(model="User", group_key="a", created={})
            second = client.stream(model="User", group_key="b", created={})

            assert isinstance(first._preparer, ReplicaIdentityPreparer)
            assert first._preparer is second._preparer

    asyncio.run(scenario())


def test_finished_streams_are_released(schema: SchemaDef) -> None:
    async def scenario() -> None:
        redis = _StubRedis()

        async with LiveQueryClient(schema=schema, settings=_settings(), redis=redis) as client:
            finished = client.stream(model="User", group_key="done", created={})
            running = client.stream(model="User", group_key="running", created={})

            finished.stop()
            assert [event async for event in finished] == []

            assert redis.groups == [finished.group_name]
            assert client.streams == [running]

    asyncio.run(scenario())
