from __future__ import annotations

import asyncio
import logging

import psycopg
from psycopg import sql

from live_query.naming import TABLE_SCHEMA

LOGGER = logging.getLogger(__name__)


async def ensure_replica_identity_full(*, conninfo: str, table: str, schema: str = TABLE_SCHEMA) -> None:
    """Make the table log full row images so updates and deletes carry ``before``."""

    connection = await psycopg.AsyncConnection.connect(conninfo=conninfo, autocommit=True)
    try:
        async with connection.cursor() as cursor:
            await cursor.execute(
                sql.SQL("ALTER TABLE {}.{} REPLICA IDENTITY FULL").format(
                    sql.Identifier(schema),
                    sql.Identifier(table),
                )
            )
    finally:
        await connection.close()


class ReplicaIdentityPreparer:
    """Runs the full-row-image command once per model for one client.

    Concurrent callers for the same model wait on one in-flight command and
    see its failure; a failed model is retried by the next caller.
    """

    def __init__(self, *, conninfo: str) -> None:
        self._conninfo = conninfo
        self._prepared: set[str] = set()
        self._in_flight: dict[str, asyncio.Task[None]] = {}

    def is_prepared(self, model: str) -> bool:
        return model in self._prepared

    async def prepare(self, model: str) -> bool:
        """Return True when this call issued the command, False if it was already done or running."""

        if model in self._prepared:
            return False

        task = self._in_flight.get(model)
        if task is not None:
            await asyncio.shield(task)
            return False

        task = asyncio.create_task(self._run(model))
        self._in_flight[model] = task
        await asyncio.shield(task)
        return True

    async def _run(self, model: str) -> None:
        try:
            await ensure_replica_identity_full(conninfo=self._conninfo, table=model)
        finally:
            self._in_flight.pop(model, None)

        self._prepared.add(model)
        LOGGER.info("replica_identity_full_ensured", extra={"table": model})
