from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Mapping

import asyncpg

from ticketflow.services.postgres import database_errors

from .models import LifecycleEntity
from .state import EntityKind, StateGraph, Status


class EntityRepository:
    """Data access for the status-bearing ``events`` and ``tickets`` rows.

    Only the lifecycle columns are written here; titles, dates and other
    content are maintained by the surrounding application.
    """

    _CREATE_EVENTS_SQL = """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        organizer_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        starts_at TIMESTAMPTZ NULL,
        ends_at TIMESTAMPTZ NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        previous_status TEXT NULL,
        transitioned_at TIMESTAMPTZ NULL,
        payout_wallet TEXT NULL,
        stake_amount NUMERIC NULL,
        stake_currency TEXT NULL,
        settlement_network TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        holder_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        previous_status TEXT NULL,
        transitioned_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_INDEXES_SQL = (
        "CREATE INDEX IF NOT EXISTS idx_events_status_starts_at ON events (status, starts_at)",
        "CREATE INDEX IF NOT EXISTS idx_events_status_ends_at ON events (status, ends_at)",
        "CREATE INDEX IF NOT EXISTS idx_tickets_event_status ON tickets (event_id, status)",
    )

    _EVENT_COLUMNS = (
        "id, organizer_id, title, starts_at, ends_at, status, previous_status, transitioned_at, "
        "payout_wallet, stake_amount, stake_currency, settlement_network"
    )
    _TICKET_COLUMNS = "id, event_id, holder_id, status, previous_status, transitioned_at"

    _SELECT_EVENT_SQL = f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = $1"
    _SELECT_TICKET_SQL = f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE id = $1"

    # The WHERE on the expected status is the optimistic-concurrency check.
    _CAS_SQL = """
    UPDATE {table}
    SET status = $3,
        previous_status = $2,
        transitioned_at = $4,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1 AND status = $2
    RETURNING id
    """

    _DUE_TO_START_SQL = f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE status = 'published' AND starts_at IS NOT NULL AND starts_at <= $1
    ORDER BY starts_at ASC
    LIMIT $2
    """

    _DUE_TO_END_SQL = f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE status = 'live' AND ends_at IS NOT NULL AND ends_at <= $1
    ORDER BY ends_at ASC
    LIMIT $2
    """

    _FORFEITABLE_SQL = """
    SELECT t.id, t.event_id, t.holder_id, t.status, t.previous_status, t.transitioned_at
    FROM tickets t
    JOIN events e ON e.id = t.event_id
    WHERE t.status = 'staked'
      AND e.status IN ('ended', 'archived')
      AND COALESCE(e.ends_at, e.transitioned_at) <= $1
    ORDER BY t.transitioned_at ASC NULLS FIRST
    LIMIT $2
    """

    _TABLES: Mapping[EntityKind, str] = {EntityKind.EVENT: "events", EntityKind.TICKET: "tickets"}

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        with database_errors("entity schema"):
            async with self._pool.acquire() as connection:
                await connection.execute(self._CREATE_EVENTS_SQL)
                await connection.execute(self._CREATE_TICKETS_SQL)
                for statement in self._CREATE_INDEXES_SQL:
                    await connection.execute(statement)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """Yield one connection inside a database transaction."""

        with database_errors("transaction"):
            async with self._pool.acquire() as connection:
                async with connection.transaction():
                    yield connection

    async def get(
        self, kind: EntityKind, entity_id: str, *, connection: Any | None = None
    ) -> LifecycleEntity | None:
        kind = EntityKind(kind)
        sql = self._SELECT_EVENT_SQL if kind is EntityKind.EVENT else self._SELECT_TICKET_SQL
        with database_errors("entity load", kind=kind.value, entity_id=entity_id):
            if connection is not None:
                row = await connection.fetchrow(sql, entity_id)
            else:
                async with self._pool.acquire() as acquired:
                    row = await acquired.fetchrow(sql, entity_id)
        if row is None:
            return None
        return self._row_to_entity(kind, row)

    async def compare_and_set_status(
        self,
        kind: EntityKind,
        entity_id: str,
        *,
        expected: Status,
        target: Status,
        transitioned_at: datetime,
        connection: Any | None = None,
    ) -> bool:
        """Move ``expected`` to ``target``; ``False`` when another writer got there first."""

        kind = EntityKind(kind)
        sql = self._CAS_SQL.format(table=self._TABLES[kind])
        args = (entity_id, expected.value, target.value, transitioned_at)
        with database_errors("status update", kind=kind.value, entity_id=entity_id):
            if connection is not None:
                row = await connection.fetchrow(sql, *args)
            else:
                async with self._pool.acquire() as acquired:
                    row = await acquired.fetchrow(sql, *args)
        return row is not None

    async def find_events_due_to_start(self, now: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        return await self._fetch_many(EntityKind.EVENT, self._DUE_TO_START_SQL, now, limit)

    async def find_events_due_to_end(self, now: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        return await self._fetch_many(EntityKind.EVENT, self._DUE_TO_END_SQL, now, limit)

    async def find_forfeitable_tickets(self, cutoff: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        """Staked tickets whose event finished before ``cutoff``."""

        return await self._fetch_many(EntityKind.TICKET, self._FORFEITABLE_SQL, cutoff, limit)

    async def _fetch_many(self, kind: EntityKind, sql: str, *args: Any) -> list[LifecycleEntity]:
        with database_errors("entity scan", kind=kind.value):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(sql, *args)
        return [self._row_to_entity(kind, row) for row in rows]

    @staticmethod
    def _row_to_entity(kind: EntityKind, row: Mapping[str, Any]) -> LifecycleEntity:
        previous = row["previous_status"]
        entity = LifecycleEntity(
            kind=kind,
            id=str(row["id"]),
            status=StateGraph.parse_status(kind, row["status"]),
            previous_status=StateGraph.parse_status(kind, previous) if previous else None,
            transitioned_at=row["transitioned_at"],
        )
        if kind is EntityKind.EVENT:
            amount = row["stake_amount"]
            entity.owner_id = row["organizer_id"]
            entity.title = row["title"]
            entity.starts_at = row["starts_at"]
            entity.ends_at = row["ends_at"]
            entity.payout_wallet = row["payout_wallet"]
            entity.stake_amount = float(amount) if amount is not None else None
            entity.stake_currency = row["stake_currency"]
            entity.settlement_network = row["settlement_network"]
        else:
            entity.event_id = str(row["event_id"])
            entity.holder_id = row["holder_id"]
        return entity
