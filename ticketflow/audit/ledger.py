from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

import asyncpg

from ticketflow.lifecycle.errors import VerificationFailed
from ticketflow.lifecycle.state import EntityKind, TicketStatus
from ticketflow.services.postgres import database_errors

from .models import Actor, ActorType, AuditEnvelope, EventType, Order

logger = logging.getLogger(__name__)

STAKE_REFERENCE_INDEX = "uq_audit_envelopes_stake_tx"


class AuditLedger(Protocol):
    """Append-only store of lifecycle envelopes."""

    async def append(self, envelope: AuditEnvelope, *, connection: Any | None = None) -> str:
        ...

    async def by_entity(
        self,
        kind: EntityKind,
        entity_id: str,
        *,
        limit: int | None = None,
        order: Order = Order.OLDEST_FIRST,
    ) -> Sequence[AuditEnvelope]:
        ...

    async def by_correlation(
        self, correlation_id: str, *, order: Order = Order.OLDEST_FIRST
    ) -> Sequence[AuditEnvelope]:
        ...

    async def recent(
        self, limit: int = 100, *, event_types: Sequence[str] | None = None
    ) -> Sequence[AuditEnvelope]:
        ...

    async def by_event_type(
        self,
        event_type: str,
        *,
        since: datetime,
        limit: int | None = None,
        after: tuple[datetime, str] | None = None,
    ) -> Sequence[AuditEnvelope]:
        ...

    async def by_payload_value(self, event_type: str, key: str, value: str) -> Sequence[AuditEnvelope]:
        ...

    async def has_event(self, kind: EntityKind, entity_id: str, event_type: str) -> bool:
        ...

    async def touched_since(self, since: datetime) -> Sequence[tuple[EntityKind, str]]:
        ...


class PostgresAuditLedger:
    """asyncpg-backed ledger over the ``audit_envelopes`` table.

    The ledger performs plain inserts and offers no de-duplication of business
    operations; the executor guarantees a single append per committed
    transition. The one exception is a unique index that keeps a stake
    transaction from being recorded for more than one ticket.
    ``created_at`` is stored exactly as stamped by the writer.
    """

    _CREATE_SQL = """
    CREATE TABLE IF NOT EXISTS audit_envelopes (
        id TEXT PRIMARY KEY,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        actor_type TEXT NOT NULL,
        actor_id TEXT NULL,
        correlation_id TEXT NOT NULL,
        causation_id TEXT NULL,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_INDEXES_SQL = (
        "CREATE INDEX IF NOT EXISTS idx_audit_envelopes_entity "
        "ON audit_envelopes (entity_type, entity_id, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_audit_envelopes_correlation "
        "ON audit_envelopes (correlation_id, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_audit_envelopes_event_type "
        "ON audit_envelopes (event_type, created_at, id)",
        f"CREATE UNIQUE INDEX IF NOT EXISTS {STAKE_REFERENCE_INDEX} "
        "ON audit_envelopes ((payload->>'txHash')) "
        f"WHERE event_type = '{EventType.TICKET_STAKED.value}'",
    )

    _COLUMNS = (
        "id, entity_type, entity_id, event_type, actor_type, actor_id, "
        "correlation_id, causation_id, payload, created_at"
    )

    _INSERT_SQL = f"""
    INSERT INTO audit_envelopes ({_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10)
    """

    # Newest N for the entity, re-sorted into the requested order.
    _BY_ENTITY_SQL = f"""
    SELECT * FROM (
        SELECT {_COLUMNS}
        FROM audit_envelopes
        WHERE entity_type = $1 AND entity_id = $2
        ORDER BY created_at DESC, id DESC
        LIMIT $3
    ) AS latest
    ORDER BY created_at {{direction}}, id {{direction}}
    """

    _BY_CORRELATION_SQL = f"""
    SELECT {_COLUMNS}
    FROM audit_envelopes
    WHERE correlation_id = $1
    ORDER BY created_at {{direction}}, id {{direction}}
    """

    _RECENT_SQL = f"""
    SELECT {_COLUMNS}
    FROM audit_envelopes
    WHERE ($2::text[] IS NULL OR event_type = ANY($2::text[]))
    ORDER BY created_at DESC, id DESC
    LIMIT $1
    """

    # Keyset paging on (created_at, id); $4/$5 are the last row of the previous page.
    _BY_EVENT_TYPE_SQL = f"""
    SELECT {_COLUMNS}
    FROM audit_envelopes
    WHERE event_type = $1 AND created_at >= $2
      AND ($4::timestamptz IS NULL OR (created_at, id) > ($4::timestamptz, $5::text))
    ORDER BY created_at ASC, id ASC
    LIMIT $3
    """

    _BY_PAYLOAD_VALUE_SQL = f"""
    SELECT {_COLUMNS}
    FROM audit_envelopes
    WHERE event_type = $1 AND payload->>$2 = $3
    ORDER BY created_at ASC, id ASC
    """

    _TOUCHED_SINCE_SQL = """
    SELECT DISTINCT entity_type, entity_id
    FROM audit_envelopes
    WHERE created_at >= $1
    ORDER BY entity_type, entity_id
    """

    _HAS_EVENT_SQL = """
    SELECT EXISTS (
        SELECT 1 FROM audit_envelopes
        WHERE entity_type = $1 AND entity_id = $2 AND event_type = $3
    )
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        with database_errors("audit schema"):
            async with self._pool.acquire() as connection:
                await connection.execute(self._CREATE_SQL)
                for statement in self._CREATE_INDEXES_SQL:
                    await connection.execute(statement)

    async def append(self, envelope: AuditEnvelope, *, connection: Any | None = None) -> str:
        args = (
            envelope.id,
            envelope.entity_type.value,
            envelope.entity_id,
            envelope.event_type,
            envelope.actor.type.value,
            envelope.actor.id,
            envelope.correlation_id,
            envelope.causation_id,
            dict(envelope.payload),
            envelope.created_at,
        )
        with database_errors("audit append", entity_id=envelope.entity_id, event_type=envelope.event_type):
            try:
                if connection is not None:
                    await connection.execute(self._INSERT_SQL, *args)
                else:
                    async with self._pool.acquire() as acquired:
                        await acquired.execute(self._INSERT_SQL, *args)
            except asyncpg.UniqueViolationError as exc:
                if exc.constraint_name != STAKE_REFERENCE_INDEX:
                    raise
                tx_hash = envelope.payload.get("txHash")
                raise VerificationFailed(
                    f"Stake transaction {tx_hash} is already recorded for another ticket",
                    to_status=TicketStatus.STAKED,
                    reason="Stake transaction already used",
                ) from exc
        logger.debug(
            "Appended %s for %s %s (correlation %s)",
            envelope.event_type,
            envelope.entity_type.value,
            envelope.entity_id,
            envelope.correlation_id,
        )
        return envelope.id

    async def by_entity(
        self,
        kind: EntityKind,
        entity_id: str,
        *,
        limit: int | None = None,
        order: Order = Order.OLDEST_FIRST,
    ) -> Sequence[AuditEnvelope]:
        sql = self._BY_ENTITY_SQL.format(direction=_direction(order))
        with database_errors("audit by_entity", entity_id=entity_id):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(sql, EntityKind(kind).value, entity_id, limit)
        return [self._row_to_envelope(row) for row in rows]

    async def by_correlation(
        self, correlation_id: str, *, order: Order = Order.OLDEST_FIRST
    ) -> Sequence[AuditEnvelope]:
        sql = self._BY_CORRELATION_SQL.format(direction=_direction(order))
        with database_errors("audit by_correlation", correlation_id=correlation_id):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(sql, correlation_id)
        return [self._row_to_envelope(row) for row in rows]

    async def recent(
        self, limit: int = 100, *, event_types: Sequence[str] | None = None
    ) -> Sequence[AuditEnvelope]:
        types = list(event_types) if event_types else None
        with database_errors("audit recent"):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(self._RECENT_SQL, limit, types)
        return [self._row_to_envelope(row) for row in rows]

    async def by_event_type(
        self,
        event_type: str,
        *,
        since: datetime,
        limit: int | None = None,
        after: tuple[datetime, str] | None = None,
    ) -> Sequence[AuditEnvelope]:
        after_at, after_id = after if after is not None else (None, None)
        with database_errors("audit by_event_type", event_type=event_type):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(
                    self._BY_EVENT_TYPE_SQL, event_type, since, limit, after_at, after_id
                )
        return [self._row_to_envelope(row) for row in rows]

    async def by_payload_value(self, event_type: str, key: str, value: str) -> Sequence[AuditEnvelope]:
        with database_errors("audit by_payload_value", event_type=event_type, key=key):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(self._BY_PAYLOAD_VALUE_SQL, event_type, key, value)
        return [self._row_to_envelope(row) for row in rows]

    async def has_event(self, kind: EntityKind, entity_id: str, event_type: str) -> bool:
        with database_errors("audit has_event", entity_id=entity_id, event_type=event_type):
            async with self._pool.acquire() as connection:
                found = await connection.fetchval(
                    self._HAS_EVENT_SQL, EntityKind(kind).value, entity_id, event_type
                )
        return bool(found)

    async def touched_since(self, since: datetime) -> Sequence[tuple[EntityKind, str]]:
        """Every entity with at least one envelope at or after ``since``."""

        with database_errors("audit touched_since"):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(self._TOUCHED_SINCE_SQL, since)
        return [(EntityKind(str(row["entity_type"])), str(row["entity_id"])) for row in rows]

    @staticmethod
    def _row_to_envelope(row: Mapping[str, Any]) -> AuditEnvelope:
        payload = row["payload"] or {}
        return AuditEnvelope(
            id=str(row["id"]),
            entity_type=EntityKind(str(row["entity_type"])),
            entity_id=str(row["entity_id"]),
            event_type=str(row["event_type"]),
            actor=Actor(ActorType(str(row["actor_type"])), row["actor_id"]),
            correlation_id=str(row["correlation_id"]),
            causation_id=row["causation_id"],
            payload=dict(payload),
            created_at=_ensure_datetime(row["created_at"]),
        )


def _direction(order: Order) -> str:
    return "DESC" if Order(order) is Order.NEWEST_FIRST else "ASC"


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
