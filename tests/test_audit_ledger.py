from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest

from ticketflow.audit.ledger import STAKE_REFERENCE_INDEX, PostgresAuditLedger
from ticketflow.audit.models import Actor, ActorType, AuditEnvelope, Order
from ticketflow.lifecycle.errors import DatabaseError, VerificationFailed
from ticketflow.lifecycle.state import EntityKind

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection
        self.acquired = 0

    def acquire(self):
        self.acquired += 1
        return DummyAcquire(self._connection)


def _envelope(**overrides) -> AuditEnvelope:
    values = dict(
        entity_type=EntityKind.TICKET,
        entity_id="tkt-1",
        event_type="TICKET_STAKED",
        actor=Actor.user("holder-1"),
        correlation_id="corr-1",
        created_at=NOW,
        payload={"txHash": "0xabc"},
    )
    values.update(overrides)
    return AuditEnvelope(**values)


def _row(envelope: AuditEnvelope, **overrides) -> dict:
    row = {
        "id": envelope.id,
        "entity_type": envelope.entity_type.value,
        "entity_id": envelope.entity_id,
        "event_type": envelope.event_type,
        "actor_type": envelope.actor.type.value,
        "actor_id": envelope.actor.id,
        "correlation_id": envelope.correlation_id,
        "causation_id": envelope.causation_id,
        "payload": dict(envelope.payload),
        "created_at": envelope.created_at,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_ensure_schema_creates_table_and_indexes():
    connection = AsyncMock()
    ledger = PostgresAuditLedger(DummyPool(connection))

    await ledger.ensure_schema()

    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert len(executed) == 5
    assert "CREATE TABLE IF NOT EXISTS audit_envelopes" in executed[0]
    assert any("idx_audit_envelopes_correlation" in stmt for stmt in executed)
    (unique,) = [stmt for stmt in executed if "UNIQUE" in stmt]
    assert STAKE_REFERENCE_INDEX in unique
    assert "payload->>'txHash'" in unique
    assert "event_type = 'TICKET_STAKED'" in unique


@pytest.mark.asyncio
async def test_append_uses_callers_connection():
    pool_connection = AsyncMock()
    transaction_connection = AsyncMock()
    pool = DummyPool(pool_connection)
    ledger = PostgresAuditLedger(pool)
    envelope = _envelope()

    envelope_id = await ledger.append(envelope, connection=transaction_connection)

    assert envelope_id == envelope.id
    assert pool.acquired == 0
    args = transaction_connection.execute.await_args.args
    assert "INSERT INTO audit_envelopes" in args[0]
    assert args[1:] == (
        envelope.id,
        "ticket",
        "tkt-1",
        "TICKET_STAKED",
        "user",
        "holder-1",
        "corr-1",
        None,
        {"txHash": "0xabc"},
        NOW,
    )


@pytest.mark.asyncio
async def test_append_stores_created_at_as_stamped():
    connection = AsyncMock()
    ledger = PostgresAuditLedger(DummyPool(connection))

    await ledger.append(_envelope(created_at=NOW))
    await ledger.append(_envelope(created_at=NOW - timedelta(seconds=5)))

    stamps = [call.args[10] for call in connection.execute.await_args_list]
    assert stamps == [NOW, NOW - timedelta(seconds=5)]


@pytest.mark.asyncio
async def test_reused_stake_transaction_becomes_verification_failure():
    violation = asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
    violation.constraint_name = STAKE_REFERENCE_INDEX
    connection = AsyncMock()
    connection.execute.side_effect = violation
    ledger = PostgresAuditLedger(DummyPool(connection))

    with pytest.raises(VerificationFailed) as excinfo:
        await ledger.append(_envelope(entity_id="tkt-2"))

    assert "0xabc" in str(excinfo.value)
    assert excinfo.value.to_status == "staked"


@pytest.mark.asyncio
async def test_other_unique_violations_stay_database_errors():
    violation = asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
    violation.constraint_name = "audit_envelopes_pkey"
    connection = AsyncMock()
    connection.execute.side_effect = violation
    ledger = PostgresAuditLedger(DummyPool(connection))

    with pytest.raises(DatabaseError):
        await ledger.append(_envelope())


@pytest.mark.asyncio
async def test_append_translates_driver_errors():
    connection = AsyncMock()
    connection.execute.side_effect = asyncpg.InterfaceError("connection reset")
    ledger = PostgresAuditLedger(DummyPool(connection))

    with pytest.raises(DatabaseError) as excinfo:
        await ledger.append(_envelope())

    assert excinfo.value.code == "DATABASE_ERROR"


@pytest.mark.asyncio
async def test_by_entity_orders_and_maps_rows():
    stored = _envelope(actor=Actor.system(), causation_id="cause-1")
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[_row(stored, created_at=NOW.replace(tzinfo=None))])
    ledger = PostgresAuditLedger(DummyPool(connection))

    envelopes = await ledger.by_entity(EntityKind.TICKET, "tkt-1", limit=5, order=Order.NEWEST_FIRST)

    sql, *args = connection.fetch.await_args.args
    assert "ORDER BY created_at DESC, id DESC" in sql
    assert args == ["ticket", "tkt-1", 5]
    (envelope,) = envelopes
    assert envelope.id == stored.id
    assert envelope.actor.type is ActorType.SYSTEM
    assert envelope.causation_id == "cause-1"
    assert envelope.created_at.tzinfo is timezone.utc


@pytest.mark.asyncio
async def test_by_correlation_defaults_to_oldest_first():
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[])
    ledger = PostgresAuditLedger(DummyPool(connection))

    assert await ledger.by_correlation("corr-9") == []
    sql, correlation_id = connection.fetch.await_args.args
    assert "ORDER BY created_at ASC, id ASC" in sql
    assert correlation_id == "corr-9"


@pytest.mark.asyncio
async def test_recent_passes_event_type_filter():
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[])
    ledger = PostgresAuditLedger(DummyPool(connection))

    await ledger.recent(10, event_types=("TICKET_STAKED",))
    await ledger.recent(10)

    first, second = connection.fetch.await_args_list
    assert first.args[1:] == (10, ["TICKET_STAKED"])
    assert second.args[1:] == (10, None)


@pytest.mark.asyncio
async def test_has_event_returns_bool():
    connection = AsyncMock()
    connection.fetchval = AsyncMock(return_value=True)
    ledger = PostgresAuditLedger(DummyPool(connection))

    assert await ledger.has_event(EntityKind.TICKET, "tkt-1", "TICKET_CHECKED_IN") is True
    assert connection.fetchval.await_args.args[1:] == ("ticket", "tkt-1", "TICKET_CHECKED_IN")


@pytest.mark.asyncio
async def test_by_event_type_pages_after_keyset():
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[])
    ledger = PostgresAuditLedger(DummyPool(connection))

    await ledger.by_event_type("TICKET_STAKED", since=NOW, limit=100)
    await ledger.by_event_type("TICKET_STAKED", since=NOW, limit=100, after=(NOW, "env-9"))

    first, second = connection.fetch.await_args_list
    assert "(created_at, id) >" in first.args[0]
    assert first.args[1:] == ("TICKET_STAKED", NOW, 100, None, None)
    assert second.args[1:] == ("TICKET_STAKED", NOW, 100, NOW, "env-9")


@pytest.mark.asyncio
async def test_by_payload_value_filters_on_json_key():
    stored = _envelope()
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[_row(stored)])
    ledger = PostgresAuditLedger(DummyPool(connection))

    (envelope,) = await ledger.by_payload_value("TICKET_STAKED", "txHash", "0xabc")

    sql, *args = connection.fetch.await_args.args
    assert "payload->>$2 = $3" in sql
    assert args == ["TICKET_STAKED", "txHash", "0xabc"]
    assert envelope.payload == {"txHash": "0xabc"}


@pytest.mark.asyncio
async def test_touched_since_lists_distinct_entities():
    connection = AsyncMock()
    connection.fetch = AsyncMock(
        return_value=[
            {"entity_type": "event", "entity_id": "evt-1"},
            {"entity_type": "ticket", "entity_id": "tkt-1"},
        ]
    )
    ledger = PostgresAuditLedger(DummyPool(connection))

    touched = await ledger.touched_since(NOW)

    assert touched == [(EntityKind.EVENT, "evt-1"), (EntityKind.TICKET, "tkt-1")]
    sql, since = connection.fetch.await_args.args
    assert "SELECT DISTINCT entity_type, entity_id" in sql
    assert since == NOW
