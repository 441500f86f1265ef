from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from ticketflow.lifecycle.errors import DatabaseError
from ticketflow.services.postgres import PostgresConnectionTester, database_errors


@pytest.mark.asyncio
async def test_postgres_connection_tester(monkeypatch):
    connection_mock = AsyncMock()

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()
    created: list[dict] = []

    async def create_pool(**kwargs):
        created.append(kwargs)
        return pool_mock

    monkeypatch.setattr("ticketflow.services.postgres.asyncpg.create_pool", create_pool)

    tester = PostgresConnectionTester("postgresql://test", min_size=2, max_size=4)
    assert await tester.test_connection() is True
    assert await tester.get_pool() is pool_mock
    connection_mock.execute.assert_awaited_with("SELECT 1")
    assert len(created) == 1
    assert created[0]["min_size"] == 2 and created[0]["max_size"] == 4
    assert created[0]["init"] is not None

    await tester.close()
    pool_mock.close.assert_awaited()


def test_database_errors_wraps_driver_failures():
    with pytest.raises(DatabaseError) as excinfo:
        with database_errors("ticket load", entity_id="evt-1"):
            raise asyncpg.InterfaceError("pool is closed")

    assert "ticket load" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, asyncpg.InterfaceError)


def test_database_errors_leaves_other_errors_alone():
    with pytest.raises(KeyError):
        with database_errors("ticket load"):
            raise KeyError("status")
