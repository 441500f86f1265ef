from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import asyncpg

from ticketflow.lifecycle.errors import DatabaseError

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


async def _init_connection(connection: Any) -> None:
    for type_name in ("json", "jsonb"):
        await connection.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


@contextmanager
def database_errors(operation: str, **context: Any) -> Iterator[None]:
    """Translate driver failures into ``DatabaseError`` with the operation context logged."""

    try:
        yield
    except _DRIVER_ERRORS as exc:
        logger.exception("Database failure during %s %s", operation, context)
        raise DatabaseError(f"Database failure during {operation}: {exc}") from exc


@dataclass(slots=True)
class PostgresConnectionTester:
    """Owns the shared asyncpg pool and offers explicit connection testing."""

    dsn: str
    min_size: int = 1
    max_size: int = 10
    _pool: asyncpg.Pool | None = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                init=_init_connection,
            )
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self.get_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

