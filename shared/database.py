"""
asyncpg connection pool shared by services that talk to PostgreSQL.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import asyncpg

from shared.errors import FerremasError
from shared.logging import get_logger


class Database:
    """Thin wrapper around an ``asyncpg`` pool with parameterized helpers."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("database.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            self.logger.info("PostgreSQL pool started", min_size=self.min_size, max_size=self.max_size)
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL pool", error=str(e))
            raise FerremasError("POSTGRES_START_FAILED", str(e)) from e

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL pool stopped")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise FerremasError("POSTGRES_NOT_STARTED", "Database pool is not started")
        return self.pool

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        async with self._require_pool().acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return asyncpg's status string (e.g. ``"DELETE 3"``)."""
        async with self._require_pool().acquire() as conn:
            return await conn.execute(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """BEGIN/COMMIT around the block, ROLLBACK if it raises."""
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                yield conn

    async def ping(self) -> bool:
        return await self.fetchval("SELECT 1") == 1


def affected_rows(status: str) -> int:
    """Extract the row count from a status string such as ``"DELETE 3"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError, IndexError):
        return 0
