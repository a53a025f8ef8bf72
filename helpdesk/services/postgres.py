from __future__ import annotations

import logging
from dataclasses import dataclass

import asyncpg

from helpdesk.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PostgresPool:
    """Lazily created asyncpg pool shared by the ticket repository."""

    dsn: str
    min_size: int = 1
    max_size: int = 5
    _pool: asyncpg.Pool | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PostgresPool:
        return cls(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self.dsn, min_size=self.min_size, max_size=self.max_size)
            logger.info("Postgres pool ready (min=%d, max=%d)", self.min_size, self.max_size)
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self.get_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("Postgres pool closed")
