from unittest.mock import AsyncMock, MagicMock

import pytest

from helpdesk.core.config import Settings
from helpdesk.services.postgres import PostgresPool


@pytest.mark.asyncio
async def test_postgres_pool_connection_check(monkeypatch):
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

    monkeypatch.setattr("helpdesk.services.postgres.asyncpg.create_pool", create_pool)

    postgres = PostgresPool("postgresql://test", min_size=2, max_size=4)
    assert await postgres.test_connection() is True
    assert await postgres.get_pool() is pool_mock
    assert created == [{"dsn": "postgresql://test", "min_size": 2, "max_size": 4}]
    connection_mock.execute.assert_awaited_with("SELECT 1")

    await postgres.close()
    pool_mock.close.assert_awaited()


@pytest.mark.asyncio
async def test_postgres_pool_close_without_pool_is_noop():
    await PostgresPool("postgresql://test").close()


def test_postgres_pool_from_settings():
    settings = Settings(
        postgres_dsn="postgresql://db/helpdesk",
        postgres_pool_min_size=3,
        postgres_pool_max_size=9,
        _env_file=None,
    )

    postgres = PostgresPool.from_settings(settings)

    assert (postgres.dsn, postgres.min_size, postgres.max_size) == ("postgresql://db/helpdesk", 3, 9)
