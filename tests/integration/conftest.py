"""Pytest fixtures for PostgreSQL integration tests.

Tests here need a reachable PostgreSQL server, configured with the usual
POSTGRES_* environment variables, and are skipped otherwise.
"""

import os
import socket
from typing import AsyncGenerator

import pytest

from services.voting_api.config import Settings
from services.voting_api.database import PostgresStore


@pytest.fixture(scope="session")
def postgres_settings() -> Settings:
    """Settings pointing at the test database, skipping when it is down."""
    settings = Settings(
        POSTGRES_HOST=os.getenv("POSTGRES_HOST", "localhost"),
        POSTGRES_PORT=int(os.getenv("POSTGRES_PORT", "5432")),
        STORE_BACKEND="postgres",
    )
    try:
        socket.create_connection((settings.POSTGRES_HOST, settings.POSTGRES_PORT), timeout=2).close()
    except OSError:
        pytest.skip("PostgreSQL not available")
    return settings


@pytest.fixture
async def postgres_store(postgres_settings) -> AsyncGenerator[PostgresStore, None]:
    """Store on a freshly truncated schema."""
    store = PostgresStore(postgres_settings.postgres_dsn, min_size=1, max_size=4)
    await store.initialize()
    async with store.pool.acquire() as conn:
        await conn.execute(
            "TRUNCATE TABLE completion_records, ballots, fingerprint_bindings, voters CASCADE"
        )

    yield store

    await store.close()
