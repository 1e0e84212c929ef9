"""
Async PostgreSQL connection pool module.

This module owns the single asyncpg connection pool used by the PostgreSQL
backed CRM store. The pool is only created when DATABASE_URL is configured;
in demo mode nothing here is ever called.

Key Components:
- Global connection pool singleton (_pool)
- init_db(): Initialize the connection pool at application startup
- get_db_pool(): Get the pool instance (initializes if needed)
- close_db(): Gracefully close the pool at application shutdown

Connection Pool Configuration:
- min_size: 2 (minimum idle connections kept in pool)
- max_size: 10 (maximum connections in pool)
- command_timeout: 60 seconds (query timeout)

Usage:
    # At application startup (in FastAPI lifespan)
    await init_db()

    # In the store
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(SELECT_DEALS)

    # At application shutdown
    await close_db()
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from pulse_backend.core.config import get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


class DatabaseNotConfiguredError(RuntimeError):
    """Raised when a pool is requested but DATABASE_URL is not set."""


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    If the pool is already initialized, the existing pool is returned
    (idempotent behavior).

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        DatabaseNotConfiguredError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise DatabaseNotConfiguredError("DATABASE_URL is not configured")

        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=2,
            max_size=10,
            command_timeout=60,
        )
        logger.info("asyncpg pool created (min_size=2, max_size=10)")

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing if needed.

    Returns:
        Pool: The asyncpg connection pool instance.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    This function is idempotent - calling it when the pool is not
    initialized has no effect.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
