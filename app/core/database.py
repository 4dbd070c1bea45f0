"""
Async database connection using asyncpg (NO ORM).

All three collections (users, voting sessions, ballots) live in PostgreSQL.
The one-ballot-per-user-per-session rule is a UNIQUE constraint on the
ballots table, so it holds across any number of worker processes.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import asyncpg

from app.core.config import Settings
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_db_pool(settings: Settings) -> asyncpg.Pool:
    """
    Initialize database connection pool on startup.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    _pool = await asyncpg.create_pool(
        dsn=settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        max_inactive_connection_lifetime=300,  # Close idle connections after 5 minutes
        timeout=30,  # Connection timeout in seconds
        command_timeout=60,  # Query timeout in seconds
    )
    logger.info(
        f"Database pool initialized: {_pool.get_size()} / {_pool.get_max_size()} connections"
    )
    return _pool


async def close_db_pool() -> None:
    """
    Close database connection pool on shutdown.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool | None:
    return _pool


@asynccontextmanager
async def get_db_connection():
    """
    Get a database connection from the pool.

    Usage:
        async with get_db_connection() as conn:
            result = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    async with _pool.acquire() as connection:
        yield connection


async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/voting-sessions/stats")
        async def stats(conn: Annotated[asyncpg.Connection, Depends(get_db)]):
            return await get_session_stats(conn)
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    async with _pool.acquire() as connection:
        yield connection


def affected_rows(status: str) -> int:
    """Extract the row count from a command status like "DELETE 3"."""
    return int(status.split()[-1])
