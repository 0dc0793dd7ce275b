"""Database utilities for the PostgreSQL chat store.

Provides:
- Connection pool factory with statement/lock timeouts and JSONB codecs
- Transaction context manager
- Retry decorator for transient database failures
- Health check and graceful shutdown helpers
"""

from __future__ import annotations

import asyncio
import functools
import json
import random

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import asyncpg

from helpdesk_chat.utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")


class DatabaseError(Exception):
    """Base exception for database operations."""


class ConnectionPoolExhausted(DatabaseError):
    """Raised when connection pool is exhausted and timeout expires."""


async def _init_connection(conn: asyncpg.Connection, command_timeout: float) -> None:
    """Per-connection setup: timeouts and transparent JSON(B) encoding."""
    # Statement and lock timeouts are in milliseconds
    await conn.execute(f"SET statement_timeout = '{int(command_timeout * 1000)}'")
    await conn.execute(f"SET lock_timeout = '{int(command_timeout * 1000)}'")
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
    statement_cache_size: int = 100,
    max_inactive_connection_lifetime: float = 300.0,
) -> asyncpg.Pool:
    """Create a production-configured database connection pool.

    Args:
        dsn: PostgreSQL connection string
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        command_timeout: Default query timeout in seconds
        connection_timeout: Timeout for establishing the pool
        statement_cache_size: Prepared statement cache per connection
        max_inactive_connection_lifetime: Close idle connections after this time

    Raises:
        ConnectionPoolExhausted: If initial connections cannot be established
    """

    async def init_connection(conn: asyncpg.Connection) -> None:
        await _init_connection(conn, command_timeout)

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                statement_cache_size=statement_cache_size,
                max_inactive_connection_lifetime=max_inactive_connection_lifetime,
                init=init_connection,
            ),
            timeout=connection_timeout,
        )
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Connection pool creation timed out after {connection_timeout}s") from e
    except Exception as e:
        raise ConnectionPoolExhausted(f"Failed to create connection pool: {e}") from e

    if pool is None:
        raise ConnectionPoolExhausted("Failed to create connection pool")
    return pool


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a database connection with timeout and proper error handling.

    Raises:
        ConnectionPoolExhausted: If connection cannot be acquired within timeout
    """
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(
            f"Could not acquire database connection within {timeout}s - pool may be exhausted"
        ) from e


@asynccontextmanager
async def transaction(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
    isolation: str = "read_committed",
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Execute operations within a database transaction.

    Example:
        async with transaction(pool) as conn:
            await conn.execute("INSERT INTO messages ...")
            await conn.execute("UPDATE chats ...")
    """
    async with acquire_connection(pool, timeout=timeout) as conn, conn.transaction(isolation=isolation):
        yield conn


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retryable_exceptions: tuple[type[Exception], ...] = (
        asyncpg.PostgresConnectionError,
        asyncpg.InterfaceError,
        ConnectionPoolExhausted,
    ),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for retrying database operations on transient failures.

    Uses exponential backoff with jitter to prevent thundering herd.
    Only connection-level failures are retried; constraint violations and
    query errors propagate on the first attempt.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:  # noqa: PERF203
                    if attempt + 1 >= max_attempts:
                        logger.error(
                            f"Database operation {func.__name__} failed after {max_attempts} attempts: {e}",
                            exc_info=True,
                        )
                        raise

                    delay = min(base_delay * (2**attempt) + random.uniform(0, 0.5), max_delay)
                    logger.warning(
                        f"Database operation {func.__name__} failed (attempt {attempt + 1}/{max_attempts}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry loop exited unexpectedly")

        return wrapper

    return decorator


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Check database pool health and return statistics."""
    error: str | None = None
    try:
        async with acquire_connection(pool, timeout=5.0) as conn:
            result = await conn.fetchval("SELECT 1")
            is_healthy = result == 1
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        is_healthy = False
        error = type(e).__name__

    return {
        "healthy": is_healthy,
        "pool_size": pool.get_size(),
        "pool_free": pool.get_idle_size(),
        "pool_used": pool.get_size() - pool.get_idle_size(),
        "error": error,
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Close the pool after active connections drain (or the timeout passes)."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    while pool.get_size() > pool.get_idle_size():
        if loop.time() - start > timeout:
            logger.warning(
                f"Timeout waiting for connections to drain, "
                f"forcing close ({pool.get_size() - pool.get_idle_size()} active)"
            )
            break
        await asyncio.sleep(0.1)

    await pool.close()
