"""Database connection pool"""
import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import psycopg
from psycopg.conninfo import conninfo_to_dict
from psycopg_pool import AsyncConnectionPool

from basic_api.config import PoolSettings
from basic_api.errors import (
    InvalidConnectionStringError,
    PoolConnectError,
    PoolTimeoutError,
)

logger = logging.getLogger(__name__)

POOL_NAME = "basic_api"

# psycopg_pool has no "disabled" value for idle and lifetime limits
UNBOUNDED_SECS = 365 * 24 * 3600.0


class Database:
    """
    Shared handle to the connection pool.

    Every request handler receives the same instance; copying it returns the
    same handle so all holders see the same open/closed state.
    """

    def __init__(self, pool: AsyncConnectionPool):
        self._pool = pool

    def __copy__(self) -> "Database":
        return self

    def __deepcopy__(self, memo) -> "Database":
        return self

    @property
    def pool(self) -> AsyncConnectionPool:
        return self._pool

    @property
    def is_closed(self) -> bool:
        return self._pool.closed

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a connection, waiting at most the pool's acquire timeout"""
        async with self._pool.connection(timeout=timeout) as conn:
            yield conn

    async def ping(self, timeout: Optional[float] = None) -> bool:
        """Run ``SELECT 1`` through the pool"""
        try:
            async with self.connection(timeout=timeout) as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error as e:
            logger.warning("Database ping failed: %s", e)
            return False
        return True

    def get_stats(self) -> dict:
        return self._pool.get_stats()

    async def close(self):
        if not self._pool.closed:
            await self._pool.close()
            logger.info("Database pool closed")


def validate_conninfo(database_url: str):
    """Reject connection strings libpq cannot parse"""
    try:
        conninfo_to_dict(database_url)
    except psycopg.Error as e:
        raise InvalidConnectionStringError(str(e)) from e


def pool_options(settings: PoolSettings) -> dict:
    """Keyword arguments for AsyncConnectionPool"""
    return {
        "min_size": settings.min_connections,
        "max_size": settings.max_connections,
        "timeout": settings.acquire_timeout,
        "max_idle": settings.idle_timeout or UNBOUNDED_SECS,
        "max_lifetime": settings.max_lifetime or UNBOUNDED_SECS,
        # libpq bounds each individual connection attempt
        "kwargs": {"connect_timeout": max(1, math.ceil(settings.connect_timeout))},
    }


async def check_connection(database_url: str, timeout: float):
    """
    Open one connection outside the pool and run ``SELECT 1``.

    libpq's reason is kept for refused connections, unknown hosts and failed
    authentication; a server that never answers hits ``timeout``.
    """
    try:
        conn = await asyncio.wait_for(psycopg.AsyncConnection.connect(database_url), timeout)
    except asyncio.TimeoutError:
        raise PoolTimeoutError(timeout) from None
    except psycopg.OperationalError as e:
        raise PoolConnectError(str(e)) from e

    async with conn:
        try:
            await asyncio.wait_for(conn.execute("SELECT 1"), timeout)
        except asyncio.TimeoutError:
            raise PoolTimeoutError(timeout) from None
        except psycopg.OperationalError as e:
            raise PoolConnectError(str(e)) from e


async def build_pool(database_url: str, settings: PoolSettings) -> Database:
    """
    Create the connection pool.

    Eager pools (the default) first connect directly and run ``SELECT 1``, so
    an unreachable database fails startup with libpq's reason, or with a
    timeout after ``connect_timeout``. Lazy pools return immediately and
    report connection problems on first use.
    """
    validate_conninfo(database_url)

    if not settings.lazy:
        await check_connection(database_url, settings.connect_timeout)

    pool = AsyncConnectionPool(
        conninfo=database_url,
        open=False,
        name=POOL_NAME,
        **pool_options(settings),
    )
    try:
        await pool.open(wait=False)
    except BaseException:
        await pool.close()
        raise

    logger.info(
        "Database pool %s (min=%d, max=%d)",
        "created lazily" if settings.lazy else "connected",
        settings.min_connections,
        settings.max_connections,
    )
    return Database(pool)
