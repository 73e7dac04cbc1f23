# interview_inbox/db/pool.py
"""
Postgres pool shared by the poller worker and the ops API.

One pool per process: the worker opens it around a job run, the API inside
its lifespan.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from interview_inbox.config import settings
from interview_inbox.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    """Owns the AsyncConnectionPool and hands out dict-row, autocommit connections."""

    def __init__(self, conninfo: str | None = None):
        self._conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None

    @property
    def initialized(self) -> bool:
        return self.pool is not None

    async def initialize(self) -> None:
        if self.pool is not None:
            logger.warning("Postgres pool already open")
            return

        pool_config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self._conninfo or settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._prepare_connection,
            **pool_config,
        )

        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Could not open Postgres pool", error=str(e), error_type=type(e).__name__)
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        logger.info(
            "Postgres pool open",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    async def _prepare_connection(self, conn: psycopg.AsyncConnection) -> None:
        # Autocommit: every helper call is its own statement, pooled conns never sit INTRANS
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"interview-inbox-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '60s'")

    async def close(self) -> None:
        if self.pool is None:
            return

        pool, self.pool = self.pool, None
        try:
            await asyncio.wait_for(pool.close(), timeout=POOL_CLOSE_TIMEOUT_SECONDS)
            logger.info("Postgres pool closed")
        except TimeoutError:
            logger.warning("Postgres pool close timed out", timeout=POOL_CLOSE_TIMEOUT_SECONDS)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        if self.pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        if self.pool is None:
            return {"healthy": False, "service": "database_pool", "error": "Pool not initialized"}

        started = time.perf_counter()
        try:
            async with self.connection() as conn:
                cursor = await conn.execute("SELECT 1 AS ok")
                row = await cursor.fetchone()
            if not row or row["ok"] != 1:
                raise RuntimeError(f"Unexpected probe result: {row}")
        except Exception as e:
            logger.error("Postgres health probe failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_size": stats.get("pool_size", 0),
            "pool_available": stats.get("pool_available", 0),
            "requests_waiting": stats.get("requests_waiting", 0),
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Pooled connection context manager, used as `async with await get_db_connection()`."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
