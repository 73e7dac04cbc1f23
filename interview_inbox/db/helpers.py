# interview_inbox/db/helpers.py
"""
Thin query helpers over the pool for the repositories.

Every psycopg failure surfaces as DatabaseError with the original exception
chained, so callers can tell transient connection trouble from bad SQL.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from interview_inbox.db.pool import get_db_connection
from interview_inbox.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]


class DatabaseError(Exception):
    """A query failed. `__cause__` holds the psycopg exception."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _run(
    operation: str,
    query: str,
    params: tuple,
    collect: Callable[[psycopg.AsyncCursor], Awaitable[Any]],
) -> Any:
    try:
        async with await get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return await collect(cursor)
    except psycopg.Error as e:
        logger.error(
            "Query failed",
            operation=operation,
            query=" ".join(query.split())[:120],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(query: str, params: tuple = ()) -> Row | None:
    """First row as a dict, or None."""

    async def first(cursor):
        return await cursor.fetchone() or None

    return await _run("fetch_one", query, params, first)


async def fetch_all(query: str, params: tuple = ()) -> list[Row]:
    async def every(cursor):
        return await cursor.fetchall()

    return await _run("fetch_all", query, params, every)


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a statement and return the affected row count."""

    async def rowcount(cursor):
        return cursor.rowcount

    return await _run("execute", query, params, rowcount)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry an async repository call on transient connection failures.

    Only DatabaseErrors caused by psycopg.OperationalError are retried, with
    exponential backoff from base_delay; anything else propagates at once.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    transient = isinstance(e.__cause__, psycopg.OperationalError)
                    if not transient or attempt >= max_retries:
                        raise

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Transient database failure, retrying",
                        operation=func.__qualname__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
