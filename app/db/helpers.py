"""
Query helpers used by every repository.

Each helper borrows a pooled connection (or runs on the one passed in, for
work inside db_pool.transaction()) and turns psycopg errors into
DatabaseError so callers only deal with one exception type.
"""

import asyncio
import functools
from collections.abc import AsyncGenerator, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection, get_db_transaction
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A query or transaction failed. recoverable=False means retrying is pointless."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    query: str, operation: str, connection: psycopg.AsyncConnection | None
) -> AsyncGenerator[psycopg.AsyncCursor, None]:
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                yield cur
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    yield cur
    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


@asynccontextmanager
async def db_transaction() -> AsyncGenerator[psycopg.AsyncConnection, None]:
    """
    db_pool.transaction() for multi-statement writes.

    Pass the yielded connection to the helpers. A failed commit surfaces as
    DatabaseError like any other query failure.
    """
    try:
        async with await get_db_transaction() as conn:
            yield conn
    except psycopg.Error as e:
        logger.error("Database transaction error", error=str(e))
        raise DatabaseError(f"Transaction failed: {e}", operation="transaction") from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    async with _cursor(query, "fetch_one", connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _cursor(query, "fetch_all", connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None."""
    async with _cursor(query, "fetch_val", connection) as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a statement and return the affected row count."""
    async with _cursor(query, "execute", connection) as cur:
        await cur.execute(query, params)
        return cur.rowcount


async def execute_many(
    query: str,
    params_seq: Iterable[Sequence[Any]],
    *,
    connection: psycopg.AsyncConnection | None = None,
) -> None:
    """
    Run one statement per parameter tuple inside a single transaction.

    Rows are written in the order of params_seq; nothing is written if any fails.
    With a connection, the rows join the caller's transaction instead.
    """
    payload = list(params_seq)
    if not payload:
        return

    try:
        if connection is not None:
            async with connection.cursor() as cur:
                await cur.executemany(query, payload)
        else:
            async with await get_db_transaction() as conn:
                async with conn.cursor() as cur:
                    await cur.executemany(query, payload)
    except psycopg.Error as e:
        logger.error("Database executemany error", query=query[:100], rows=len(payload), error=str(e))
        raise DatabaseError(f"Batch write failed: {e}", operation="execute_many") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a coroutine when it fails with a connection-level error.

    Only DatabaseError wrapping psycopg.OperationalError is retried, with
    exponential backoff (base_delay, 2x, 4x ...). Anything else propagates
    on the first failure.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    transient = isinstance(e.__cause__, psycopg.OperationalError)
                    if not transient or attempt >= max_retries:
                        raise

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise DatabaseError(
                f"Operation failed after {max_retries} retries",
                operation=func.__name__,
                recoverable=False,
            )

        return wrapper

    return decorator
