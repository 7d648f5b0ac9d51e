"""
Postgres pool for the background worker.

One AsyncConnectionPool per worker process. Connections come back as dict
rows in autocommit mode; anything that must be atomic goes through
transaction().
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    """Lifecycle wrapper around the worker's connection pool."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self.application_name = f"inbox-actions-{settings.environment}"
        self._initialized = False
        self._closed = False

    async def initialize(self, job_name: str | None = None) -> None:
        """
        Open the pool and prove one connection works.

        Args:
            job_name: Worker job, appended to application_name so
                pg_stat_activity shows which job holds a connection

        Raises:
            RuntimeError: If the pool was already closed or cannot connect
        """
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        if job_name:
            self.application_name = f"inbox-actions-{settings.environment}-{job_name}"

        config = self._pool_kwargs()
        self.pool = AsyncConnectionPool(conninfo=settings.DATABASE_URL, open=False, **config)

        try:
            await self.pool.open(wait=True)
            self._initialized = True
            await self._ping()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            await self._discard_pool()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool ready",
            application_name=self.application_name,
            min_size=config["min_size"],
            max_size=config["max_size"],
        )

    def _pool_kwargs(self) -> dict[str, Any]:
        config = settings.get_db_pool_config()
        config["check"] = AsyncConnectionPool.check_connection
        config["configure"] = self._configure_connection
        return config

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)

        # SET does not take bind parameters
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(self.application_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(
                sql.Literal(f"{settings.DB_STATEMENT_TIMEOUT_SECONDS}s")
            )
        )

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database ping returned an unexpected result")

    async def _discard_pool(self) -> None:
        if self.pool is None:
            return
        try:
            await self.pool.close()
        except Exception as e:
            logger.debug("Ignoring pool close error", error=str(e))
        self.pool = None

    async def close(self) -> None:
        """Drain and close the pool; safe to call more than once."""
        if not self._initialized or self._closed:
            return

        self._initialized = False
        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout=CLOSE_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow an autocommit connection."""
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection inside a transaction.

        Commits when the block exits normally, rolls back when it raises.
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn


db_pool = DatabasePoolManager()


async def get_db_connection():
    return db_pool.connection()


async def get_db_transaction():
    return db_pool.transaction()
