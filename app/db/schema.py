"""
Database schema initialization.

The DDL lives in schema.sql next to this module and only uses
CREATE ... IF NOT EXISTS, so applying it is idempotent.
"""

from pathlib import Path

import psycopg

from app.db.helpers import DatabaseError
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

REQUIRED_TABLES = (
    "oauth_tokens",
    "child_profiles",
    "emails",
    "events",
    "todos",
    "jobs",
    "relevance_feedback",
    "sender_scores",
)


def load_schema_sql() -> str:
    """Return the schema DDL script."""
    return SCHEMA_PATH.read_text(encoding="utf-8")


async def apply_schema() -> None:
    """
    Create all tables and indexes (idempotent).

    Raises:
        DatabaseError: If any statement fails; nothing is applied in that case
    """
    script = load_schema_sql()

    try:
        async with db_pool.transaction() as conn:
            await conn.execute(script)
    except psycopg.Error as e:
        logger.error("Schema initialization failed", error=str(e))
        raise DatabaseError(f"Schema initialization failed: {e}", operation="apply_schema") from e

    logger.info("Database schema applied", tables=len(REQUIRED_TABLES))
