"""
Idempotent storage of inbox messages.

Emails are keyed by (user_id, provider_message_id). Inserts never create a
second row for the same key; rows that were stored but never processed (a
failed batch, a crashed run) are refreshed and picked up again by the next run.
"""

from collections.abc import Iterable

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.db.pool import db_pool
from app.features.inbox_actions.domain.models import EmailRecord
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_FETCH_ERROR_LENGTH = 500


class EmailRepository:
    """Persistence helpers for the emails table."""

    @classmethod
    async def email_exists(cls, user_id: str, provider_message_id: str) -> bool:
        """True once a row exists for this message, processed or not."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM emails WHERE user_id = %s AND provider_message_id = %s
            )
        """
        return bool(await fetch_val(query, (user_id, provider_message_id)))

    @classmethod
    async def get_processed_message_ids(
        cls, user_id: str, provider_message_ids: Iterable[str]
    ) -> set[str]:
        """Subset of the given message ids that are already stored and processed."""
        ids = list(provider_message_ids)
        if not ids:
            return set()

        query = """
            SELECT provider_message_id
            FROM emails
            WHERE user_id = %s AND provider_message_id = ANY(%s) AND processed = TRUE
        """
        rows = await fetch_all(query, (user_id, ids))
        return {row["provider_message_id"] for row in rows}

    @classmethod
    async def store_emails(cls, user_id: str, records: Iterable[EmailRecord]) -> int:
        """
        Insert new emails, or refresh rows that exist but were never processed.

        Processed rows are left untouched. Returns the number of rows written.
        """
        query = """
            INSERT INTO emails (
                user_id, provider_message_id, thread_id, from_email, from_name,
                subject, snippet, body_text, attachment_content, labels, received_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, provider_message_id) DO UPDATE
            SET thread_id = EXCLUDED.thread_id,
                from_email = EXCLUDED.from_email,
                from_name = EXCLUDED.from_name,
                subject = EXCLUDED.subject,
                snippet = EXCLUDED.snippet,
                body_text = EXCLUDED.body_text,
                attachment_content = EXCLUDED.attachment_content,
                labels = EXCLUDED.labels,
                received_at = EXCLUDED.received_at,
                fetch_error = NULL,
                updated_at = NOW()
            WHERE emails.processed = FALSE
            RETURNING id
        """

        written = 0
        async with db_pool.transaction() as conn:
            for record in records:
                row = await fetch_one(
                    query,
                    (
                        user_id,
                        record.provider_message_id,
                        record.thread_id,
                        record.from_email,
                        record.from_name,
                        record.subject,
                        record.snippet,
                        record.body_text,
                        record.attachment_content,
                        list(record.labels),
                        record.received_at,
                    ),
                    connection=conn,
                )
                if row:
                    record.id = str(row["id"])
                    written += 1

        logger.info("Emails stored", user_id=user_id, written=written)
        return written

    @classmethod
    async def record_fetch_failure(cls, user_id: str, provider_message_id: str, error: str) -> int:
        """
        Record a failed content fetch and bump the attempt counter.

        A placeholder row is created when the message was never stored.
        Returns the attempt count after this failure.
        """
        query = """
            INSERT INTO emails (user_id, provider_message_id, fetch_error, fetch_attempts)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (user_id, provider_message_id) DO UPDATE
            SET fetch_error = EXCLUDED.fetch_error,
                fetch_attempts = emails.fetch_attempts + 1,
                updated_at = NOW()
            RETURNING fetch_attempts
        """
        attempts = await fetch_val(
            query, (user_id, provider_message_id, (error or "")[:MAX_FETCH_ERROR_LENGTH])
        )

        logger.warning(
            "Email fetch failure recorded",
            user_id=user_id,
            provider_message_id=provider_message_id,
            attempts=attempts,
        )
        return int(attempts or 0)

    @classmethod
    async def mark_analyzed(cls, user_id: str, provider_message_ids: Iterable[str], connection=None) -> int:
        """Mark emails analyzed. Analyzed always implies processed."""
        ids = list(provider_message_ids)
        if not ids:
            return 0

        query = """
            UPDATE emails
            SET analyzed = TRUE, processed = TRUE, updated_at = NOW()
            WHERE user_id = %s AND provider_message_id = ANY(%s)
        """
        updated = await execute_query(query, (user_id, ids), connection=connection)
        logger.info("Emails marked analyzed", user_id=user_id, count=updated)
        return updated

    @classmethod
    async def mark_labeled(cls, user_id: str, provider_message_ids: Iterable[str]) -> int:
        """Record that the mailbox copy of these emails carries the processed label."""
        ids = list(provider_message_ids)
        if not ids:
            return 0

        query = """
            UPDATE emails
            SET labeled = TRUE, updated_at = NOW()
            WHERE user_id = %s AND provider_message_id = ANY(%s)
        """
        return await execute_query(query, (user_id, ids))

    @classmethod
    async def get_counts(cls, user_id: str) -> dict[str, int]:
        """Total, processed and analyzed counts, derived on read."""
        query = """
            SELECT COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE processed) AS processed,
                   COUNT(*) FILTER (WHERE analyzed) AS analyzed
            FROM emails
            WHERE user_id = %s
        """
        row = await fetch_one(query, (user_id,))
        if not row:
            return {"total": 0, "processed": 0, "analyzed": 0}
        return {key: int(row[key] or 0) for key in ("total", "processed", "analyzed")}
