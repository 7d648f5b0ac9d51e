"""
Relevance feedback and sender scores.

Every persisted event and todo is recorded as an ungraded feedback item. Once
the user grades items (relevant / not relevant), the graded rows become
few-shot examples for later prompts and feed the per-sender relevance score.
"""

from collections.abc import Iterable

from app.db.helpers import execute_many, fetch_all
from app.features.inbox_actions.domain.models import FeedbackExample, SenderScore
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FeedbackRepository:
    """Persistence helpers for relevance_feedback and sender_scores."""

    @classmethod
    async def get_graded_examples(
        cls, user_id: str, limit_per_category: int
    ) -> tuple[list[FeedbackExample], list[FeedbackExample]]:
        """Most recently graded (relevant, not_relevant) examples, each list capped."""
        query = """
            SELECT item_type, item_text, source_sender
            FROM relevance_feedback
            WHERE user_id = %s AND is_relevant = %s
            ORDER BY updated_at DESC
            LIMIT %s
        """
        relevant_rows = await fetch_all(query, (user_id, True, limit_per_category))
        not_relevant_rows = await fetch_all(query, (user_id, False, limit_per_category))

        def to_examples(rows: list[dict]) -> list[FeedbackExample]:
            return [
                FeedbackExample(
                    item_type=row["item_type"],
                    item_text=row["item_text"],
                    source_sender=row.get("source_sender"),
                )
                for row in rows
            ]

        return to_examples(relevant_rows), to_examples(not_relevant_rows)

    @classmethod
    async def record_items(
        cls, user_id: str, items: Iterable[tuple[str, str, str | None, str | None]], connection=None
    ) -> int:
        """
        Record persisted items as ungraded feedback.

        Args:
            items: (item_type, item_text, source_email_id, source_sender) tuples
        """
        rows = [(user_id, item_type, text, email_id, sender) for item_type, text, email_id, sender in items]
        await execute_many(
            """
            INSERT INTO relevance_feedback (user_id, item_type, item_text, source_email_id, source_sender)
            VALUES (%s, %s, %s, %s, %s)
            """,
            rows,
            connection=connection,
        )
        return len(rows)

    @classmethod
    async def get_sender_tallies(cls, user_id: str) -> list[dict]:
        """Relevant/not-relevant counts per sender over graded items."""
        query = """
            SELECT source_sender AS sender_email,
                   COUNT(*) FILTER (WHERE is_relevant) AS relevant_count,
                   COUNT(*) FILTER (WHERE NOT is_relevant) AS not_relevant_count
            FROM relevance_feedback
            WHERE user_id = %s AND is_relevant IS NOT NULL AND source_sender IS NOT NULL
            GROUP BY source_sender
        """
        return await fetch_all(query, (user_id,))

    @classmethod
    async def upsert_sender_scores(cls, user_id: str, scores: Iterable[SenderScore]) -> int:
        rows = [
            (
                user_id,
                score.sender_email,
                score.relevant_count,
                score.not_relevant_count,
                score.relevance_score,
            )
            for score in scores
        ]
        await execute_many(
            """
            INSERT INTO sender_scores (
                user_id, sender_email, relevant_count, not_relevant_count, relevance_score
            )
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id, sender_email) DO UPDATE
            SET relevant_count = EXCLUDED.relevant_count,
                not_relevant_count = EXCLUDED.not_relevant_count,
                relevance_score = EXCLUDED.relevance_score,
                updated_at = NOW()
            """,
            rows,
        )
        logger.info("Sender scores saved", user_id=user_id, count=len(rows))
        return len(rows)

    @classmethod
    async def get_users_with_feedback(cls) -> list[str]:
        rows = await fetch_all(
            "SELECT DISTINCT user_id FROM relevance_feedback WHERE is_relevant IS NOT NULL ORDER BY user_id"
        )
        return [str(row["user_id"]) for row in rows]
