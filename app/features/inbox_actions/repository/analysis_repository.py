"""
Free-text batch analyses (summary, tone, intent, implicit context).
"""

from app.db.helpers import fetch_all, fetch_val
from app.features.inbox_actions.domain.extraction import ExtractionOutcome
from app.features.inbox_actions.domain.models import StoredAnalysis
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AnalysisRepository:
    """Persistence helpers for the email_analyses table."""

    @classmethod
    async def store_analysis(
        cls,
        user_id: str,
        provider_message_ids: list[str],
        provider: str,
        outcome: ExtractionOutcome,
        connection=None,
    ) -> str:
        """Store the deanonymized analysis of one batch. Returns the row id."""
        analysis = outcome.human_analysis
        query = """
            INSERT INTO email_analyses (
                user_id, provider_message_ids, ai_provider, email_summary, email_tone,
                email_intent, implicit_context, events_extracted, todos_extracted
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
        """
        analysis_id = await fetch_val(
            query,
            (
                user_id,
                list(provider_message_ids),
                provider,
                analysis.email_summary,
                analysis.email_tone,
                analysis.email_intent,
                analysis.implicit_context,
                len(outcome.events),
                len(outcome.todos),
            ),
            connection=connection,
        )
        return str(analysis_id)

    @classmethod
    async def get_analyses_for_email(cls, user_id: str, provider_message_id: str) -> list[StoredAnalysis]:
        """Analyses of every batch that included this email, newest first."""
        query = """
            SELECT id, provider_message_ids, ai_provider, email_summary, email_tone,
                   email_intent, implicit_context, events_extracted, todos_extracted, created_at
            FROM email_analyses
            WHERE user_id = %s AND %s = ANY(provider_message_ids)
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (user_id, provider_message_id))
        return [
            StoredAnalysis(
                id=str(row["id"]),
                provider_message_ids=list(row["provider_message_ids"] or []),
                ai_provider=row["ai_provider"],
                email_summary=row["email_summary"],
                email_tone=row.get("email_tone"),
                email_intent=row.get("email_intent"),
                implicit_context=row["implicit_context"],
                events_extracted=row["events_extracted"],
                todos_extracted=row["todos_extracted"],
                created_at=row.get("created_at"),
            )
            for row in rows
        ]
