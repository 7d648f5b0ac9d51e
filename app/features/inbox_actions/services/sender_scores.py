"""
Per-sender relevance scores.

score = (relevant + 1) / (total + 2), rounded to two decimals. Senders need
SENDER_SCORE_MIN_GRADED graded items before a score is computed.
"""

from __future__ import annotations

from typing import Any

from app.config import settings
from app.features.inbox_actions.domain.models import SenderScore
from app.features.inbox_actions.repository.feedback_repository import FeedbackRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOW_RELEVANCE_THRESHOLD = 0.3


def laplace_score(relevant: int, total: int) -> float:
    return round((relevant + 1) / (total + 2), 2)


def compute_sender_scores(tallies: list[dict[str, Any]], min_graded: int) -> list[SenderScore]:
    scores = []
    for tally in tallies:
        relevant = int(tally.get("relevant_count") or 0)
        not_relevant = int(tally.get("not_relevant_count") or 0)
        total = relevant + not_relevant
        if total < min_graded:
            continue
        scores.append(
            SenderScore(
                sender_email=tally["sender_email"],
                relevant_count=relevant,
                not_relevant_count=not_relevant,
                total_count=total,
                relevance_score=laplace_score(relevant, total),
            )
        )
    return scores


class SenderScoreService:
    def __init__(self, repository: Any = FeedbackRepository, min_graded: int | None = None):
        self.repository = repository
        self.min_graded = min_graded or settings.SENDER_SCORE_MIN_GRADED

    async def recompute(self, user_id: str) -> list[SenderScore]:
        tallies = await self.repository.get_sender_tallies(user_id)
        scores = compute_sender_scores(tallies, self.min_graded)
        if scores:
            await self.repository.upsert_sender_scores(user_id, scores)

        low = [s.sender_email for s in scores if s.relevance_score < LOW_RELEVANCE_THRESHOLD]
        logger.info(
            "Sender scores recomputed",
            user_id=user_id,
            senders=len(scores),
            low_relevance_senders=len(low),
        )
        return scores

    async def recompute_all(self) -> dict[str, int]:
        """Recompute scores for every user with feedback. Returns senders scored per user."""
        scored = {}
        for user_id in await self.repository.get_users_with_feedback():
            scored[user_id] = len(await self.recompute(user_id))
        return scored


sender_score_service = SenderScoreService()
