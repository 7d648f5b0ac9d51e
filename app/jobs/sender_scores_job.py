"""
Sender Scores Job.
Recomputes Laplace-smoothed sender relevance scores from graded feedback.
"""

import asyncio

from app.features.inbox_actions.services.sender_scores import sender_score_service
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_INTERVAL_HOURS = 24


async def run_sender_scores_job(service=None) -> dict:
    service = service or sender_score_service
    scored = await service.recompute_all()
    return {
        "job_run": "sender_scores",
        "users": len(scored),
        "senders_scored": sum(scored.values()),
    }


async def start_sender_scores_scheduler():
    logger.info("Starting sender scores scheduler", interval_hours=JOB_INTERVAL_HOURS)

    while True:
        try:
            metrics = await run_sender_scores_job()
            logger.info("Sender scores cycle completed", **metrics)
            await asyncio.sleep(JOB_INTERVAL_HOURS * 3600)
        except asyncio.CancelledError:
            logger.info("Sender scores scheduler stopped")
            raise
        except Exception as e:
            logger.error("Error in sender scores scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
