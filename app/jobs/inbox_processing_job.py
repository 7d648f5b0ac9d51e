"""
Inbox Processing Job.
Runs the inbox pipeline for every user with connected Google credentials.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.features.inbox_actions.errors import JobAlreadyInProgress, RunValidationError
from app.infrastructure.observability.logging import get_logger
from app.services.token_service import TokenServiceError

logger = get_logger(__name__)

MAX_CONCURRENT_USERS = 5


class InboxProcessingMetrics:
    """Per-cycle counters for the inbox processing job."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.users_skipped = 0
        self.users_failed = 0
        self.events_created = 0
        self.todos_created = 0
        self.errors: list[dict] = []

    def record_run(self, user_id: str, result: dict[str, Any]):
        if result.get("success"):
            self.users_processed += 1
        else:
            self.users_failed += 1
            self.errors.append({"user_id": user_id, "errors": result.get("errors", [])[-3:]})
        self.events_created += result.get("events_created", 0)
        self.todos_created += result.get("todos_created", 0)

    def record_skip(self, user_id: str, reason: str):
        self.users_skipped += 1
        logger.info("Skipping user", user_id=user_id, reason=reason, job_run="inbox_processing")

    def record_failure(self, user_id: str, error: str):
        self.users_failed += 1
        self.errors.append({"user_id": user_id, "error": error})
        logger.warning("Inbox processing failed for user", user_id=user_id, error=error, job_run="inbox_processing")

    def to_dict(self) -> dict:
        return {
            "job_run": "inbox_processing",
            "start_time": self.start_time.isoformat(),
            "duration_seconds": round((datetime.now(UTC) - self.start_time).total_seconds(), 2),
            "users_processed": self.users_processed,
            "users_skipped": self.users_skipped,
            "users_failed": self.users_failed,
            "events_created": self.events_created,
            "todos_created": self.todos_created,
            "errors_count": len(self.errors),
        }


class InboxProcessingJob:
    def __init__(self, pipeline=None, tokens=None, options: dict[str, Any] | None = None):
        self._pipeline = pipeline
        self._tokens = tokens
        self.options = options or {"date_range": "yesterday"}
        self.is_running = False
        self.metrics = InboxProcessingMetrics()

    @property
    def pipeline(self):
        if self._pipeline is None:
            from app.features.inbox_actions.pipeline.orchestrator import get_inbox_pipeline

            self._pipeline = get_inbox_pipeline()
        return self._pipeline

    @property
    def tokens(self):
        if self._tokens is None:
            from app.services.token_service import token_service

            self._tokens = token_service
        return self._tokens

    async def run_once(self) -> dict:
        if self.is_running:
            logger.warning("Inbox processing job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()

            user_ids = await self.tokens.get_connected_user_ids()
            logger.info("Starting inbox processing job", user_count=len(user_ids))

            semaphore = asyncio.Semaphore(MAX_CONCURRENT_USERS)

            async def process(user_id: str):
                async with semaphore:
                    await self._process_user(user_id)

            await asyncio.gather(*(process(user_id) for user_id in user_ids))

            metrics = self.metrics.to_dict()
            logger.info("Inbox processing job completed", **metrics)
            return metrics
        finally:
            self.is_running = False

    async def _process_user(self, user_id: str):
        try:
            result = await self.pipeline.run(user_id, self.options)
            self.metrics.record_run(user_id, result)
        except JobAlreadyInProgress:
            self.metrics.record_skip(user_id, "already_in_progress")
        except (RunValidationError, TokenServiceError) as e:
            self.metrics.record_failure(user_id, str(e))
        except Exception as e:
            self.metrics.record_failure(user_id, f"Unexpected error: {type(e).__name__}: {e}")


inbox_processing_job = InboxProcessingJob()


async def run_inbox_processing_job() -> dict:
    """Run a single cycle for all connected users."""
    return await inbox_processing_job.run_once()


async def start_inbox_processing_scheduler():
    """Run the inbox processing job every INBOX_PROCESSING_INTERVAL_SECONDS."""
    interval = settings.INBOX_PROCESSING_INTERVAL_SECONDS
    logger.info("Starting inbox processing scheduler", interval_seconds=interval)

    while True:
        try:
            await run_inbox_processing_job()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Inbox processing scheduler stopped")
            raise
        except Exception as e:
            logger.error("Error in inbox processing scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
