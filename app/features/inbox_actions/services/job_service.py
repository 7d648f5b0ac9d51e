"""
Job state machine for per-user background work.

pending -> scanning -> ranking -> complete | failed

At most one non-stale job per (user, job type) is live. A job is stale when
it is still in an active status more than JOB_STALE_AFTER_SECONDS after it
started. Polling never rewrites a stale job; the next successful claim
replaces it.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.features.inbox_actions.domain.models import (
    ALLOWED_JOB_TRANSITIONS,
    JOB_COMPLETE,
    JOB_FAILED,
    JOB_TYPES,
    TERMINAL_JOB_STATUSES,
    Job,
)
from app.features.inbox_actions.errors import InvalidJobTransition, JobAlreadyInProgress
from app.features.inbox_actions.repository.job_repository import JobRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_JOB_ERROR_LENGTH = 500


class JobService:
    def __init__(self, repository: Any = JobRepository, stale_after: timedelta | None = None, clock=None):
        self.repository = repository
        self.stale_after = stale_after or timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS)
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _check_job_type(job_type: str) -> None:
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type}")

    async def create_job(self, user_id: str, job_type: str) -> Job:
        """Replace any job of this type with a new pending one."""
        self._check_job_type(job_type)
        return await self.repository.create_job(user_id, job_type, self.now())

    async def claim(self, user_id: str, job_type: str) -> Job:
        """
        Claim the (user, job type) slot.

        Raises:
            JobAlreadyInProgress: If a non-stale job already holds the slot
        """
        self._check_job_type(job_type)
        now = self.now()
        job, created = await self.repository.claim_job(user_id, job_type, now, self.stale_after)
        if not created:
            raise JobAlreadyInProgress(user_id, job_type, job.snapshot(now, self.stale_after))
        return job

    async def _transition(
        self,
        job: Job,
        to_status: str,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> Job:
        if to_status not in ALLOWED_JOB_TRANSITIONS.get(job.status, frozenset()):
            raise InvalidJobTransition(job.id, job.status, to_status)

        updated = await self.repository.transition_job(
            job.id, job.status, to_status, result=result, error_message=error_message
        )
        if not updated:
            # Another writer moved or replaced the row since we read it
            raise InvalidJobTransition(job.id, job.status, to_status)

        job.status = to_status
        if to_status in TERMINAL_JOB_STATUSES:
            job.completed_at = self.now()
            job.result = result
            job.error_message = error_message
        return job

    async def advance(self, job: Job, status: str) -> Job:
        """Move a running job to scanning or ranking."""
        if status in TERMINAL_JOB_STATUSES:
            raise InvalidJobTransition(job.id, job.status, status)
        return await self._transition(job, status)

    async def complete(self, job: Job, result: dict[str, Any]) -> Job:
        job = await self._transition(job, JOB_COMPLETE, result=result)
        logger.info("Job complete", job_id=job.id, user_id=job.user_id, job_type=job.job_type)
        return job

    async def fail(self, job: Job, error: str, result: dict[str, Any] | None = None) -> Job:
        message = (error or "unknown error")[:MAX_JOB_ERROR_LENGTH]
        job = await self._transition(job, JOB_FAILED, result=result, error_message=message)
        logger.warning(
            "Job failed", job_id=job.id, user_id=job.user_id, job_type=job.job_type, error=message
        )
        return job

    async def get_latest(self, user_id: str, job_type: str) -> Job | None:
        self._check_job_type(job_type)
        return await self.repository.get_latest_job(user_id, job_type)

    async def is_in_progress(self, user_id: str, job_type: str) -> bool:
        job = await self.get_latest(user_id, job_type)
        return bool(job and job.is_in_progress(self.now(), self.stale_after))

    async def get_status(self, user_id: str, job_type: str) -> dict[str, Any] | None:
        """Snapshot of the latest job, or None. Read-only even for stale jobs."""
        job = await self.get_latest(user_id, job_type)
        if not job:
            return None
        return job.snapshot(self.now(), self.stale_after)

    async def get_result(self, user_id: str, job_type: str) -> dict[str, Any] | None:
        job = await self.get_latest(user_id, job_type)
        if not job or job.status != JOB_COMPLETE:
            return None
        return job.result


job_service = JobService()
