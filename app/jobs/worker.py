"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler. Passing --once (or
WORKER_ONCE=1) runs a single cycle instead of looping.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.db.schema import apply_schema
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.calendar_sync_job import run_calendar_sync_retry, start_calendar_sync_scheduler
from app.jobs.inbox_processing_job import run_inbox_processing_job, start_inbox_processing_scheduler
from app.jobs.sender_scores_job import run_sender_scores_job, start_sender_scores_scheduler

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[object]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "inbox_processing": start_inbox_processing_scheduler,
    "calendar_sync_retry": start_calendar_sync_scheduler,
    "sender_scores": start_sender_scores_scheduler,
}

ONE_SHOT_REGISTRY: dict[str, JobCoroutine] = {
    "inbox_processing": run_inbox_processing_job,
    "calendar_sync_retry": run_calendar_sync_retry,
    "sender_scores": run_sender_scores_job,
}


def _resolve_job_name(argv: list[str] | None = None) -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    args = [a for a in (sys.argv[1:] if argv is None else argv) if not a.startswith("--")]
    if args:
        return args[0].strip().lower()
    return os.getenv("WORKER_JOB", "inbox_processing").strip().lower()


def _resolve_once(argv: list[str] | None = None) -> bool:
    args = sys.argv[1:] if argv is None else argv
    return "--once" in args or os.getenv("WORKER_ONCE", "").strip().lower() in ("1", "true", "yes")


async def run_worker(job_name: str | None = None, once: bool = False) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name, once=once)
    await db_pool.initialize(name)
    try:
        if settings.DB_APPLY_SCHEMA:
            await apply_schema()
        if once:
            result = await ONE_SHOT_REGISTRY[name]()
            logger.info("Worker cycle finished", job=name, result=result)
        else:
            await JOB_REGISTRY[name]()
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name(), once=_resolve_once()))


if __name__ == "__main__":
    main()
