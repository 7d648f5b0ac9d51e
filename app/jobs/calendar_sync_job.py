"""
Calendar Sync Retry Job.
Re-pushes events whose calendar sync is pending or failed, until they reach
CALENDAR_SYNC_MAX_RETRIES attempts.
"""

import asyncio

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_INTERVAL_MINUTES = 5
EVENTS_PER_CYCLE = 100


async def run_calendar_sync_retry(sync_service=None) -> dict:
    """Run a single retry pass and return its counts."""
    if sync_service is None:
        from app.features.inbox_actions.adapters.google_workspace import google_workspace_adapter
        from app.features.inbox_actions.services.calendar_sync import CalendarSyncService

        sync_service = CalendarSyncService(google_workspace_adapter)

    result = await sync_service.retry_pending(limit=EVENTS_PER_CYCLE)
    return {
        "job_run": "calendar_sync_retry",
        "synced": result.synced,
        "failed": result.failed,
        "errors_count": len(result.errors),
    }


async def start_calendar_sync_scheduler():
    logger.info("Starting calendar sync retry scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            metrics = await run_calendar_sync_retry()
            logger.info("Calendar sync retry cycle completed", **metrics)
            await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)
        except asyncio.CancelledError:
            logger.info("Calendar sync retry scheduler stopped")
            raise
        except Exception as e:
            logger.error("Error in calendar sync retry scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
