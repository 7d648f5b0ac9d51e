import pytest

from app.features.inbox_actions.errors import JobAlreadyInProgress
from app.features.inbox_actions.services.calendar_sync import CalendarSyncResult
from app.jobs.calendar_sync_job import run_calendar_sync_retry
from app.jobs.inbox_processing_job import InboxProcessingJob
from app.jobs.sender_scores_job import run_sender_scores_job
from app.services.token_service import TokenServiceError


class StubTokens:
    def __init__(self, user_ids):
        self.user_ids = user_ids

    async def get_connected_user_ids(self):
        return list(self.user_ids)


class StubPipeline:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls = []

    async def run(self, user_id, options):
        self.calls.append((user_id, options))
        outcome = self.outcomes[user_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_inbox_processing_job_aggregates_users():
    pipeline = StubPipeline(
        {
            "ok": {"success": True, "events_created": 2, "todos_created": 3, "errors": []},
            "failed-run": {"success": False, "events_created": 0, "todos_created": 0, "errors": ["run failed: x"]},
            "busy": JobAlreadyInProgress("busy", "process_emails"),
            "revoked": TokenServiceError("Refresh token is invalid or revoked", user_id="revoked", recoverable=False),
            "crash": RuntimeError("unexpected"),
        }
    )
    job = InboxProcessingJob(pipeline=pipeline, tokens=StubTokens(list(pipeline.outcomes)))

    metrics = await job.run_once()

    assert metrics["users_processed"] == 1
    assert metrics["users_skipped"] == 1
    assert metrics["users_failed"] == 3
    assert metrics["events_created"] == 2
    assert metrics["todos_created"] == 3
    assert metrics["errors_count"] == 3
    assert all(options == {"date_range": "yesterday"} for _, options in pipeline.calls)
    assert job.is_running is False


@pytest.mark.asyncio
async def test_inbox_processing_job_skips_when_running():
    job = InboxProcessingJob(pipeline=StubPipeline({}), tokens=StubTokens([]))
    job.is_running = True

    assert await job.run_once() == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_calendar_sync_retry_job():
    class StubSync:
        async def retry_pending(self, limit=100):
            return CalendarSyncResult(synced=3, failed=1, errors=["calendar sync failed for 'Trip': boom"])

    assert await run_calendar_sync_retry(StubSync()) == {
        "job_run": "calendar_sync_retry",
        "synced": 3,
        "failed": 1,
        "errors_count": 1,
    }


@pytest.mark.asyncio
async def test_sender_scores_job():
    class StubScores:
        async def recompute_all(self):
            return {"user-1": 4, "user-2": 0}

    assert await run_sender_scores_job(StubScores()) == {
        "job_run": "sender_scores",
        "users": 2,
        "senders_scored": 4,
    }
