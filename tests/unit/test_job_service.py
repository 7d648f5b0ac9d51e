from datetime import timedelta

import pytest

from app.features.inbox_actions.domain.models import (
    JOB_COMPLETE,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RANKING,
    JOB_SCANNING,
    JOB_TYPE_ANALYZE_CHILDREN,
    JOB_TYPE_PROCESS_EMAILS,
    JOB_TYPE_SCAN_INBOX,
)
from app.features.inbox_actions.errors import InvalidJobTransition, JobAlreadyInProgress

USER = "user-1"


@pytest.mark.asyncio
async def test_claim_creates_pending_job(job_service_fake):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    assert job.status == JOB_PENDING
    assert await job_service_fake.is_in_progress(USER, JOB_TYPE_PROCESS_EMAILS) is True


@pytest.mark.asyncio
async def test_second_claim_rejected_with_snapshot(job_service_fake):
    first = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    with pytest.raises(JobAlreadyInProgress) as exc:
        await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    assert exc.value.current_job["job_id"] == first.id
    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_job_types_are_independent(job_service_fake):
    await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    other = await job_service_fake.claim(USER, JOB_TYPE_ANALYZE_CHILDREN)

    assert other.job_type == JOB_TYPE_ANALYZE_CHILDREN
    assert await job_service_fake.is_in_progress(USER, JOB_TYPE_PROCESS_EMAILS) is True


@pytest.mark.asyncio
async def test_create_job_replaces_only_same_type(job_service_fake, job_repository):
    await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    scan = await job_service_fake.claim(USER, JOB_TYPE_SCAN_INBOX)

    replacement = await job_service_fake.create_job(USER, JOB_TYPE_PROCESS_EMAILS)

    assert job_repository.jobs[(USER, JOB_TYPE_PROCESS_EMAILS)].id == replacement.id
    assert job_repository.jobs[(USER, JOB_TYPE_SCAN_INBOX)].id == scan.id


@pytest.mark.asyncio
async def test_created_job_started_on_service_clock(job_service_fake, clock):
    clock.now = clock.now + timedelta(hours=3)

    job = await job_service_fake.create_job(USER, JOB_TYPE_PROCESS_EMAILS)

    assert job.started_at == clock.now
    assert await job_service_fake.is_in_progress(USER, JOB_TYPE_PROCESS_EMAILS) is True


@pytest.mark.asyncio
async def test_full_lifecycle(job_service_fake):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    await job_service_fake.advance(job, JOB_SCANNING)
    await job_service_fake.advance(job, JOB_RANKING)
    await job_service_fake.complete(job, {"events_created": 2})

    status = await job_service_fake.get_status(USER, JOB_TYPE_PROCESS_EMAILS)
    assert status["status"] == JOB_COMPLETE
    assert status["result"] == {"events_created": 2}
    assert status["in_progress"] is False
    assert await job_service_fake.get_result(USER, JOB_TYPE_PROCESS_EMAILS) == {"events_created": 2}


@pytest.mark.asyncio
async def test_pending_may_skip_straight_to_ranking(job_service_fake):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    await job_service_fake.advance(job, JOB_RANKING)

    assert job.status == JOB_RANKING


@pytest.mark.asyncio
async def test_backwards_and_terminal_transitions_rejected(job_service_fake):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    await job_service_fake.advance(job, JOB_RANKING)

    with pytest.raises(InvalidJobTransition):
        await job_service_fake.advance(job, JOB_SCANNING)

    await job_service_fake.fail(job, "boom")
    with pytest.raises(InvalidJobTransition):
        await job_service_fake.complete(job, {})


@pytest.mark.asyncio
async def test_fail_truncates_error(job_service_fake, job_repository):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    await job_service_fake.fail(job, "x" * 2000)

    stored = job_repository.jobs[(USER, JOB_TYPE_PROCESS_EMAILS)]
    assert stored.status == JOB_FAILED
    assert len(stored.error_message) == 500
    assert await job_service_fake.get_result(USER, JOB_TYPE_PROCESS_EMAILS) is None


@pytest.mark.asyncio
async def test_stale_job_polled_read_only(job_service_fake, job_repository, clock):
    job = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    await job_service_fake.advance(job, JOB_SCANNING)

    clock.now = clock.now + timedelta(minutes=6)
    status = await job_service_fake.get_status(USER, JOB_TYPE_PROCESS_EMAILS)

    assert status["in_progress"] is False
    assert status["stale"] is True
    assert job_repository.jobs[(USER, JOB_TYPE_PROCESS_EMAILS)].status == JOB_SCANNING

    replacement = await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)
    assert replacement.id != job.id


@pytest.mark.asyncio
async def test_job_exactly_at_threshold_is_not_stale(job_service_fake, clock):
    await job_service_fake.claim(USER, JOB_TYPE_PROCESS_EMAILS)

    clock.now = clock.now + timedelta(minutes=5)

    assert await job_service_fake.is_in_progress(USER, JOB_TYPE_PROCESS_EMAILS) is True


@pytest.mark.asyncio
async def test_unknown_job_type_rejected(job_service_fake):
    with pytest.raises(ValueError):
        await job_service_fake.claim(USER, "send_newsletter")


@pytest.mark.asyncio
async def test_status_none_without_jobs(job_service_fake):
    assert await job_service_fake.get_status(USER, JOB_TYPE_PROCESS_EMAILS) is None
