"""
Persistence for the per-user job state machine.

One live row per (user, job type): creating or claiming a job deletes the
previous rows of that exact type. Rows written before job types existed have
a NULL job_type and are read as the legacy scan_inbox type.
"""

from datetime import datetime, timedelta

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_one, with_db_retry
from app.db.pool import db_pool
from app.features.inbox_actions.domain.models import (
    JOB_PENDING,
    LEGACY_JOB_TYPE,
    TERMINAL_JOB_STATUSES,
    Job,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobRepositoryError(DatabaseError):
    """More specific exception for job persistence failures."""


class JobRepository:
    """Persistence helpers backing the job state machine."""

    JOB_SELECT_COLUMNS = f"""
        id, user_id, COALESCE(job_type, '{LEGACY_JOB_TYPE}') AS job_type, status,
        started_at, completed_at, result, error_message
    """

    @classmethod
    def _row_to_job(cls, row: dict | None) -> Job | None:
        if not row:
            return None

        return Job(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            job_type=row["job_type"],
            status=row["status"],
            started_at=row["started_at"],
            completed_at=row.get("completed_at"),
            result=row.get("result"),
            error_message=row.get("error_message"),
        )

    @classmethod
    async def _replace_job(cls, conn, user_id: str, job_type: str, started_at: datetime) -> Job:
        """Delete prior jobs of this type and insert a pending one on the given connection."""
        await execute_query(
            f"""
            DELETE FROM jobs
            WHERE user_id = %s AND COALESCE(job_type, '{LEGACY_JOB_TYPE}') = %s
            """,
            (user_id, job_type),
            connection=conn,
        )

        row = await fetch_one(
            f"""
            INSERT INTO jobs (user_id, job_type, status, started_at)
            VALUES (%s, %s, '{JOB_PENDING}', %s)
            RETURNING {cls.JOB_SELECT_COLUMNS}
            """,
            (user_id, job_type, started_at),
            connection=conn,
        )
        if not row:
            raise JobRepositoryError("Failed to create job", operation="create_job", recoverable=False)

        return cls._row_to_job(row)

    @classmethod
    async def create_job(cls, user_id: str, job_type: str, started_at: datetime) -> Job:
        """Replace any job of this type for the user with a new pending job."""
        async with db_pool.transaction() as conn:
            job = await cls._replace_job(conn, user_id, job_type, started_at)

        logger.info("Job created", user_id=user_id, job_type=job_type, job_id=job.id)
        return job

    @classmethod
    async def claim_job(
        cls, user_id: str, job_type: str, now: datetime, stale_after: timedelta
    ) -> tuple[Job, bool]:
        """
        Atomically claim the job slot for (user, job type).

        A transaction-scoped advisory lock serializes concurrent claims for
        the same slot. Returns (job, True) when a new pending job was created,
        or (current_job, False) when a non-stale job already holds the slot.
        started_at is written from now, the same clock staleness is judged
        against.
        """
        lock_key = f"{user_id}:{job_type}"

        async with db_pool.transaction() as conn:
            await execute_query(
                "SELECT pg_advisory_xact_lock(hashtext(%s))", (lock_key,), connection=conn
            )

            row = await fetch_one(
                f"""
                SELECT {cls.JOB_SELECT_COLUMNS}
                FROM jobs
                WHERE user_id = %s AND COALESCE(job_type, '{LEGACY_JOB_TYPE}') = %s
                ORDER BY started_at DESC
                LIMIT 1
                """,
                (user_id, job_type),
                connection=conn,
            )
            current = cls._row_to_job(row)

            if current and current.is_in_progress(now, stale_after):
                logger.info(
                    "Job slot busy",
                    user_id=user_id,
                    job_type=job_type,
                    job_id=current.id,
                    status=current.status,
                )
                return current, False

            job = await cls._replace_job(conn, user_id, job_type, now)

        logger.info(
            "Job slot claimed",
            user_id=user_id,
            job_type=job_type,
            job_id=job.id,
            replaced_stale=bool(current and current.is_stale(now, stale_after)),
        )
        return job, True

    @classmethod
    @with_db_retry(max_retries=2)
    async def get_latest_job(cls, user_id: str, job_type: str) -> Job | None:
        """Return the most recent job of this type for the user."""
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM jobs
            WHERE user_id = %s AND COALESCE(job_type, '{LEGACY_JOB_TYPE}') = %s
            ORDER BY started_at DESC
            LIMIT 1
        """
        row = await fetch_one(query, (user_id, job_type))
        return cls._row_to_job(row)

    @classmethod
    async def transition_job(
        cls,
        job_id: str,
        from_status: str,
        to_status: str,
        result: dict | None = None,
        error_message: str | None = None,
    ) -> bool:
        """
        Move a job from one status to another in a single UPDATE.

        Terminal statuses set completed_at together with the result or error.
        Returns False when the row was no longer in from_status.
        """
        if to_status in TERMINAL_JOB_STATUSES:
            query = """
                UPDATE jobs
                SET status = %s,
                    completed_at = NOW(),
                    result = %s,
                    error_message = %s,
                    updated_at = NOW()
                WHERE id = %s AND status = %s
            """
            params = (
                to_status,
                Jsonb(result) if result is not None else None,
                error_message,
                job_id,
                from_status,
            )
        else:
            query = """
                UPDATE jobs
                SET status = %s,
                    updated_at = NOW()
                WHERE id = %s AND status = %s
            """
            params = (to_status, job_id, from_status)

        updated = await execute_query(query, params)
        logger.info(
            "Job status changed" if updated else "Job status change skipped",
            job_id=job_id,
            from_status=from_status,
            to_status=to_status,
        )
        return updated > 0

