"""
Storage of extracted events and todos.

Events are unique on (user_id, source_email_id, title, start_at). A duplicate
insert raises PersistenceConflict, which callers treat as a no-op. Calendar
sync state lives on the event row and is updated independently of the insert,
so a failed push never removes a stored event.
"""

from collections.abc import Iterable
from datetime import datetime

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.db.pool import db_pool
from app.features.inbox_actions.domain.extraction import ActionTodo, ExtractedEvent, PaymentTodo
from app.features.inbox_actions.domain.models import (
    SYNC_FAILED,
    SYNC_PENDING,
    SYNC_SYNCED,
    TODO_DONE,
    TODO_PENDING,
    StoredEvent,
)
from app.features.inbox_actions.errors import PersistenceConflict
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_SYNC_ERROR_LENGTH = 500


class EventRepository:
    """Persistence helpers for the events table."""

    EVENT_SELECT_COLUMNS = """
        id, user_id, title, start_at, end_at, description, location, child_name,
        source_email_id, sync_status, calendar_event_id, retry_count
    """

    @classmethod
    def _row_to_event(cls, row: dict | None) -> StoredEvent | None:
        if not row:
            return None

        return StoredEvent(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            start_at=row["start_at"],
            end_at=row.get("end_at"),
            description=row.get("description"),
            location=row.get("location"),
            child_name=row.get("child_name"),
            source_email_id=row.get("source_email_id"),
            sync_status=row.get("sync_status") or SYNC_PENDING,
            calendar_event_id=row.get("calendar_event_id"),
            retry_count=row.get("retry_count") or 0,
        )

    @classmethod
    async def event_exists(
        cls, user_id: str, source_email_id: str | None, title: str, start_at: datetime
    ) -> bool:
        """Local duplicate check on the event natural key."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM events
                WHERE user_id = %s
                  AND source_email_id IS NOT DISTINCT FROM %s
                  AND title = %s
                  AND start_at = %s
            )
        """
        return bool(await fetch_val(query, (user_id, source_email_id, title, start_at)))

    @classmethod
    async def insert_event(cls, user_id: str, event: ExtractedEvent, connection=None) -> StoredEvent:
        """
        Insert one event in the pending sync state.

        Raises:
            PersistenceConflict: If the natural key already exists
        """
        query = f"""
            INSERT INTO events (
                user_id, source_email_id, title, start_at, end_at, description,
                location, child_name, confidence, recurring, recurrence_pattern,
                time_of_day, inferred_date, sync_status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, '{SYNC_PENDING}')
            ON CONFLICT (user_id, source_email_id, title, start_at) DO NOTHING
            RETURNING {cls.EVENT_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                user_id,
                event.source_email_id,
                event.title,
                event.start_at,
                event.end_at,
                event.description,
                event.location,
                event.child_name,
                event.confidence,
                event.recurring,
                event.recurrence_pattern,
                event.time_of_day,
                event.inferred_date,
            ),
            connection=connection,
        )
        if not row:
            raise PersistenceConflict(
                f"Event already stored: {event.title}",
                natural_key=(user_id, event.source_email_id, event.title, event.start_at),
            )

        return cls._row_to_event(row)

    @classmethod
    async def delete_events_before(cls, user_id: str, cutoff: datetime) -> list[str]:
        """Hard-delete events starting before the cutoff. Returns deleted ids."""
        rows = await fetch_all(
            "DELETE FROM events WHERE user_id = %s AND start_at < %s RETURNING id",
            (user_id, cutoff),
        )
        return [str(row["id"]) for row in rows]

    @classmethod
    async def mark_synced(cls, event_id: str, calendar_event_id: str) -> None:
        query = f"""
            UPDATE events
            SET sync_status = '{SYNC_SYNCED}',
                calendar_event_id = %s,
                sync_error = NULL,
                synced_at = NOW(),
                last_sync_attempt = NOW()
            WHERE id = %s
        """
        await execute_query(query, (calendar_event_id, event_id))

    @classmethod
    async def mark_sync_failed(cls, event_id: str, error: str) -> None:
        query = f"""
            UPDATE events
            SET sync_status = '{SYNC_FAILED}',
                sync_error = %s,
                retry_count = retry_count + 1,
                last_sync_attempt = NOW()
            WHERE id = %s
        """
        await execute_query(query, ((error or "")[:MAX_SYNC_ERROR_LENGTH], event_id))

    @classmethod
    async def get_events_needing_sync(cls, max_retries: int, limit: int = 100) -> list[StoredEvent]:
        """
        Pending or failed events that are due for another push.

        Backoff between attempts doubles from one minute and is capped at one hour.
        """
        query = f"""
            SELECT {cls.EVENT_SELECT_COLUMNS}
            FROM events
            WHERE sync_status IN ('{SYNC_PENDING}', '{SYNC_FAILED}')
              AND retry_count < %s
              AND (
                  last_sync_attempt IS NULL
                  OR last_sync_attempt
                     < NOW() - LEAST(INTERVAL '1 minute' * POWER(2, retry_count), INTERVAL '1 hour')
              )
            ORDER BY created_at
            LIMIT %s
        """
        rows = await fetch_all(query, (max_retries, limit))
        return [cls._row_to_event(row) for row in rows]

    @classmethod
    async def count_events(cls, user_id: str) -> int:
        return int(await fetch_val("SELECT COUNT(*) FROM events WHERE user_id = %s", (user_id,)) or 0)


class TodoRepository:
    """Persistence helpers for the todos table."""

    @classmethod
    async def insert_todos(
        cls, user_id: str, todos: Iterable[PaymentTodo | ActionTodo], connection=None
    ) -> list[str]:
        """
        Insert todos in one transaction. Returned ids follow input order.

        Todos have no natural key, so callers that retry a batch must write
        them in the same transaction that marks the source emails processed.
        """
        if connection is None:
            async with db_pool.transaction() as conn:
                return await cls.insert_todos(user_id, todos, connection=conn)

        query = f"""
            INSERT INTO todos (
                user_id, source_email_id, description, category, due_at, child_name,
                amount, url, confidence, recurring, recurrence_pattern,
                responsible_party, inferred, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, '{TODO_PENDING}')
            RETURNING id
        """

        ids: list[str] = []
        for todo in todos:
            row = await fetch_one(
                query,
                (
                    user_id,
                    todo.source_email_id,
                    todo.description,
                    todo.category,
                    todo.due_at,
                    todo.child_name,
                    getattr(todo, "amount", None),
                    getattr(todo, "url", None),
                    todo.confidence,
                    todo.recurring,
                    todo.recurrence_pattern,
                    todo.responsible_party,
                    todo.inferred,
                ),
                connection=connection,
            )
            ids.append(str(row["id"]))

        if ids:
            logger.info("Todos stored", user_id=user_id, count=len(ids))
        return ids

    @classmethod
    async def auto_complete_overdue(cls, user_id: str, cutoff: datetime) -> list[str]:
        """Mark pending todos due before the cutoff as done. Rows are kept."""
        query = f"""
            UPDATE todos
            SET status = '{TODO_DONE}',
                auto_completed = TRUE,
                completed_at = NOW()
            WHERE user_id = %s
              AND status = '{TODO_PENDING}'
              AND due_at IS NOT NULL
              AND due_at < %s
            RETURNING id
        """
        rows = await fetch_all(query, (user_id, cutoff))
        return [str(row["id"]) for row in rows]

    @classmethod
    async def count_todos(cls, user_id: str) -> int:
        return int(await fetch_val("SELECT COUNT(*) FROM todos WHERE user_id = %s", (user_id,)) or 0)
