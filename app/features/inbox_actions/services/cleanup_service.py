"""
Cleanup sweep run before every extraction pass.

Cutoff is midnight of the current day in the user's timezone. Overdue todos
are auto-completed and kept; past events are deleted.
"""

from __future__ import annotations

from datetime import UTC, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.inbox_actions.domain.models import CleanupResult
from app.features.inbox_actions.repository.action_repository import EventRepository, TodoRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def local_midnight(now: datetime, timezone: str) -> datetime:
    """Start of the local day containing ``now``, as an aware datetime."""
    tz = ZoneInfo(timezone)
    local_now = now.astimezone(tz)
    return datetime.combine(local_now.date(), time(0, 0), tzinfo=tz)


class CleanupService:
    def __init__(
        self,
        events: Any = EventRepository,
        todos: Any = TodoRepository,
        timezone: str | None = None,
    ):
        self.events = events
        self.todos = todos
        self.timezone = timezone or settings.USER_TIMEZONE

    async def sweep(self, user_id: str, now: datetime | None = None, cutoff: datetime | None = None) -> CleanupResult:
        cutoff = cutoff or local_midnight(now or datetime.now(UTC), self.timezone)

        completed = await self.todos.auto_complete_overdue(user_id, cutoff)
        deleted = await self.events.delete_events_before(user_id, cutoff)

        result = CleanupResult(cutoff=cutoff, completed_todo_ids=completed, deleted_event_ids=deleted)
        logger.info(
            "Cleanup sweep finished",
            user_id=user_id,
            cutoff=cutoff.isoformat(),
            todos_completed=len(completed),
            events_deleted=len(deleted),
        )
        return result


cleanup_service = CleanupService()
