"""
Pushes stored events to the user's external calendar.

Sync state is tracked per event. A failed push marks only that event failed
(retry_count + 1) and never touches the locally stored row otherwise.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.features.inbox_actions.domain.models import StoredEvent
from app.features.inbox_actions.errors import AdapterError
from app.features.inbox_actions.repository.action_repository import EventRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class CalendarSyncResult:
    synced: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: CalendarSyncResult) -> None:
        self.synced += other.synced
        self.failed += other.failed
        self.errors.extend(other.errors)


class CalendarSyncService:
    def __init__(self, adapter: Any, events: Any = EventRepository, timezone: str | None = None):
        self.adapter = adapter
        self.events = events
        self.timezone = timezone or settings.USER_TIMEZONE

    async def sync_events(self, user_id: str, events: list[StoredEvent]) -> CalendarSyncResult:
        result = CalendarSyncResult()
        for position, event in enumerate(events):
            try:
                calendar_event_id = await self.adapter.insert_event(user_id, event, self.timezone)
            except AdapterError as e:
                await self.events.mark_sync_failed(event.id, str(e))
                result.failed += 1
                result.errors.append(f"calendar sync failed for '{event.title}': {e}")
                logger.warning(
                    "Calendar sync failed", user_id=user_id, event_id=event.id, error=str(e)
                )
                if not e.recoverable:
                    # Credential problems affect every remaining event alike
                    for remaining in events[position + 1 :]:
                        await self.events.mark_sync_failed(remaining.id, str(e))
                        result.failed += 1
                    break
                continue

            await self.events.mark_synced(event.id, calendar_event_id)
            result.synced += 1

        if events:
            logger.info(
                "Calendar sync finished",
                user_id=user_id,
                synced=result.synced,
                failed=result.failed,
            )
        return result

    async def retry_pending(self, limit: int = 100) -> CalendarSyncResult:
        """Re-push pending or failed events that are under the retry cap."""
        due = await self.events.get_events_needing_sync(settings.CALENDAR_SYNC_MAX_RETRIES, limit=limit)

        by_user: dict[str, list[StoredEvent]] = defaultdict(list)
        for event in due:
            by_user[event.user_id].append(event)

        total = CalendarSyncResult()
        for user_id, user_events in by_user.items():
            total.merge(await self.sync_events(user_id, user_events))

        logger.info(
            "Calendar sync retry pass finished",
            users=len(by_user),
            events=len(due),
            synced=total.synced,
            failed=total.failed,
        )
        return total
