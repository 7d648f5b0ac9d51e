"""
Capability interface the pipeline uses to reach the user's inbox and calendar.
"""

from datetime import date, datetime
from typing import Protocol

from app.features.inbox_actions.domain.models import InboxFetchResult, StoredEvent


class InboxAdapter(Protocol):
    """Inbox fetch and labeling plus calendar insert/list/delete/search for one provider."""

    async def fetch_emails(
        self, user_id: str, date_range: str, max_results: int, today: date
    ) -> InboxFetchResult: ...

    async def label_processed(self, user_id: str, provider_message_ids: list[str]) -> list[str]: ...

    async def has_calendar_access(self, user_id: str) -> bool: ...

    async def event_exists_remote(
        self, user_id: str, title: str, start_at: datetime, timezone: str
    ) -> bool: ...

    async def insert_event(self, user_id: str, event: StoredEvent, timezone: str) -> str: ...

    async def list_events(
        self, user_id: str, time_min: datetime, time_max: datetime
    ) -> list[dict]: ...

    async def delete_event(self, user_id: str, calendar_event_id: str) -> bool: ...
