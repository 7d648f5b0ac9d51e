"""
Google Workspace adapter: Gmail inbox fetch and Google Calendar operations
for one user, resolved through the stored OAuth credential.

Every provider failure surfaces as AdapterError. Per-message fetch failures
are collected into InboxFetchResult.failures instead of being raised.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.inbox_actions.domain.models import (
    EmailFetchFailure,
    EmailRecord,
    InboxFetchResult,
    StoredEvent,
)
from app.features.inbox_actions.domain.run import date_range_start
from app.features.inbox_actions.errors import AdapterError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import GmailMessage, decode_base64_data, html_to_text
from app.models.domain.oauth_domain import OAuthToken
from app.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService
from app.services.gmail.google_client import GoogleGmailError, GoogleGmailService
from app.services.token_service import TokenService, TokenServiceError, token_service

logger = get_logger(__name__)

MESSAGE_FETCH_CONCURRENCY = 10
ATTACHMENT_TEXT_LIMIT = 20000
DEFAULT_EVENT_DURATION = timedelta(hours=1)


def build_inbox_query(date_range: str, today: date) -> str:
    """Gmail search query for a date range, excluding spam, trash and sent mail."""
    after = date_range_start(date_range, today)
    return f"after:{after:%Y/%m/%d} -in:spam -in:trash -in:sent"


def local_day_window(start_at: datetime, timezone: str) -> tuple[datetime, datetime]:
    """Midnight-to-midnight window of the local day containing start_at."""
    tz = ZoneInfo(timezone)
    local = start_at.astimezone(tz) if start_at.tzinfo else start_at.replace(tzinfo=tz)
    day_start = datetime.combine(local.date(), time.min, tzinfo=tz)
    return day_start, day_start + timedelta(days=1)


class GoogleWorkspaceAdapter:
    """InboxAdapter backed by the Gmail and Google Calendar REST clients."""

    def __init__(
        self,
        tokens: TokenService | None = None,
        gmail: GoogleGmailService | None = None,
        calendar: GoogleCalendarService | None = None,
    ):
        self._tokens = tokens or token_service
        self._gmail = gmail
        self._calendar = calendar

    @property
    def gmail(self) -> GoogleGmailService:
        if self._gmail is None:
            self._gmail = GoogleGmailService()
        return self._gmail

    @property
    def calendar(self) -> GoogleCalendarService:
        if self._calendar is None:
            self._calendar = GoogleCalendarService()
        return self._calendar

    async def close(self) -> None:
        if self._gmail is not None:
            await self._gmail.close()
        if self._calendar is not None:
            await self._calendar.close()

    async def _credential(self, user_id: str, operation: str) -> OAuthToken:
        try:
            return await self._tokens.get_credential(user_id)
        except TokenServiceError as e:
            raise AdapterError(
                f"Google credentials unavailable: {e}",
                operation=operation,
                recoverable=e.recoverable,
            ) from e

    # Inbox

    async def fetch_emails(
        self, user_id: str, date_range: str, max_results: int, today: date
    ) -> InboxFetchResult:
        """
        Fetch messages received within the date range.

        Listing failures raise AdapterError (the whole inbox is unreachable);
        a message that cannot be fetched is reported in failures.
        """
        credential = await self._credential(user_id, "fetch_emails")
        if not credential.has_gmail_access():
            raise AdapterError(
                "Gmail access not granted - reconnect Google account",
                operation="fetch_emails",
                recoverable=False,
            )

        query = build_inbox_query(date_range, today)
        try:
            message_ids = await self.gmail.list_message_ids(credential.access_token, query, max_results)
        except GoogleGmailError as e:
            raise AdapterError(
                f"Failed to list inbox messages: {e}",
                operation="list_messages",
                status_code=e.status_code,
            ) from e

        semaphore = asyncio.Semaphore(MESSAGE_FETCH_CONCURRENCY)

        async def fetch_one(message_id: str) -> EmailRecord | EmailFetchFailure:
            async with semaphore:
                try:
                    return await self._fetch_message(user_id, credential.access_token, message_id)
                except GoogleGmailError as e:
                    logger.warning(
                        "Failed to fetch message", user_id=user_id, message_id=message_id, error=str(e)
                    )
                    return EmailFetchFailure(provider_message_id=message_id, error=str(e))

        fetched = await asyncio.gather(*(fetch_one(mid) for mid in message_ids))

        result = InboxFetchResult()
        for item in fetched:
            if isinstance(item, EmailFetchFailure):
                result.failures.append(item)
            else:
                result.emails.append(item)

        logger.info(
            "Inbox fetched",
            user_id=user_id,
            date_range=date_range,
            emails=len(result.emails),
            failures=len(result.failures),
        )
        return result

    async def _fetch_message(self, user_id: str, access_token: str, message_id: str) -> EmailRecord:
        message = await self.gmail.get_message(access_token, message_id)
        return EmailRecord(
            user_id=user_id,
            provider_message_id=message.id or message_id,
            thread_id=message.thread_id,
            from_email=message.sender["email"],
            from_name=message.sender["name"],
            subject=message.subject,
            snippet=message.snippet,
            body_text=message.body_text,
            attachment_content=await self._attachment_text(access_token, message),
            labels=list(message.label_ids),
            received_at=message.get_received_datetime(),
        )

    async def _attachment_text(self, access_token: str, message: GmailMessage) -> str | None:
        """Concatenated text of text/* and HTML attachments. Binary attachments are skipped."""
        sections = []
        for attachment in message.text_attachments():
            try:
                if attachment["data"]:
                    content = decode_base64_data(attachment["data"])
                elif attachment["attachment_id"]:
                    content = await self.gmail.get_attachment(
                        access_token, message.id, attachment["attachment_id"]
                    )
                else:
                    continue
            except GoogleGmailError as e:
                logger.warning(
                    "Skipping unreadable attachment",
                    message_id=message.id,
                    filename=attachment["filename"],
                    error=str(e),
                )
                continue

            if "html" in attachment["mime_type"]:
                content = html_to_text(content)
            if content.strip():
                sections.append(f"[Attachment: {attachment['filename']}]\n{content.strip()}")

        if not sections:
            return None
        return "\n\n".join(sections)[:ATTACHMENT_TEXT_LIMIT]

    async def label_processed(self, user_id: str, provider_message_ids: list[str]) -> list[str]:
        """
        Apply the processed label to handled messages.

        Returns the ids that were labeled: none when the grant is read-only.
        """
        if not provider_message_ids:
            return []

        credential = await self._credential(user_id, "label_processed")
        if not credential.can_modify_gmail():
            logger.info("Skipping Gmail labels, read-only grant", user_id=user_id)
            return []

        try:
            label_id = await self.gmail.ensure_label(credential.access_token, settings.GMAIL_PROCESSED_LABEL)
            await self.gmail.add_label(credential.access_token, provider_message_ids, label_id)
        except GoogleGmailError as e:
            raise AdapterError(
                f"Failed to label messages: {e}", operation="label_processed", status_code=e.status_code
            ) from e

        logger.info("Messages labeled", user_id=user_id, count=len(provider_message_ids))
        return list(provider_message_ids)

    # Calendar

    async def has_calendar_access(self, user_id: str) -> bool:
        credential = await self._credential(user_id, "has_calendar_access")
        return credential.has_calendar_access()

    async def event_exists_remote(
        self, user_id: str, title: str, start_at: datetime, timezone: str
    ) -> bool:
        """True when the calendar already holds an event with this title on the same local day."""
        credential = await self._credential(user_id, "event_exists_remote")
        time_min, time_max = local_day_window(start_at, timezone)
        try:
            matches = await self.calendar.find_events_by_title(
                credential.access_token, title, time_min, time_max
            )
        except GoogleCalendarError as e:
            raise AdapterError(
                f"Calendar search failed: {e}", operation="find_events", status_code=e.status_code
            ) from e
        return bool(matches)

    async def insert_event(self, user_id: str, event: StoredEvent, timezone: str) -> str:
        """Create the event in the primary calendar and return its calendar id."""
        credential = await self._credential(user_id, "insert_event")
        end_at = event.end_at or event.start_at + DEFAULT_EVENT_DURATION
        try:
            created = await self.calendar.create_event(
                credential.access_token,
                summary=event.title,
                start_time=event.start_at,
                end_time=end_at,
                description=event.description or "",
                location=event.location or "",
                timezone_str=timezone,
            )
        except GoogleCalendarError as e:
            raise AdapterError(
                f"Calendar insert failed: {e}", operation="insert_event", status_code=e.status_code
            ) from e
        return created.id

    async def list_events(self, user_id: str, time_min: datetime, time_max: datetime) -> list[dict]:
        credential = await self._credential(user_id, "list_events")
        try:
            events = await self.calendar.list_events(
                credential.access_token, time_min=time_min, time_max=time_max
            )
        except GoogleCalendarError as e:
            raise AdapterError(
                f"Calendar list failed: {e}", operation="list_events", status_code=e.status_code
            ) from e
        return [event.to_dict() for event in events]

    async def delete_event(self, user_id: str, calendar_event_id: str) -> bool:
        credential = await self._credential(user_id, "delete_event")
        try:
            return await self.calendar.delete_event(credential.access_token, calendar_event_id)
        except GoogleCalendarError as e:
            raise AdapterError(
                f"Calendar delete failed: {e}", operation="delete_event", status_code=e.status_code
            ) from e


google_workspace_adapter = GoogleWorkspaceAdapter()
