"""
Google Calendar API client: list, create and delete events on a calendar.
"""

from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import CalendarEvent
from app.services.google_api import GoogleApiClient, GoogleApiError

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"


class GoogleCalendarError(GoogleApiError):
    """Calendar API failure."""


class GoogleCalendarService(GoogleApiClient):
    api_name = "Calendar API"
    error_class = GoogleCalendarError
    error_messages = {
        "400": "Invalid calendar request format.",
        "401": "Calendar authorization expired. Please reconnect.",
        "403": "Calendar access denied. Please check permissions.",
        "404": "Calendar or event not found.",
        "429": "Too many calendar requests. Please try again later.",
        "500": "Google Calendar service temporarily unavailable.",
    }

    def _events_url(self, calendar_id: str) -> str:
        return f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"

    async def list_events(
        self,
        access_token: str,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        query: str | None = None,
        calendar_id: str = CALENDAR_PRIMARY,
        max_results: int = 250,
    ) -> list[CalendarEvent]:
        """
        Expanded (single) events in a time window, ordered by start time.

        Raises:
            GoogleCalendarError: If listing fails
        """
        params = {
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": (time_min or datetime.now(UTC)).isoformat(),
        }
        if time_max:
            params["timeMax"] = time_max.isoformat()
        if query:
            params["q"] = query

        data = await self._call("GET", self._events_url(calendar_id), access_token, "list_events", params=params)
        events = [CalendarEvent.from_api(item) for item in data.get("items", [])]
        logger.debug("Events listed", calendar_id=calendar_id, event_count=len(events))
        return events

    async def find_events_by_title(
        self,
        access_token: str,
        title: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> list[CalendarEvent]:
        """Non-cancelled events in the window whose title matches exactly."""
        events = await self.list_events(
            access_token, time_min=time_min, time_max=time_max, query=title, calendar_id=calendar_id
        )
        return [e for e in events if not e.is_cancelled() and e.matches_title(title)]

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        location: str = "",
        timezone_str: str = "UTC",
    ) -> CalendarEvent:
        body = {
            "summary": summary,
            "description": description,
            "location": location,
            "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
            "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
        }
        data = await self._call("POST", self._events_url(calendar_id), access_token, "create_event", json=body)

        event = CalendarEvent.from_api(data)
        logger.info("Calendar event created", event_id=event.id, calendar_id=calendar_id)
        return event

    async def delete_event(self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY) -> bool:
        """Delete an event. One that is already gone (410) counts as deleted."""
        url = f"{self._events_url(calendar_id)}/{event_id}"
        await self._call("DELETE", url, access_token, "delete_event", tolerate=(410,))

        logger.info("Calendar event deleted", event_id=event_id)
        return True
