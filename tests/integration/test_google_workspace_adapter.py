import base64
import json
import re
from datetime import UTC, date, datetime

import pytest

from app.features.inbox_actions.adapters.google_workspace import (
    GoogleWorkspaceAdapter,
    build_inbox_query,
    local_day_window,
)
from app.features.inbox_actions.domain.models import StoredEvent
from app.features.inbox_actions.errors import AdapterError
from app.models.domain.oauth_domain import OAuthToken
from app.services.calendar.google_client import GoogleCalendarService
from app.services.gmail.google_client import GoogleGmailService
from app.services.token_service import TokenServiceError

GMAIL_MESSAGES = "https://gmail.googleapis.com/gmail/v1/users/me/messages"
CALENDAR_EVENTS = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
FULL_SCOPE = (
    "https://www.googleapis.com/auth/gmail.readonly https://www.googleapis.com/auth/calendar.events"
)


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class StubTokens:
    def __init__(self, scope=FULL_SCOPE, error=None):
        self.scope = scope
        self.error = error

    async def get_credential(self, user_id):
        if self.error:
            raise self.error
        return OAuthToken(user_id=user_id, access_token="access-1", scope=self.scope)


def make_adapter(tokens=None, http=True):
    if not http:
        return GoogleWorkspaceAdapter(tokens=tokens or StubTokens())
    return GoogleWorkspaceAdapter(
        tokens=tokens or StubTokens(), gmail=GoogleGmailService(), calendar=GoogleCalendarService()
    )


def test_build_inbox_query():
    assert build_inbox_query("yesterday", date(2026, 1, 12)) == "after:2026/01/11 -in:spam -in:trash -in:sent"
    assert build_inbox_query("today", date(2026, 1, 12)).startswith("after:2026/01/12 ")


def test_local_day_window_uses_local_date():
    # 23:30 UTC in summer is already the next day in London
    start, end = local_day_window(datetime(2026, 6, 10, 23, 30, tzinfo=UTC), "Europe/London")

    assert start.isoformat() == "2026-06-11T00:00:00+01:00"
    assert end.isoformat() == "2026-06-12T00:00:00+01:00"


@pytest.mark.asyncio
async def test_fetch_emails_collects_messages_and_failures(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(GMAIL_MESSAGES) + r"\?.*"),
        json={"messages": [{"id": "m1"}, {"id": "m2"}]},
    )
    httpx_mock.add_response(
        method="GET",
        url=f"{GMAIL_MESSAGES}/m1?format=full",
        json={
            "id": "m1",
            "threadId": "t1",
            "labelIds": ["INBOX", "CATEGORY_UPDATES"],
            "snippet": "Swimming this term",
            "internalDate": "1768212000000",
            "payload": {
                "headers": [
                    {"name": "From", "value": "Oak Primary <office@oak.example>"},
                    {"name": "Subject", "value": "Swimming"},
                ],
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": b64("Swimming starts Tuesday.")}},
                    {
                        "mimeType": "text/html",
                        "filename": "timetable.html",
                        "body": {"data": b64("<table><tr><td>Tuesday 9:15</td></tr></table>")},
                    },
                    {
                        "mimeType": "text/plain",
                        "filename": "kit.txt",
                        "body": {"attachmentId": "att-1", "size": 40},
                    },
                ],
            },
        },
    )
    httpx_mock.add_response(
        method="GET", url=f"{GMAIL_MESSAGES}/m1/attachments/att-1", json={"data": b64("Towel and goggles")}
    )
    httpx_mock.add_response(
        method="GET",
        url=f"{GMAIL_MESSAGES}/m2?format=full",
        status_code=404,
        json={"error": {"code": 404, "message": "Not Found"}},
    )

    result = await adapter.fetch_emails("user-1", "yesterday", 50, date(2026, 1, 12))
    await adapter.close()

    assert result.total == 2
    email = result.emails[0]
    assert email.provider_message_id == "m1"
    assert email.from_email == "office@oak.example"
    assert email.from_name == "Oak Primary"
    assert email.body_text == "Swimming starts Tuesday."
    assert email.labels == ["INBOX", "CATEGORY_UPDATES"]
    assert email.received_at == datetime(2026, 1, 12, 10, 0, tzinfo=UTC)
    assert "[Attachment: timetable.html]\nTuesday 9:15" in email.attachment_content
    assert "[Attachment: kit.txt]\nTowel and goggles" in email.attachment_content

    assert [f.provider_message_id for f in result.failures] == ["m2"]
    assert result.failures[0].error == "Email message not found."


@pytest.mark.asyncio
async def test_fetch_emails_requires_gmail_scope():
    adapter = make_adapter(StubTokens(scope="https://www.googleapis.com/auth/calendar.events"), http=False)

    with pytest.raises(AdapterError) as exc:
        await adapter.fetch_emails("user-1", "today", 10, date(2026, 1, 12))
    await adapter.close()

    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_listing_failure_raises_adapter_error(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(GMAIL_MESSAGES) + r"\?.*"),
        status_code=403,
        json={"error": {"code": 403, "message": "Forbidden"}},
    )

    with pytest.raises(AdapterError) as exc:
        await adapter.fetch_emails("user-1", "today", 10, date(2026, 1, 12))
    await adapter.close()

    assert exc.value.operation == "list_messages"
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_credential_errors_keep_recoverable_flag():
    adapter = make_adapter(
        StubTokens(error=TokenServiceError("revoked", user_id="user-1", recoverable=False)), http=False
    )

    with pytest.raises(AdapterError) as exc:
        await adapter.has_calendar_access("user-1")
    await adapter.close()

    assert exc.value.recoverable is False
    assert exc.value.operation == "has_calendar_access"


@pytest.mark.asyncio
async def test_calendar_access_follows_scope():
    gmail_only = StubTokens(scope="https://www.googleapis.com/auth/gmail.readonly")

    assert await make_adapter(http=False).has_calendar_access("user-1") is True
    assert await make_adapter(gmail_only, http=False).has_calendar_access("user-1") is False


@pytest.mark.asyncio
async def test_event_exists_remote_searches_local_day(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(CALENDAR_EVENTS) + r"\?.*"),
        json={
            "items": [
                {
                    "id": "e1",
                    "summary": "Sports Day",
                    "start": {"dateTime": "2026-01-20T09:00:00Z"},
                    "end": {"dateTime": "2026-01-20T12:00:00Z"},
                }
            ]
        },
    )

    exists = await adapter.event_exists_remote(
        "user-1", "Sports Day", datetime(2026, 1, 20, 9, 0, tzinfo=UTC), "Europe/London"
    )
    await adapter.close()

    assert exists is True
    params = httpx_mock.get_request().url.params
    assert params["timeMin"] == "2026-01-20T00:00:00+00:00"
    assert params["timeMax"] == "2026-01-21T00:00:00+00:00"


@pytest.mark.asyncio
async def test_insert_event_defaults_to_one_hour(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(method="POST", url=CALENDAR_EVENTS, json={"id": "cal-123", "summary": "Disco"})

    event = StoredEvent(
        id="evt-1",
        user_id="user-1",
        title="Disco",
        start_at=datetime(2026, 2, 6, 18, 0, tzinfo=UTC),
        location="School hall",
    )
    calendar_event_id = await adapter.insert_event("user-1", event, "Europe/London")
    await adapter.close()

    assert calendar_event_id == "cal-123"
    body = json.loads(httpx_mock.get_request().content)
    assert body["end"] == {"dateTime": "2026-02-06T19:00:00+00:00", "timeZone": "Europe/London"}
    assert body["location"] == "School hall"
    assert body["description"] == ""


@pytest.mark.asyncio
async def test_insert_event_failure_maps_to_adapter_error(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="POST",
        url=CALENDAR_EVENTS,
        status_code=401,
        json={"error": {"code": 401, "message": "Invalid Credentials"}},
    )

    event = StoredEvent(id="evt-1", user_id="user-1", title="Disco", start_at=datetime(2026, 2, 6, 18, 0, tzinfo=UTC))
    with pytest.raises(AdapterError) as exc:
        await adapter.insert_event("user-1", event, "Europe/London")
    await adapter.close()

    assert exc.value.operation == "insert_event"
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_list_events_returns_plain_dicts(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(CALENDAR_EVENTS) + r"\?.*"),
        json={
            "items": [
                {"id": "e1", "summary": "INSET day", "start": {"date": "2026-02-16"}, "end": {"date": "2026-02-17"}},
            ]
        },
    )

    events = await adapter.list_events(
        "user-1", datetime(2026, 2, 16, tzinfo=UTC), datetime(2026, 2, 17, tzinfo=UTC)
    )
    await adapter.close()

    assert events[0]["id"] == "e1"
    assert events[0]["is_all_day"] is True
    assert events[0]["start_time"] == "2026-02-16T00:00:00+00:00"


@pytest.mark.asyncio
async def test_delete_event_treats_gone_as_deleted(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(method="DELETE", url=f"{CALENDAR_EVENTS}/cal-1", status_code=410)

    assert await adapter.delete_event("user-1", "cal-1") is True
    await adapter.close()


@pytest.mark.asyncio
async def test_delete_event_failure_maps_to_adapter_error(httpx_mock):
    adapter = make_adapter()

    httpx_mock.add_response(
        method="DELETE",
        url=f"{CALENDAR_EVENTS}/cal-1",
        status_code=404,
        json={"error": {"code": 404, "message": "Not Found"}},
    )

    with pytest.raises(AdapterError) as exc:
        await adapter.delete_event("user-1", "cal-1")
    await adapter.close()

    assert exc.value.operation == "delete_event"
    assert "not found" in str(exc.value).lower()


MODIFY_SCOPE = FULL_SCOPE + " https://www.googleapis.com/auth/gmail.modify"
GMAIL_LABELS = "https://gmail.googleapis.com/gmail/v1/users/me/labels"


@pytest.mark.asyncio
async def test_label_processed_applies_processed_label(httpx_mock):
    adapter = make_adapter(StubTokens(scope=MODIFY_SCOPE))

    httpx_mock.add_response(method="GET", url=GMAIL_LABELS, json={"labels": [{"id": "Label_3", "name": "PROCESSED"}]})
    httpx_mock.add_response(method="POST", url=f"{GMAIL_MESSAGES}/batchModify", status_code=204)

    labeled = await adapter.label_processed("user-1", ["m1", "m2"])
    await adapter.close()

    assert labeled == ["m1", "m2"]
    body = json.loads(httpx_mock.get_requests(method="POST")[0].content)
    assert body == {"ids": ["m1", "m2"], "addLabelIds": ["Label_3"]}


@pytest.mark.asyncio
async def test_label_processed_skipped_for_readonly_grant():
    adapter = make_adapter(http=False)

    assert await adapter.label_processed("user-1", ["m1"]) == []


@pytest.mark.asyncio
async def test_label_failure_maps_to_adapter_error(httpx_mock):
    adapter = make_adapter(StubTokens(scope=MODIFY_SCOPE))

    httpx_mock.add_response(
        method="GET",
        url=GMAIL_LABELS,
        status_code=403,
        json={"error": {"code": 403, "message": "Insufficient Permission"}},
    )

    with pytest.raises(AdapterError) as exc:
        await adapter.label_processed("user-1", ["m1"])
    await adapter.close()

    assert exc.value.operation == "label_processed"
    assert exc.value.status_code == 403
