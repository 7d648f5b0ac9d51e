"""
Gmail API client: message search, full message fetch, attachment download
and labeling of handled messages.
Message parsing lives in app.models.domain.gmail_domain.
"""

from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import GmailMessage, decode_base64_data
from app.services.google_api import GoogleApiClient, GoogleApiError

logger = get_logger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"
GMAIL_PAGE_LIMIT = 500  # Gmail API maximum per list call
GMAIL_MODIFY_LIMIT = 1000  # batchModify maximum


class GoogleGmailError(GoogleApiError):
    """Gmail API failure."""


class GoogleGmailService(GoogleApiClient):
    api_name = "Gmail API"
    error_class = GoogleGmailError
    error_messages = {
        "400": "Invalid Gmail request format.",
        "401": "Gmail authorization expired. Please reconnect.",
        "403": "Gmail access denied. Please check permissions.",
        "404": "Email message not found.",
        "429": "Too many Gmail requests. Please try again later.",
        "500": "Gmail service temporarily unavailable.",
    }

    @property
    def _messages_url(self) -> str:
        return f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages"

    async def list_message_ids(self, access_token: str, query: str, max_results: int) -> list[str]:
        """
        Message ids matching a Gmail search query, newest first.

        Follows nextPageToken until max_results ids are collected or the
        listing runs out.

        Raises:
            GoogleGmailError: If any page request fails
        """
        message_ids: list[str] = []
        page_token: str | None = None

        while len(message_ids) < max_results:
            params = {"q": query, "maxResults": min(max_results - len(message_ids), GMAIL_PAGE_LIMIT)}
            if page_token:
                params["pageToken"] = page_token

            data = await self._call("GET", self._messages_url, access_token, "list_messages", params=params)
            message_ids.extend(msg["id"] for msg in data.get("messages", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info("Messages listed", query=query, message_count=len(message_ids))
        return message_ids[:max_results]

    async def get_message(self, access_token: str, message_id: str) -> GmailMessage:
        data = await self._call(
            "GET", f"{self._messages_url}/{message_id}", access_token, "get_message", params={"format": "full"}
        )
        return GmailMessage(data)

    async def get_attachment(self, access_token: str, message_id: str, attachment_id: str) -> str:
        """Download an attachment body and decode it as UTF-8 text."""
        data = await self._call(
            "GET", f"{self._messages_url}/{message_id}/attachments/{attachment_id}", access_token, "get_attachment"
        )
        return decode_base64_data(data.get("data", ""))

    async def ensure_label(self, access_token: str, name: str) -> str:
        """Id of the user label with this name, created when missing."""
        labels_url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/labels"
        data = await self._call("GET", labels_url, access_token, "list_labels")
        for label in data.get("labels", []):
            if label.get("name") == name:
                return label["id"]

        created = await self._call(
            "POST",
            labels_url,
            access_token,
            "create_label",
            json={"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
        )
        logger.info("Gmail label created", label_name=name, label_id=created.get("id"))
        return created["id"]

    async def add_label(self, access_token: str, message_ids: list[str], label_id: str) -> int:
        """
        Add a label to messages with batchModify, GMAIL_MODIFY_LIMIT ids per call.

        Raises:
            GoogleGmailError: On the first chunk that fails
        """
        for start in range(0, len(message_ids), GMAIL_MODIFY_LIMIT):
            chunk = message_ids[start : start + GMAIL_MODIFY_LIMIT]
            await self._call(
                "POST",
                f"{self._messages_url}/batchModify",
                access_token,
                "batch_modify",
                json={"ids": chunk, "addLabelIds": [label_id]},
            )
        return len(message_ids)
