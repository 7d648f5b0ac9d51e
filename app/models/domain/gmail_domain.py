"""
Parsing of Gmail API message resources (format=full) into the fields the
pipeline stores: sender, subject, plain-text body and attachment stubs.
"""

import base64
import re
from datetime import UTC, datetime
from email.utils import parseaddr

from bs4 import BeautifulSoup

# Attachment types whose content is decoded as text; everything else is skipped
TEXT_ATTACHMENT_PREFIXES = ("text/",)
HTML_MIME_TYPES = {"text/html", "application/xhtml+xml"}


def decode_base64_data(data: str) -> str:
    """Decode base64 URL-safe encoded data."""
    try:
        # Gmail uses URL-safe base64 encoding without padding
        decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
        return decoded_bytes.decode("utf-8", errors="ignore")
    except (ValueError, TypeError):
        return ""


def html_to_text(html: str) -> str:
    """Readable plain text from an HTML body or attachment."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()

    lines = [line.strip() for line in soup.get_text(separator="\n").splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def is_text_attachment(mime_type: str) -> bool:
    return mime_type in HTML_MIME_TYPES or mime_type.startswith(TEXT_ATTACHMENT_PREFIXES)


class GmailMessage:
    """A fetched Gmail message. Bodies nested in multipart/* parts are flattened."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.internal_date = data.get("internalDate")
        self.payload = data.get("payload", {})
        self.raw_data = data

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers}

        self.subject = self.headers.get("subject", "(No Subject)")
        self.sender = self._parse_email_address(self.headers.get("from", ""))
        self.date = self.headers.get("date", "")

    def _parse_email_address(self, address_str: str) -> dict[str, str]:
        name, address = parseaddr(address_str)
        return {"name": name.strip(), "email": address.strip().lower()}

    def _parse_body(self):
        self.body_text = ""
        self.body_html = ""
        self.attachments: list[dict] = []

        if not self.payload:
            return

        if self.payload.get("parts"):
            self._parse_multipart_body(self.payload["parts"])
        elif self.payload.get("body", {}).get("data"):
            content = decode_base64_data(self.payload["body"]["data"])
            if self.payload.get("mimeType") == "text/html":
                self.body_html = content
            else:
                self.body_text = content

        if not self.body_text and self.body_html:
            self.body_text = html_to_text(self.body_html)

    def _parse_multipart_body(self, parts: list):
        for part in parts:
            mime_type = part.get("mimeType", "")
            body = part.get("body", {})

            if part.get("filename"):
                self.attachments.append(
                    {
                        "filename": part.get("filename"),
                        "mime_type": mime_type,
                        "size": body.get("size", 0),
                        "attachment_id": body.get("attachmentId"),
                        "data": body.get("data"),
                    }
                )

            elif mime_type == "text/plain" and body.get("data") and not self.body_text:
                self.body_text = decode_base64_data(body["data"])

            elif mime_type == "text/html" and body.get("data") and not self.body_html:
                self.body_html = decode_base64_data(body["data"])

            elif mime_type.startswith("multipart/"):
                self._parse_multipart_body(part.get("parts", []))

    def text_attachments(self) -> list[dict]:
        """Attachments whose content can be read as text."""
        return [a for a in self.attachments if is_text_attachment(a["mime_type"])]

    def get_received_datetime(self) -> datetime | None:
        """Received datetime from internalDate (epoch milliseconds)."""
        if self.internal_date:
            try:
                return datetime.fromtimestamp(int(self.internal_date) / 1000, tz=UTC)
            except (ValueError, OSError):
                pass
        return None
