"""
OAuth credential domain model (decrypted) with Gmail and Calendar scope checks.
"""

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel


class OAuthToken(BaseModel):
    """Domain model for OAuth tokens (decrypted) with Gmail + Calendar support."""

    user_id: str
    provider: Literal["google"] = "google"
    access_token: str  # decrypted
    refresh_token: str | None = None  # decrypted
    scope: str = ""
    expires_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def needs_refresh(self, buffer_minutes: int = 5, now: datetime | None = None) -> bool:
        """True when the token expires within buffer_minutes."""
        if not self.expires_at:
            return False
        buffer_time = (now or datetime.now(UTC)) + timedelta(minutes=buffer_minutes)
        return buffer_time >= self.expires_at

    def has_gmail_access(self) -> bool:
        gmail_indicators = ["gmail.readonly", "gmail.modify"]
        return any(indicator in self.scope for indicator in gmail_indicators)

    def can_modify_gmail(self) -> bool:
        """Labelling messages needs gmail.modify; readonly grants cannot."""
        return "gmail.modify" in self.scope

    def has_calendar_access(self) -> bool:
        calendar_indicators = ["calendar.events", "auth/calendar"]
        return any(indicator in self.scope for indicator in calendar_indicators)
