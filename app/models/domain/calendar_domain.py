"""
Remote calendar events as returned by the Google Calendar API.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def parse_event_time(value: dict[str, Any] | None) -> datetime | None:
    """Google start/end object -> aware datetime. All-day dates become UTC midnight."""
    if not value:
        return None
    if "dateTime" in value:
        try:
            return datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        except ValueError:
            return None
    if "date" in value:
        return datetime.strptime(value["date"], "%Y-%m-%d").replace(tzinfo=UTC)
    return None


def normalize_title(title: str) -> str:
    return " ".join(title.split()).casefold()


@dataclass(slots=True)
class CalendarEvent:
    id: str | None
    summary: str = ""
    description: str = ""
    location: str = ""
    status: str = "confirmed"
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str = "UTC"
    all_day: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CalendarEvent":
        start = data.get("start") or {}
        return cls(
            id=data.get("id"),
            summary=data.get("summary", ""),
            description=data.get("description", ""),
            location=data.get("location", ""),
            status=data.get("status", "confirmed"),
            start_time=parse_event_time(start),
            end_time=parse_event_time(data.get("end")),
            timezone=start.get("timeZone", "UTC"),
            all_day="date" in start,
            raw=data,
        )

    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def matches_title(self, title: str) -> bool:
        """Case- and whitespace-insensitive title comparison."""
        return normalize_title(self.summary) == normalize_title(title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "timezone": self.timezone,
            "is_all_day": self.all_day,
        }
