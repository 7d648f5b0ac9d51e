"""
Run options and run result for the processing pipeline.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import settings
from app.features.inbox_actions.errors import RunValidationError

DateRange = Literal["today", "yesterday", "last3days", "last7days", "last30days", "last90days"]
AIProvider = Literal["openai", "anthropic"]

DATE_RANGE_DAYS: dict[str, int] = {
    "today": 0,
    "yesterday": 1,
    "last3days": 3,
    "last7days": 7,
    "last30days": 30,
    "last90days": 90,
}


class RunOptions(BaseModel):
    """Options accepted by InboxPipeline.run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    date_range: DateRange = "last7days"
    max_results: int = Field(default_factory=lambda: settings.DEFAULT_MAX_RESULTS, ge=1)
    ai_provider: AIProvider = Field(default_factory=lambda: settings.AI_DEFAULT_PROVIDER)
    dry_run: bool = False
    skip_duplicate_events: bool = True
    sync_calendar: bool = True

    @classmethod
    def parse(cls, options: "RunOptions | dict[str, Any] | None") -> "RunOptions":
        """
        Build options from a mapping, raising RunValidationError on bad input.

        max_results is capped by MAX_RESULTS_LIMIT (the tier-derived quota).
        """
        if isinstance(options, RunOptions):
            parsed = options
        else:
            try:
                parsed = cls.model_validate(options or {})
            except ValidationError as e:
                first = e.errors()[0]
                field_name = ".".join(str(part) for part in first.get("loc", ())) or None
                raise RunValidationError(
                    f"Invalid run option {field_name}: {first['msg']}", field=field_name
                ) from e

        if parsed.max_results > settings.MAX_RESULTS_LIMIT:
            raise RunValidationError(
                f"max_results must be at most {settings.MAX_RESULTS_LIMIT}", field="max_results"
            )
        return parsed


def date_range_start(date_range: str, today: date) -> date:
    """First local day included in a date range."""
    return today - timedelta(days=DATE_RANGE_DAYS[date_range])


@dataclass(slots=True)
class RunResult:
    """Aggregated statistics of one pipeline run."""

    success: bool = True
    emails_fetched: int = 0
    emails_processed: int = 0
    emails_skipped: int = 0
    events_created: int = 0
    todos_created: int = 0
    events_synced: int = 0
    processing_time_ms: int = 0
    dry_run: bool = False
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "emails_fetched": self.emails_fetched,
            "emails_processed": self.emails_processed,
            "emails_skipped": self.emails_skipped,
            "events_created": self.events_created,
            "todos_created": self.todos_created,
            "events_synced": self.events_synced,
            "processing_time_ms": self.processing_time_ms,
            "dry_run": self.dry_run,
            "errors": list(self.errors),
        }
