"""
Domain models for the inbox actions feature.

Plain slots dataclasses shared by repositories, services and the pipeline.
Status and category vocabularies are module constants so SQL, validation
and tests all read from the same place.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

# Job types. Rows written before job types existed have NULL and read as LEGACY_JOB_TYPE.
JOB_TYPE_SCAN_INBOX = "scan_inbox"
JOB_TYPE_EXTRACT_TRAINING = "extract_training"
JOB_TYPE_GENERATE_EMAIL = "generate_email"
JOB_TYPE_ANALYZE_CHILDREN = "analyze_children"
JOB_TYPE_PROCESS_HOSTED = "process_hosted"
JOB_TYPE_PROCESS_EMAILS = "process_emails"
LEGACY_JOB_TYPE = JOB_TYPE_SCAN_INBOX

JOB_TYPES = frozenset(
    {
        JOB_TYPE_SCAN_INBOX,
        JOB_TYPE_EXTRACT_TRAINING,
        JOB_TYPE_GENERATE_EMAIL,
        JOB_TYPE_ANALYZE_CHILDREN,
        JOB_TYPE_PROCESS_HOSTED,
        JOB_TYPE_PROCESS_EMAILS,
    }
)

# Job statuses
JOB_PENDING = "pending"
JOB_SCANNING = "scanning"
JOB_RANKING = "ranking"
JOB_COMPLETE = "complete"
JOB_FAILED = "failed"

ACTIVE_JOB_STATUSES = frozenset({JOB_PENDING, JOB_SCANNING, JOB_RANKING})
TERMINAL_JOB_STATUSES = frozenset({JOB_COMPLETE, JOB_FAILED})

ALLOWED_JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    JOB_PENDING: frozenset({JOB_SCANNING, JOB_RANKING, JOB_COMPLETE, JOB_FAILED}),
    JOB_SCANNING: frozenset({JOB_RANKING, JOB_COMPLETE, JOB_FAILED}),
    JOB_RANKING: frozenset({JOB_COMPLETE, JOB_FAILED}),
    JOB_COMPLETE: frozenset(),
    JOB_FAILED: frozenset(),
}

STALE_JOB_AFTER = timedelta(minutes=5)

# Todo categories and legacy uppercase codes the model may still emit
TODO_CATEGORIES = (
    "payment",
    "purchase",
    "pack",
    "sign",
    "fill",
    "read",
    "reminder",
    "homework",
)

LEGACY_TODO_CODES = {
    "PAY": "payment",
    "BUY": "purchase",
    "PACK": "pack",
    "SIGN": "sign",
    "FILL": "fill",
    "READ": "read",
    "REMIND": "reminder",
    "DECIDE": "reminder",
    "HOMEWORK": "homework",
}

TODO_PENDING = "pending"
TODO_DONE = "done"

TIME_OF_DAY_VALUES = ("morning", "afternoon", "evening", "all_day", "specific")

# Calendar sync status of stored events
SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"


@dataclass(slots=True)
class Job:
    """Represents a jobs row."""

    id: str
    user_id: str
    job_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None

    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    def is_stale(self, now: datetime, stale_after: timedelta = STALE_JOB_AFTER) -> bool:
        """An active job whose start is older than the staleness threshold."""
        return self.is_active() and now - self.started_at > stale_after

    def is_in_progress(self, now: datetime, stale_after: timedelta = STALE_JOB_AFTER) -> bool:
        return self.is_active() and not self.is_stale(now, stale_after)

    def snapshot(self, now: datetime, stale_after: timedelta = STALE_JOB_AFTER) -> dict[str, Any]:
        """Status view returned to pollers."""
        return {
            "job_id": self.id,
            "job_type": self.job_type,
            "status": self.status,
            "result": self.result,
            "error": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "in_progress": self.is_in_progress(now, stale_after),
            "stale": self.is_stale(now, stale_after),
        }


@dataclass(slots=True)
class EmailRecord:
    """A normalized inbox message, stored in the emails table."""

    user_id: str
    provider_message_id: str
    thread_id: str | None = None
    from_email: str = ""
    from_name: str = ""
    subject: str = ""
    snippet: str = ""
    body_text: str = ""
    attachment_content: str | None = None
    labels: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    id: str | None = None
    processed: bool = False
    analyzed: bool = False
    labeled: bool = False
    fetch_error: str | None = None
    fetch_attempts: int = 0


@dataclass(slots=True)
class EmailFetchFailure:
    """A message id the inbox listed but whose content could not be fetched."""

    provider_message_id: str
    error: str


@dataclass(slots=True)
class InboxFetchResult:
    """Everything one inbox fetch produced, including per-message failures."""

    emails: list[EmailRecord] = field(default_factory=list)
    failures: list[EmailFetchFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.emails) + len(self.failures)


@dataclass(slots=True)
class ChildProfile:
    """A child_profiles row. Real names never leave the process."""

    real_name: str
    year_group: str | None = None
    school_name: str | None = None


@dataclass(slots=True)
class ChildMapping:
    """Run-scoped link between a real child and the token sent to the AI backend."""

    token: str
    real_name: str
    year_group: str | None = None
    school_name: str | None = None


@dataclass(slots=True)
class StoredEvent:
    """An events row, including its calendar sync state."""

    id: str
    user_id: str
    title: str
    start_at: datetime
    end_at: datetime | None = None
    description: str | None = None
    location: str | None = None
    child_name: str | None = None
    source_email_id: str | None = None
    sync_status: str = SYNC_PENDING
    calendar_event_id: str | None = None
    retry_count: int = 0


@dataclass(slots=True)
class StoredAnalysis:
    """Free-text analysis of one extraction batch, with real child names."""

    id: str
    provider_message_ids: list[str]
    ai_provider: str
    email_summary: str = ""
    email_tone: str | None = None
    email_intent: str | None = None
    implicit_context: str = ""
    events_extracted: int = 0
    todos_extracted: int = 0
    created_at: datetime | None = None


@dataclass(slots=True)
class FeedbackExample:
    """A graded extraction used as a few-shot example."""

    item_type: str  # "todo" or "event"
    item_text: str
    source_sender: str | None = None


@dataclass(slots=True)
class SenderScore:
    """Laplace-smoothed relevance of one sender, computed from graded feedback."""

    sender_email: str
    relevant_count: int
    not_relevant_count: int
    total_count: int
    relevance_score: float


@dataclass(slots=True)
class CleanupResult:
    """What the cleanup sweep changed."""

    cutoff: datetime
    completed_todo_ids: list[str] = field(default_factory=list)
    deleted_event_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "completed_todo_ids": list(self.completed_todo_ids),
            "deleted_event_ids": list(self.deleted_event_ids),
        }
