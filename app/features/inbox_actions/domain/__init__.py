"""
Domain subpackage for the inbox actions feature.
"""

from .extraction import (
    EXTRACTION_JSON_SCHEMA,
    ActionTodo,
    ExtractedEvent,
    ExtractionOutcome,
    ExtractionValidator,
    HumanAnalysis,
    PaymentTodo,
)
from .models import (
    ChildMapping,
    ChildProfile,
    CleanupResult,
    EmailFetchFailure,
    EmailRecord,
    FeedbackExample,
    InboxFetchResult,
    Job,
    SenderScore,
    StoredAnalysis,
    StoredEvent,
)
from .run import RunOptions, RunResult

__all__ = [
    "EXTRACTION_JSON_SCHEMA",
    "ActionTodo",
    "ChildMapping",
    "ChildProfile",
    "CleanupResult",
    "EmailFetchFailure",
    "EmailRecord",
    "ExtractedEvent",
    "ExtractionOutcome",
    "ExtractionValidator",
    "FeedbackExample",
    "HumanAnalysis",
    "InboxFetchResult",
    "Job",
    "PaymentTodo",
    "RunOptions",
    "RunResult",
    "SenderScore",
    "StoredAnalysis",
    "StoredEvent",
]
