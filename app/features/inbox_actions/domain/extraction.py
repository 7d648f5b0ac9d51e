"""
Extraction schema and the accept/repair/reject step applied to AI output.

The AI backends return loosely-typed JSON. Nothing downstream sees that
JSON directly: every event and todo goes through ExtractionValidator, which
either accepts it as a typed model, repairs a known defect (and logs it), or
rejects the item with a reason recorded in the run's error list.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.features.inbox_actions.domain.models import LEGACY_TODO_CODES, TIME_OF_DAY_VALUES, TODO_CATEGORIES
from app.features.inbox_actions.errors import ExtractionError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TimeOfDay = Literal["morning", "afternoon", "evening", "all_day", "specific"]
Confidence = Annotated[float, Field(ge=0.0, le=1.0)]

DEFAULT_TIMES: dict[str, time] = {
    "morning": time(9, 0),
    "afternoon": time(12, 0),
    "evening": time(17, 0),
    "all_day": time(9, 0),
}

# Values the model uses to mean "the whole family"
FAMILY_WIDE_CHILD_NAMES = {"general", "all", "family", "none", "n/a"}


class HumanAnalysis(BaseModel):
    """Free-text reading of a batch. Deanonymized before it is stored."""

    email_summary: str = ""
    email_tone: str = "informative"
    email_intent: str = "information only"
    implicit_context: str = ""


class ExtractedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    start_at: datetime
    end_at: datetime | None = None
    description: str | None = None
    location: str | None = None
    child_name: str | None = None
    source_email_id: str | None = None
    confidence: Confidence
    recurring: bool = False
    recurrence_pattern: str | None = None
    time_of_day: TimeOfDay = "specific"
    inferred_date: bool = False


class _TodoFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = Field(min_length=1)
    due_at: datetime | None = None
    child_name: str | None = None
    source_email_id: str | None = None
    confidence: Confidence
    recurring: bool = False
    recurrence_pattern: str | None = None
    responsible_party: str | None = None
    inferred: bool = False


class PaymentTodo(_TodoFields):
    """A todo that asks for money. Only payments carry amount and url."""

    category: Literal["payment"]
    amount: str | None = None
    url: str | None = None


class ActionTodo(_TodoFields):
    category: Literal["purchase", "pack", "sign", "fill", "read", "reminder", "homework"]


ExtractedTodo = Annotated[PaymentTodo | ActionTodo, Field(discriminator="category")]

_todo_adapter: TypeAdapter = TypeAdapter(ExtractedTodo)


@dataclass(slots=True)
class ExtractionOutcome:
    """Validated output of one batch."""

    human_analysis: HumanAnalysis
    events: list[ExtractedEvent] = field(default_factory=list)
    todos: list[PaymentTodo | ActionTodo] = field(default_factory=list)
    emails_analyzed: int = 0
    rejected: list[str] = field(default_factory=list)
    repairs: int = 0


def _nullable(kind: str | list[str], description: str) -> dict[str, Any]:
    types = [kind] if isinstance(kind, str) else list(kind)
    return {"type": [*types, "null"], "description": description}


# JSON schema sent to backends. Strict mode requires every property to be listed as required,
# so optional values are expressed as nullable.
EXTRACTION_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "human_analysis": {
            "type": "object",
            "properties": {
                "email_summary": {"type": "string", "description": "1-2 sentence summary"},
                "email_tone": {"type": "string", "description": "informative, urgent, casual..."},
                "email_intent": {"type": "string", "description": "action required, reminder..."},
                "implicit_context": {"type": "string", "description": "assumed shared context"},
            },
            "required": ["email_summary", "email_tone", "email_intent", "implicit_context"],
            "additionalProperties": False,
        },
        "events": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Event name"},
                    "date": {"type": "string", "description": "ISO8601 start, e.g. 2026-01-20T09:00:00Z"},
                    "end_date": _nullable("string", "ISO8601 end for multi-day events"),
                    "description": _nullable("string", "Additional context"),
                    "location": _nullable("string", "Location if mentioned"),
                    "child_name": _nullable("string", "Child token, or null if family-wide"),
                    "source_email_id": _nullable("string", "ID of the email this came from"),
                    "confidence": {"type": "number", "description": "0.0 to 1.0"},
                    "recurring": {"type": "boolean"},
                    "recurrence_pattern": _nullable("string", "e.g. weekly on Tuesdays"),
                    "time_of_day": {
                        "type": "string",
                        "enum": list(TIME_OF_DAY_VALUES),
                    },
                    "inferred_date": {"type": "boolean"},
                },
                "required": [
                    "title",
                    "date",
                    "end_date",
                    "description",
                    "location",
                    "child_name",
                    "source_email_id",
                    "confidence",
                    "recurring",
                    "recurrence_pattern",
                    "time_of_day",
                    "inferred_date",
                ],
                "additionalProperties": False,
            },
        },
        "todos": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "description": {"type": "string", "description": "What needs to be done"},
                    "type": {"type": "string", "enum": list(TODO_CATEGORIES)},
                    "due_date": _nullable("string", "ISO8601 deadline"),
                    "child_name": _nullable("string", "Child token, or null if family-wide"),
                    "source_email_id": _nullable("string", "ID of the email this came from"),
                    "url": _nullable("string", "Payment link (payment only)"),
                    "amount": _nullable("string", "Amount, e.g. £15.00 (payment only)"),
                    "confidence": {"type": "number", "description": "0.0 to 1.0"},
                    "recurring": {"type": "boolean"},
                    "recurrence_pattern": _nullable("string", "e.g. every Monday"),
                    "responsible_party": _nullable("string", "parent, child or both"),
                    "inferred": {"type": "boolean"},
                },
                "required": [
                    "description",
                    "type",
                    "due_date",
                    "child_name",
                    "source_email_id",
                    "url",
                    "amount",
                    "confidence",
                    "recurring",
                    "recurrence_pattern",
                    "responsible_party",
                    "inferred",
                ],
                "additionalProperties": False,
            },
        },
        "emails_analyzed": {"type": "integer"},
    },
    "required": ["human_analysis", "events", "todos", "emails_analyzed"],
    "additionalProperties": False,
}


class _Reject(Exception):
    """Internal signal: drop the current item with this reason."""


class ExtractionValidator:
    """
    Accept, repair or reject the items of one AI response.

    Repairs (logged, item kept):
    - legacy uppercase todo codes mapped onto the category enum
    - blank optional strings and family-wide child names become null
    - out-of-range confidence clamped into [0, 1]
    - unknown source_email_id replaced by the batch's only email id, else null
    - amount/url dropped from non-payment todos
    - time-of-day default clock time applied to events without an explicit time

    Rejects (item dropped, reason recorded):
    - missing title/description or date, unparsable dates
    - unknown todo category, non-numeric confidence
    """

    def __init__(self, batch_email_ids: list[str], batch_index: int = 0):
        self.batch_email_ids = list(batch_email_ids)
        self.batch_index = batch_index
        self.repairs = 0
        self.rejected: list[str] = []

    def validate(self, raw: Any) -> ExtractionOutcome:
        """
        Validate a full response.

        Raises:
            ExtractionError: If the response itself is not a usable extraction object
        """
        if not isinstance(raw, dict):
            raise ExtractionError(
                f"Extraction response is {type(raw).__name__}, expected object",
                batch_index=self.batch_index,
            )

        events_raw = raw.get("events")
        todos_raw = raw.get("todos")
        if not isinstance(events_raw, list) or not isinstance(todos_raw, list):
            raise ExtractionError(
                "Extraction response is missing events or todos arrays",
                batch_index=self.batch_index,
            )

        outcome = ExtractionOutcome(
            human_analysis=self._human_analysis(raw.get("human_analysis")),
            emails_analyzed=self._emails_analyzed(raw.get("emails_analyzed")),
        )

        for index, item in enumerate(events_raw):
            try:
                outcome.events.append(self._event(item))
            except _Reject as reason:
                self._record_reject("event", index, str(reason))

        for index, item in enumerate(todos_raw):
            try:
                outcome.todos.append(self._todo(item))
            except _Reject as reason:
                self._record_reject("todo", index, str(reason))

        outcome.rejected = list(self.rejected)
        outcome.repairs = self.repairs
        return outcome

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _event(self, item: Any) -> ExtractedEvent:
        if not isinstance(item, dict):
            raise _Reject("item is not an object")

        title = self._required_text(item.get("title"), "title")
        time_of_day = item.get("time_of_day") or "specific"
        if time_of_day not in TIME_OF_DAY_VALUES:
            self._repaired("event", "unknown time_of_day", value=time_of_day)
            time_of_day = "specific"

        start_at, has_clock_time = self._parse_datetime(item.get("date"), "date", required=True)
        if not has_clock_time and time_of_day in DEFAULT_TIMES:
            start_at = datetime.combine(start_at.date(), DEFAULT_TIMES[time_of_day], tzinfo=start_at.tzinfo)
            self.repairs += 1

        end_at, _ = self._parse_datetime(item.get("end_date"), "end_date", required=False)
        if end_at is not None and end_at < start_at:
            self._repaired("event", "end before start dropped", title=title)
            end_at = None

        payload = {
            "title": title,
            "start_at": start_at,
            "end_at": end_at,
            "description": self._optional_text(item.get("description")),
            "location": self._optional_text(item.get("location")),
            "child_name": self._child_name(item.get("child_name")),
            "source_email_id": self._source_email_id(item.get("source_email_id")),
            "confidence": self._confidence(item.get("confidence")),
            "recurring": bool(item.get("recurring", False)),
            "recurrence_pattern": self._optional_text(item.get("recurrence_pattern")),
            "time_of_day": time_of_day,
            "inferred_date": bool(item.get("inferred_date", False)),
        }

        try:
            return ExtractedEvent.model_validate(payload)
        except ValidationError as e:
            raise _Reject(f"schema violation: {e.errors()[0]['msg']}") from e

    def _todo(self, item: Any) -> PaymentTodo | ActionTodo:
        if not isinstance(item, dict):
            raise _Reject("item is not an object")

        description = self._required_text(item.get("description"), "description")
        category = self._category(item.get("type", item.get("category")))
        due_at, _ = self._parse_datetime(item.get("due_date"), "due_date", required=False)

        payload = {
            "category": category,
            "description": description,
            "due_at": due_at,
            "child_name": self._child_name(item.get("child_name")),
            "source_email_id": self._source_email_id(item.get("source_email_id")),
            "confidence": self._confidence(item.get("confidence")),
            "recurring": bool(item.get("recurring", False)),
            "recurrence_pattern": self._optional_text(item.get("recurrence_pattern")),
            "responsible_party": self._optional_text(item.get("responsible_party")),
            "inferred": bool(item.get("inferred", False)),
        }

        amount = self._optional_text(item.get("amount"))
        url = self._optional_text(item.get("url"))
        if category == "payment":
            payload["amount"] = amount
            payload["url"] = url
        elif amount or url:
            self._repaired("todo", "amount/url dropped from non-payment todo", category=category)

        try:
            return _todo_adapter.validate_python(payload)
        except ValidationError as e:
            raise _Reject(f"schema violation: {e.errors()[0]['msg']}") from e

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _required_text(self, value: Any, name: str) -> str:
        text = value.strip() if isinstance(value, str) else ""
        if not text:
            raise _Reject(f"missing {name}")
        return text

    def _optional_text(self, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        text = value.strip()
        if not text:
            self.repairs += 1
            return None
        return text

    def _child_name(self, value: Any) -> str | None:
        text = self._optional_text(value)
        if text and text.lower() in FAMILY_WIDE_CHILD_NAMES:
            self.repairs += 1
            return None
        return text

    def _confidence(self, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise _Reject(f"non-numeric confidence: {value!r}")
        if value < 0 or value > 1:
            self._repaired("item", "confidence clamped", value=value)
            return min(max(float(value), 0.0), 1.0)
        return float(value)

    def _category(self, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise _Reject("missing todo category")
        code = value.strip()
        if code.lower() in TODO_CATEGORIES:
            return code.lower()
        mapped = LEGACY_TODO_CODES.get(code.upper())
        if mapped:
            self._repaired("todo", "legacy category mapped", code=code, category=mapped)
            return mapped
        raise _Reject(f"unknown todo category: {code}")

    def _source_email_id(self, value: Any) -> str | None:
        text = self._optional_text(value)
        if text in self.batch_email_ids:
            return text
        replacement = self.batch_email_ids[0] if len(self.batch_email_ids) == 1 else None
        if text is not None:
            self._repaired("item", "source_email_id replaced", given=text, replacement=replacement)
        return replacement

    def _parse_datetime(self, value: Any, name: str, required: bool) -> tuple[datetime | None, bool]:
        """
        Parse an ISO8601 date or datetime.

        Returns (value, has_clock_time). Date-only strings and exact midnight
        count as "no explicit clock time". Naive values are read as UTC.
        """
        text = value.strip() if isinstance(value, str) else ""
        if not text:
            if required:
                raise _Reject(f"missing {name}")
            return None, False

        try:
            if len(text) == 10:
                parsed = datetime.fromisoformat(text)
                has_clock_time = False
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
                has_clock_time = parsed.time() != time(0, 0)
        except ValueError as e:
            raise _Reject(f"unparsable {name}: {text}") from e

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed, has_clock_time

    def _human_analysis(self, value: Any) -> HumanAnalysis:
        if isinstance(value, dict):
            cleaned = {k: v for k, v in value.items() if isinstance(v, str)}
            return HumanAnalysis.model_validate(cleaned)
        if value is not None:
            self._repaired("batch", "human_analysis replaced with defaults")
        return HumanAnalysis()

    def _emails_analyzed(self, value: Any) -> int:
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        return len(self.batch_email_ids)

    def _repaired(self, kind: str, what: str, **fields: Any) -> None:
        self.repairs += 1
        logger.warning(
            "Extraction item repaired",
            item_kind=kind,
            repair=what,
            batch_index=self.batch_index,
            **fields,
        )

    def _record_reject(self, kind: str, index: int, reason: str) -> None:
        message = f"batch {self.batch_index}: {kind} {index} rejected ({reason})"
        self.rejected.append(message)
        logger.warning(
            "Extraction item rejected",
            item_kind=kind,
            item_index=index,
            batch_index=self.batch_index,
            reason=reason,
        )
