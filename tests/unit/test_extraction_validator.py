from datetime import UTC, datetime

import pytest

from app.features.inbox_actions.domain.extraction import ExtractionValidator, PaymentTodo
from app.features.inbox_actions.errors import ExtractionError
from tests.fakes import event_item, extraction_response, todo_item


def validate(events=None, todos=None, email_ids=("msg-1",), batch_index=0):
    validator = ExtractionValidator(list(email_ids), batch_index=batch_index)
    return validator.validate(extraction_response(events=events, todos=todos))


def test_accepts_well_formed_items():
    outcome = validate(
        events=[event_item("Sports Day", "2026-01-20T09:30:00Z", "msg-1")],
        todos=[todo_item("Return trip form", "sign", "msg-1", due_date="2026-01-18")],
    )

    assert outcome.rejected == []
    assert outcome.events[0].start_at == datetime(2026, 1, 20, 9, 30, tzinfo=UTC)
    assert outcome.todos[0].category == "sign"
    assert outcome.todos[0].due_at == datetime(2026, 1, 18, tzinfo=UTC)
    assert outcome.human_analysis.email_summary == "School newsletter"


@pytest.mark.parametrize(
    "time_of_day,expected_hour",
    [("morning", 9), ("afternoon", 12), ("evening", 17), ("all_day", 9)],
)
def test_time_of_day_default_applied_to_date_only(time_of_day, expected_hour):
    outcome = validate(events=[event_item("Assembly", "2026-01-20", "msg-1", time_of_day=time_of_day)])

    assert outcome.events[0].start_at.hour == expected_hour
    assert outcome.events[0].start_at.date().isoformat() == "2026-01-20"


def test_explicit_clock_time_kept():
    outcome = validate(events=[event_item("Concert", "2026-01-20T18:15:00Z", "msg-1", time_of_day="afternoon")])

    assert outcome.events[0].start_at.hour == 18


def test_legacy_codes_mapped():
    outcome = validate(
        todos=[
            todo_item("Pay for lunch", "PAY", "msg-1", amount="£2.50"),
            todo_item("Decide on club", "DECIDE", "msg-1"),
        ]
    )

    assert [t.category for t in outcome.todos] == ["payment", "reminder"]
    assert isinstance(outcome.todos[0], PaymentTodo)
    assert outcome.todos[0].amount == "£2.50"
    assert outcome.repairs >= 2


def test_amount_dropped_from_non_payment_todo():
    outcome = validate(todos=[todo_item("Buy wellies", "purchase", "msg-1", amount="£10")])

    assert outcome.todos[0].category == "purchase"
    assert not hasattr(outcome.todos[0], "amount")


def test_confidence_clamped():
    outcome = validate(events=[event_item("Trip", "2026-01-20T09:00:00Z", "msg-1", confidence=1.4)])

    assert outcome.events[0].confidence == 1.0


def test_unknown_source_email_repaired_for_single_email_batch():
    outcome = validate(events=[event_item("Trip", "2026-01-20T09:00:00Z", "made-up-id")])

    assert outcome.events[0].source_email_id == "msg-1"


def test_unknown_source_email_cleared_for_multi_email_batch():
    outcome = validate(
        events=[event_item("Trip", "2026-01-20T09:00:00Z", "made-up-id")],
        email_ids=("msg-1", "msg-2"),
    )

    assert outcome.events[0].source_email_id is None


def test_family_wide_child_name_becomes_null():
    outcome = validate(events=[event_item("INSET day", "2026-01-20", "msg-1", child_name="General")])

    assert outcome.events[0].child_name is None


def test_bad_items_rejected_with_reason():
    outcome = validate(
        events=[
            event_item("", "2026-01-20T09:00:00Z"),
            event_item("No date", ""),
            event_item("Bad date", "next Tuesday"),
            event_item("Good", "2026-01-20T09:00:00Z", "msg-1"),
        ],
        todos=[
            todo_item("Mystery", "dance"),
            todo_item("Vague", "sign", confidence="high"),
        ],
        batch_index=3,
    )

    assert [e.title for e in outcome.events] == ["Good"]
    assert outcome.todos == []
    assert outcome.rejected == [
        "batch 3: event 0 rejected (missing title)",
        "batch 3: event 1 rejected (missing date)",
        "batch 3: event 2 rejected (unparsable date: next Tuesday)",
        "batch 3: todo 0 rejected (unknown todo category: dance)",
        "batch 3: todo 1 rejected (non-numeric confidence: 'high')",
    ]


def test_end_before_start_dropped():
    outcome = validate(
        events=[event_item("Camp", "2026-01-20T09:00:00Z", "msg-1", end_date="2026-01-19T09:00:00Z")]
    )

    assert outcome.events[0].end_at is None


@pytest.mark.parametrize(
    "raw",
    [
        ["not", "an", "object"],
        {"events": [], "human_analysis": {}},
        {"events": "none", "todos": []},
    ],
)
def test_unusable_response_raises(raw):
    with pytest.raises(ExtractionError):
        ExtractionValidator(["msg-1"], batch_index=0).validate(raw)


def test_emails_analyzed_defaults_to_batch_size():
    raw = extraction_response()
    raw["emails_analyzed"] = "two"

    outcome = ExtractionValidator(["a", "b"]).validate(raw)

    assert outcome.emails_analyzed == 2
