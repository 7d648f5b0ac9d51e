from datetime import UTC, datetime

from app.features.inbox_actions.domain.extraction import (
    ExtractedEvent,
    ExtractionOutcome,
    HumanAnalysis,
    PaymentTodo,
)
from app.features.inbox_actions.domain.models import ChildProfile, FeedbackExample
from app.features.inbox_actions.services.anonymizer import ChildAnonymizer, build_mapping
from tests.fakes import make_email


def make_anonymizer():
    return ChildAnonymizer.from_profiles(
        [
            ChildProfile(real_name="Sam", year_group="Year 1", school_name="Oak Primary"),
            ChildProfile(real_name="Samantha", year_group="Year 6"),
        ]
    )


def test_mapping_tokens_follow_profile_order():
    mapping = build_mapping([ChildProfile(real_name="Emma"), ChildProfile(real_name="Leo")])

    assert [(m.token, m.real_name) for m in mapping] == [("CHILD_1", "Emma"), ("CHILD_2", "Leo")]


def test_round_trip_restores_real_names():
    anonymizer = make_anonymizer()
    text = "Samantha and Sam both need wellies. SAM's class trip is Friday."

    anonymized = anonymizer.anonymize(text)

    assert "Sam" not in anonymized
    assert "CHILD_1" in anonymized and "CHILD_2" in anonymized
    assert anonymizer.deanonymize(anonymized) == "Samantha and Sam both need wellies. Sam's class trip is Friday."


def test_longer_name_not_split_by_shorter_one():
    anonymizer = make_anonymizer()

    assert anonymizer.anonymize("Samantha") == "CHILD_2"


def test_anonymize_is_idempotent_on_tokens():
    anonymizer = make_anonymizer()
    once = anonymizer.anonymize("Sam has swimming")

    assert anonymizer.anonymize(once) == once


def test_name_inside_other_word_untouched():
    anonymizer = make_anonymizer()

    assert anonymizer.anonymize("Samples due Monday") == "Samples due Monday"


def test_ten_children_tokens_do_not_collide():
    anonymizer = ChildAnonymizer.from_profiles([ChildProfile(real_name=f"Kid{i}") for i in range(1, 11)])

    assert anonymizer.deanonymize("CHILD_10 and CHILD_1") == "Kid10 and Kid1"


def test_empty_values_pass_through():
    anonymizer = make_anonymizer()

    assert anonymizer.anonymize(None) is None
    assert anonymizer.anonymize("") == ""
    assert ChildAnonymizer([]).anonymize("Sam") == "Sam"


def test_prompt_profiles_hide_names():
    profiles = make_anonymizer().prompt_profiles()

    assert profiles == [
        {"id": "CHILD_1", "year_group": "Year 1", "school_name": "Oak Primary"},
        {"id": "CHILD_2", "year_group": "Year 6", "school_name": "Unknown"},
    ]


def test_anonymize_email_copies_record():
    anonymizer = make_anonymizer()
    email = make_email("msg-1", subject="Sam's reading book", body_text="Sam forgot it", attachment_content="Sam")

    copy = anonymizer.anonymize_email(email)

    assert copy.subject == "CHILD_1's reading book"
    assert copy.body_text == "CHILD_1 forgot it"
    assert copy.attachment_content == "CHILD_1"
    assert copy.provider_message_id == "msg-1"
    assert email.subject == "Sam's reading book"


def test_anonymize_example():
    example = FeedbackExample(item_type="todo", item_text="Pack Samantha's kit", source_sender="pe@school.example")

    assert make_anonymizer().anonymize_example(example).item_text == "Pack CHILD_2's kit"


def test_deanonymize_outcome():
    anonymizer = make_anonymizer()
    outcome = ExtractionOutcome(
        human_analysis=HumanAnalysis(email_summary="CHILD_1 has a trip"),
        events=[
            ExtractedEvent(
                title="CHILD_1 trip",
                start_at=datetime(2026, 2, 3, 9, 0, tzinfo=UTC),
                child_name="CHILD_1",
                confidence=0.9,
            )
        ],
        todos=[
            PaymentTodo(
                category="payment",
                description="Pay for CHILD_2's trip",
                child_name="CHILD_2",
                amount="£12.00",
                confidence=0.8,
            )
        ],
    )

    restored = anonymizer.deanonymize_outcome(outcome)

    assert restored.human_analysis.email_summary == "Sam has a trip"
    assert restored.events[0].title == "Sam trip"
    assert restored.events[0].child_name == "Sam"
    assert restored.todos[0].description == "Pay for Samantha's trip"
    assert restored.todos[0].amount == "£12.00"
    assert outcome.events[0].title == "CHILD_1 trip"
