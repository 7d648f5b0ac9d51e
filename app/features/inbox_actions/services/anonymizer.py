"""
Child anonymization for AI prompts.

Real child names are replaced by opaque tokens (CHILD_1, CHILD_2, ...) before
any text is sent to an AI backend, and mapped back before anything is stored
or shown. The mapping lives only for one pipeline run and is never persisted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from app.features.inbox_actions.domain.extraction import (
    ActionTodo,
    ExtractedEvent,
    ExtractionOutcome,
    HumanAnalysis,
    PaymentTodo,
)
from app.features.inbox_actions.domain.models import ChildMapping, ChildProfile, EmailRecord, FeedbackExample

TOKEN_PREFIX = "CHILD_"


class ChildAnonymizer:
    def __init__(self, mappings: list[ChildMapping]):
        self.mappings = list(mappings)

        # Longest names first so "Sam" never eats part of "Samantha"
        by_name = sorted(self.mappings, key=lambda m: len(m.real_name), reverse=True)
        self._forward = [
            (re.compile(rf"(?<!\w){re.escape(m.real_name)}(?!\w)", re.IGNORECASE), m.token)
            for m in by_name
            if m.real_name.strip()
        ]

        # Longest tokens first so CHILD_1 never corrupts CHILD_10
        self._reverse = sorted(
            ((m.token, m.real_name) for m in self.mappings), key=lambda pair: len(pair[0]), reverse=True
        )

    @classmethod
    def from_profiles(cls, profiles: Iterable[ChildProfile]) -> ChildAnonymizer:
        return cls(build_mapping(profiles))

    def anonymize(self, text: str | None) -> str | None:
        if not text or not self._forward:
            return text
        for pattern, token in self._forward:
            text = pattern.sub(token, text)
        return text

    def deanonymize(self, text: str | None) -> str | None:
        if not text or not self._reverse:
            return text
        for token, real_name in self._reverse:
            text = text.replace(token, real_name)
        return text

    # ------------------------------------------------------------------
    # Prompt side
    # ------------------------------------------------------------------

    def prompt_profiles(self) -> list[dict[str, str]]:
        """Profiles as the AI sees them: token, year group and school only."""
        return [
            {
                "id": m.token,
                "year_group": m.year_group or "Unknown",
                "school_name": m.school_name or "Unknown",
            }
            for m in self.mappings
        ]

    def anonymize_email(self, email: EmailRecord) -> EmailRecord:
        """Copy of the email with every text field anonymized."""
        return EmailRecord(
            user_id=email.user_id,
            provider_message_id=email.provider_message_id,
            thread_id=email.thread_id,
            from_email=email.from_email,
            from_name=self.anonymize(email.from_name) or "",
            subject=self.anonymize(email.subject) or "",
            snippet=self.anonymize(email.snippet) or "",
            body_text=self.anonymize(email.body_text) or "",
            attachment_content=self.anonymize(email.attachment_content),
            labels=list(email.labels),
            received_at=email.received_at,
            id=email.id,
            processed=email.processed,
            analyzed=email.analyzed,
            labeled=email.labeled,
        )

    def anonymize_example(self, example: FeedbackExample) -> FeedbackExample:
        return FeedbackExample(
            item_type=example.item_type,
            item_text=self.anonymize(example.item_text) or "",
            source_sender=example.source_sender,
        )

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------

    def deanonymize_event(self, event: ExtractedEvent) -> ExtractedEvent:
        return event.model_copy(
            update={
                "title": self.deanonymize(event.title),
                "description": self.deanonymize(event.description),
                "location": self.deanonymize(event.location),
                "child_name": self.deanonymize(event.child_name),
                "recurrence_pattern": self.deanonymize(event.recurrence_pattern),
            }
        )

    def deanonymize_todo(self, todo: PaymentTodo | ActionTodo) -> PaymentTodo | ActionTodo:
        return todo.model_copy(
            update={
                "description": self.deanonymize(todo.description),
                "child_name": self.deanonymize(todo.child_name),
                "recurrence_pattern": self.deanonymize(todo.recurrence_pattern),
                "responsible_party": self.deanonymize(todo.responsible_party),
            }
        )

    def deanonymize_analysis(self, analysis: HumanAnalysis) -> HumanAnalysis:
        return analysis.model_copy(
            update={
                "email_summary": self.deanonymize(analysis.email_summary) or "",
                "implicit_context": self.deanonymize(analysis.implicit_context) or "",
            }
        )

    def deanonymize_outcome(self, outcome: ExtractionOutcome) -> ExtractionOutcome:
        return ExtractionOutcome(
            human_analysis=self.deanonymize_analysis(outcome.human_analysis),
            events=[self.deanonymize_event(e) for e in outcome.events],
            todos=[self.deanonymize_todo(t) for t in outcome.todos],
            emails_analyzed=outcome.emails_analyzed,
            rejected=list(outcome.rejected),
            repairs=outcome.repairs,
        )


def build_mapping(profiles: Iterable[ChildProfile]) -> list[ChildMapping]:
    """Ordered mapping: the i-th profile becomes CHILD_{i+1}."""
    return [
        ChildMapping(
            token=f"{TOKEN_PREFIX}{index + 1}",
            real_name=profile.real_name,
            year_group=profile.year_group,
            school_name=profile.school_name,
        )
        for index, profile in enumerate(profiles)
    ]
