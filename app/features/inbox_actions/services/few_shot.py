"""
Few-shot relevance examples built from the user's graded feedback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.features.inbox_actions.domain.models import FeedbackExample
from app.features.inbox_actions.repository.feedback_repository import FeedbackRepository
from app.features.inbox_actions.services.anonymizer import ChildAnonymizer


@dataclass(slots=True)
class FewShotSection:
    prompt_section: str = ""
    example_count: int = 0


def format_few_shot_section(
    relevant: list[FeedbackExample], not_relevant: list[FeedbackExample]
) -> str:
    """Render graded examples as a prompt block. Empty when there are none."""
    if not relevant and not not_relevant:
        return ""

    lines = [
        "=== USER-SPECIFIC RELEVANCE FILTER (CRITICAL - OVERRIDES OTHER RULES) ===",
        "",
        "The user has explicitly graded items from their emails. "
        "These preferences OVERRIDE all other extraction rules.",
        "",
    ]

    if not_relevant:
        lines.append("**DO NOT EXTRACT** - The user marked these as NOT RELEVANT. Skip similar items entirely:")
        lines.extend(f"- {example.item_text}" for example in not_relevant)
        lines.extend(
            [
                "",
                "If an item matches the pattern or type of ANY item above, DO NOT include it in your output.",
                'This applies even to calendar lists - user preferences override "extract all" rules.',
                "",
            ]
        )

    if relevant:
        lines.append("**EXTRACT** - The user confirmed these ARE RELEVANT:")
        lines.extend(f"- {example.item_text}" for example in relevant)
        lines.append("")

    lines.append(
        "When you encounter an item similar to the NOT RELEVANT examples above, "
        "exclude it from your output completely."
    )
    return "\n".join(lines) + "\n"


class FewShotBuilder:
    def __init__(self, repository: Any = FeedbackRepository, limit_per_category: int | None = None):
        self.repository = repository
        self.limit_per_category = limit_per_category or settings.FEW_SHOT_LIMIT_PER_CATEGORY

    async def build(self, user_id: str, anonymizer: ChildAnonymizer) -> FewShotSection:
        relevant, not_relevant = await self.repository.get_graded_examples(user_id, self.limit_per_category)
        relevant = [anonymizer.anonymize_example(e) for e in relevant[: self.limit_per_category]]
        not_relevant = [anonymizer.anonymize_example(e) for e in not_relevant[: self.limit_per_category]]

        return FewShotSection(
            prompt_section=format_few_shot_section(relevant, not_relevant),
            example_count=len(relevant) + len(not_relevant),
        )
