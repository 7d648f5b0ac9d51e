"""
Batch extraction engine.

Emails are split into fixed-size batches. Each batch is anonymized, sent to
the selected AI backend, validated, then deanonymized. Batches run with
bounded concurrency; results come back in batch order regardless of which
finished first. A failed batch is reported, never raised, so its siblings
still count.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from app.config import settings
from app.features.inbox_actions.domain.extraction import (
    EXTRACTION_JSON_SCHEMA,
    ExtractionOutcome,
    ExtractionValidator,
)
from app.features.inbox_actions.domain.models import EmailRecord
from app.features.inbox_actions.errors import ExtractionError
from app.features.inbox_actions.pipeline.prompt import build_extraction_prompt
from app.features.inbox_actions.services.anonymizer import ChildAnonymizer
from app.infrastructure.observability.logging import get_logger
from app.services.ai import AIBackend, get_backend

logger = get_logger(__name__)


@dataclass(slots=True)
class BatchResult:
    index: int
    email_ids: list[str]
    outcome: ExtractionOutcome | None = None
    error: str | None = None
    provider: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not None


def chunk(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class ExtractionEngine:
    def __init__(
        self,
        backend_resolver: Callable[[str], AIBackend] = get_backend,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        fallback_provider: str | None = None,
    ):
        self.backend_resolver = backend_resolver
        self.batch_size = batch_size or settings.EXTRACTION_BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.EXTRACTION_MAX_CONCURRENCY
        self.fallback_provider = fallback_provider if fallback_provider is not None else settings.AI_FALLBACK_PROVIDER

    async def extract(
        self,
        emails: list[EmailRecord],
        *,
        today: date,
        provider: str,
        anonymizer: ChildAnonymizer,
        few_shot_section: str = "",
    ) -> list[BatchResult]:
        if not emails:
            return []

        batches = chunk(emails, self.batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        profiles = anonymizer.prompt_profiles()

        async def run_batch(index: int, batch: list[EmailRecord]) -> BatchResult:
            async with semaphore:
                return await self._extract_batch(
                    index, batch, today, provider, anonymizer, profiles, few_shot_section
                )

        results = await asyncio.gather(*(run_batch(i, b) for i, b in enumerate(batches)))

        logger.info(
            "Extraction finished",
            provider=provider,
            batches=len(batches),
            failed_batches=sum(1 for r in results if not r.succeeded),
        )
        return list(results)

    async def _extract_batch(
        self,
        index: int,
        batch: list[EmailRecord],
        today: date,
        provider: str,
        anonymizer: ChildAnonymizer,
        profiles: list[dict[str, str]],
        few_shot_section: str,
    ) -> BatchResult:
        email_ids = [email.provider_message_id for email in batch]
        prompt = build_extraction_prompt(
            [anonymizer.anonymize_email(email) for email in batch],
            today,
            profiles=profiles,
            few_shot_section=few_shot_section,
        )

        providers = [provider]
        if self.fallback_provider and self.fallback_provider != provider:
            providers.append(self.fallback_provider)

        errors: list[str] = []
        for name in providers:
            try:
                raw = await self.backend_resolver(name).extract(prompt, EXTRACTION_JSON_SCHEMA)
                outcome = ExtractionValidator(email_ids, batch_index=index).validate(raw)
            except ExtractionError as e:
                errors.append(f"{name}: {e}")
                logger.warning(
                    "Batch extraction failed",
                    batch_index=index,
                    provider=name,
                    emails=len(batch),
                    error=str(e),
                )
                continue

            return BatchResult(
                index=index,
                email_ids=email_ids,
                outcome=anonymizer.deanonymize_outcome(outcome),
                provider=name,
            )

        return BatchResult(
            index=index,
            email_ids=email_ids,
            error=f"batch {index}: extraction failed ({'; '.join(errors)})",
        )
