"""
End-to-end inbox processing run.

claim job -> cleanup -> fetch -> filter processed -> store -> anonymize ->
extract -> deanonymize -> dedupe -> persist -> label -> calendar sync -> complete job

Each batch is persisted in one transaction: its events, todos, feedback rows,
analysis and the processed flag on its emails commit or roll back together.

Once the job slot is claimed, run() never raises for per-item problems: they
are collected in RunResult.errors. Anything else fails the job and is
reported with success=False. A dry run claims no slot, skips cleanup and
writes nothing.
"""

from __future__ import annotations

import time
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.db.helpers import DatabaseError, db_transaction
from app.features.inbox_actions.domain.extraction import ExtractedEvent
from app.features.inbox_actions.domain.models import (
    JOB_RANKING,
    JOB_SCANNING,
    JOB_TYPE_PROCESS_EMAILS,
    EmailRecord,
    Job,
    StoredEvent,
)
from app.features.inbox_actions.domain.run import RunOptions, RunResult
from app.features.inbox_actions.errors import AdapterError, InvalidJobTransition, PersistenceConflict
from app.features.inbox_actions.pipeline.extractor import BatchResult, ExtractionEngine
from app.features.inbox_actions.repository import (
    AnalysisRepository,
    ChildProfileRepository,
    EmailRepository,
    EventRepository,
    FeedbackRepository,
    TodoRepository,
)
from app.features.inbox_actions.services.anonymizer import ChildAnonymizer
from app.features.inbox_actions.services.calendar_sync import CalendarSyncService
from app.features.inbox_actions.services.cleanup_service import CleanupService, cleanup_service
from app.features.inbox_actions.services.few_shot import FewShotBuilder
from app.features.inbox_actions.services.job_service import JobService, job_service
from app.infrastructure.observability.logging import get_logger, log_pipeline_run

logger = get_logger(__name__)

EventKey = tuple[str | None, str, datetime]


class _RunContext:
    """Per-run state shared by the persistence steps."""

    def __init__(self, user_id: str, options: RunOptions, result: RunResult):
        self.user_id = user_id
        self.options = options
        self.result = result
        self.check_remote = False
        self.seen_events: set[EventKey] = set()
        self.new_events: list[StoredEvent] = []
        self.analyzed_ids: list[str] = []


class InboxPipeline:
    def __init__(
        self,
        adapter: Any = None,
        jobs: JobService | None = None,
        emails: Any = EmailRepository,
        events: Any = EventRepository,
        todos: Any = TodoRepository,
        profiles: Any = ChildProfileRepository,
        feedback: Any = FeedbackRepository,
        analyses: Any = AnalysisRepository,
        cleanup: CleanupService | None = None,
        extractor: ExtractionEngine | None = None,
        few_shot: FewShotBuilder | None = None,
        calendar_sync: CalendarSyncService | None = None,
        timezone: str | None = None,
        clock=None,
        transaction=None,
        apply_label: bool | None = None,
    ):
        if adapter is None:
            from app.features.inbox_actions.adapters.google_workspace import google_workspace_adapter

            adapter = google_workspace_adapter

        self.adapter = adapter
        self.jobs = jobs or job_service
        self.emails = emails
        self.events = events
        self.todos = todos
        self.profiles = profiles
        self.cleanup = cleanup or cleanup_service
        self.extractor = extractor or ExtractionEngine()
        self.feedback = feedback
        self.analyses = analyses
        self.few_shot = few_shot or FewShotBuilder(repository=feedback)
        self.calendar_sync = calendar_sync or CalendarSyncService(adapter, events=events)
        self.timezone = timezone or settings.USER_TIMEZONE
        self._clock = clock or (lambda: datetime.now(UTC))
        self.transaction = transaction or db_transaction
        self.apply_label = settings.GMAIL_APPLY_PROCESSED_LABEL if apply_label is None else apply_label

    def today(self) -> date:
        return self._clock().astimezone(ZoneInfo(self.timezone)).date()

    async def run(self, user_id: str, options: RunOptions | dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Process the user's inbox.

        Raises:
            RunValidationError: If options are invalid (before any job is claimed)
            JobAlreadyInProgress: If a non-stale run already holds the job slot
        """
        options = RunOptions.parse(options)
        started = time.perf_counter()
        result = RunResult(dry_run=options.dry_run, started_at=self._clock())

        job: Job | None = None
        if not options.dry_run:
            job = await self.jobs.claim(user_id, JOB_TYPE_PROCESS_EMAILS)

        logger.info(
            "Pipeline run started",
            user_id=user_id,
            job_id=job.id if job else None,
            date_range=options.date_range,
            max_results=options.max_results,
            ai_provider=options.ai_provider,
            dry_run=options.dry_run,
        )

        try:
            await self._execute(user_id, options, result, job)
        except Exception as e:
            result.success = False
            result.add_error(f"run failed: {e}")
            logger.error(
                "Pipeline run failed",
                user_id=user_id,
                job_id=job.id if job else None,
                error=str(e),
                error_type=type(e).__name__,
            )

        result.processing_time_ms = int((time.perf_counter() - started) * 1000)
        payload = result.to_dict()

        if job is not None:
            try:
                if result.success:
                    await self.jobs.complete(job, payload)
                else:
                    await self.jobs.fail(job, result.errors[-1], result=payload)
            except InvalidJobTransition as e:
                # A newer claim replaced this job after it went stale
                logger.warning("Job record superseded", user_id=user_id, job_id=job.id, error=str(e))

        log_pipeline_run(user_id, payload, dry_run=options.dry_run)
        return payload

    async def get_status(self, user_id: str, job_type: str = JOB_TYPE_PROCESS_EMAILS) -> dict[str, Any] | None:
        return await self.jobs.get_status(user_id, job_type)

    async def _execute(self, user_id: str, options: RunOptions, result: RunResult, job: Job | None) -> None:
        ctx = _RunContext(user_id, options, result)

        if job is not None:
            try:
                await self.cleanup.sweep(user_id, now=self._clock())
            except DatabaseError as e:
                result.add_error(f"cleanup failed: {e}")
            await self.jobs.advance(job, JOB_SCANNING)

        fetched = await self.adapter.fetch_emails(
            user_id, options.date_range, options.max_results, self.today()
        )
        result.emails_fetched = fetched.total

        for failure in fetched.failures:
            result.add_error(f"fetch failed for {failure.provider_message_id}: {failure.error}")
            if not options.dry_run:
                await self.emails.record_fetch_failure(user_id, failure.provider_message_id, failure.error)

        pending = await self._filter_processed(ctx, fetched.emails)
        if pending and not options.dry_run:
            await self.emails.store_emails(user_id, pending)

        if job is not None:
            await self.jobs.advance(job, JOB_RANKING)

        if not pending:
            logger.info("No new emails to process", user_id=user_id, skipped=result.emails_skipped)
            return

        anonymizer = ChildAnonymizer.from_profiles(await self.profiles.get_profiles(user_id))
        few_shot_section = await self._few_shot_section(user_id, anonymizer)
        ctx.check_remote = await self._remote_check_enabled(ctx)

        batches = await self.extractor.extract(
            pending,
            today=self.today(),
            provider=options.ai_provider,
            anonymizer=anonymizer,
            few_shot_section=few_shot_section,
        )

        emails_by_id = {email.provider_message_id: email for email in pending}
        for batch in batches:
            if not batch.succeeded:
                result.add_error(batch.error)
                continue
            await self._persist_batch(ctx, batch, emails_by_id)

        if ctx.analyzed_ids and self.apply_label:
            await self._label_processed(ctx)

        if ctx.new_events and options.sync_calendar and ctx.check_remote:
            sync = await self.calendar_sync.sync_events(user_id, ctx.new_events)
            result.events_synced = sync.synced
            result.errors.extend(sync.errors)

    async def _filter_processed(self, ctx: _RunContext, emails: list[EmailRecord]) -> list[EmailRecord]:
        if not ctx.options.skip_duplicate_events:
            return list(emails)

        processed = await self.emails.get_processed_message_ids(
            ctx.user_id, [email.provider_message_id for email in emails]
        )
        ctx.result.emails_skipped = sum(1 for e in emails if e.provider_message_id in processed)
        return [e for e in emails if e.provider_message_id not in processed]

    async def _few_shot_section(self, user_id: str, anonymizer: ChildAnonymizer) -> str:
        try:
            section = await self.few_shot.build(user_id, anonymizer)
        except DatabaseError as e:
            logger.warning("Few-shot examples unavailable", user_id=user_id, error=str(e))
            return ""
        return section.prompt_section

    async def _remote_check_enabled(self, ctx: _RunContext) -> bool:
        if not ctx.options.sync_calendar:
            return False
        try:
            return await self.adapter.has_calendar_access(ctx.user_id)
        except AdapterError as e:
            ctx.result.add_error(f"calendar unavailable: {e}")
            return False

    async def _is_duplicate_event(self, ctx: _RunContext, event: ExtractedEvent) -> bool:
        key = (event.source_email_id, event.title, event.start_at)
        if key in ctx.seen_events:
            return True
        ctx.seen_events.add(key)

        if not ctx.options.skip_duplicate_events:
            return False

        # Local store first; the remote calendar search is the expensive check
        if await self.events.event_exists(ctx.user_id, event.source_email_id, event.title, event.start_at):
            return True

        if ctx.check_remote:
            try:
                return await self.adapter.event_exists_remote(
                    ctx.user_id, event.title, event.start_at, self.timezone
                )
            except AdapterError as e:
                logger.warning(
                    "Remote duplicate check failed", user_id=ctx.user_id, title=event.title, error=str(e)
                )
        return False

    async def _persist_batch(
        self, ctx: _RunContext, batch: BatchResult, emails_by_id: dict[str, EmailRecord]
    ) -> None:
        outcome = batch.outcome
        result = ctx.result

        result.errors.extend(outcome.rejected)

        fresh_events: list[ExtractedEvent] = []
        try:
            for event in outcome.events:
                if not await self._is_duplicate_event(ctx, event):
                    fresh_events.append(event)

            if ctx.options.dry_run:
                result.events_created += len(fresh_events)
                result.todos_created += len(outcome.todos)
                result.emails_processed += len(batch.email_ids)
                return

            # Everything a batch writes commits together with processed=true
            async with self.transaction() as conn:
                created_events, todo_ids = await self._write_batch(ctx, batch, fresh_events, emails_by_id, conn)
        except DatabaseError as e:
            for event in fresh_events:
                ctx.seen_events.discard((event.source_email_id, event.title, event.start_at))
            result.add_error(f"batch {batch.index}: failed to store results ({e})")
            logger.error(
                "Batch persistence failed", user_id=ctx.user_id, batch_index=batch.index, error=str(e)
            )
            return

        ctx.new_events.extend(created_events)
        ctx.analyzed_ids.extend(batch.email_ids)
        result.events_created += len(created_events)
        result.todos_created += len(todo_ids)
        result.emails_processed += len(batch.email_ids)

    async def _write_batch(
        self,
        ctx: _RunContext,
        batch: BatchResult,
        events: list[ExtractedEvent],
        emails_by_id: dict[str, EmailRecord],
        conn,
    ) -> tuple[list[StoredEvent], list[str]]:
        outcome = batch.outcome

        created_events: list[StoredEvent] = []
        for event in events:
            try:
                created_events.append(await self.events.insert_event(ctx.user_id, event, connection=conn))
            except PersistenceConflict:
                continue

        todo_ids = await self.todos.insert_todos(ctx.user_id, outcome.todos, connection=conn)

        def sender(email_id: str | None) -> str | None:
            email = emails_by_id.get(email_id) if email_id else None
            return email.from_email if email else None

        feedback_items = [
            ("event", e.title, e.source_email_id, sender(e.source_email_id)) for e in created_events
        ] + [("todo", t.description, t.source_email_id, sender(t.source_email_id)) for t in outcome.todos]
        if feedback_items:
            await self.feedback.record_items(ctx.user_id, feedback_items, connection=conn)

        await self.analyses.store_analysis(
            ctx.user_id, batch.email_ids, batch.provider, outcome, connection=conn
        )
        await self.emails.mark_analyzed(ctx.user_id, batch.email_ids, connection=conn)
        return created_events, todo_ids

    async def _label_processed(self, ctx: _RunContext) -> None:
        """Best effort: a labeling failure never undoes the stored results."""
        try:
            labeled = await self.adapter.label_processed(ctx.user_id, ctx.analyzed_ids)
            if labeled:
                await self.emails.mark_labeled(ctx.user_id, labeled)
        except (AdapterError, DatabaseError) as e:
            ctx.result.add_error(f"labeling failed: {e}")
            logger.warning("Processed label not applied", user_id=ctx.user_id, error=str(e))


inbox_pipeline: InboxPipeline | None = None


def get_inbox_pipeline() -> InboxPipeline:
    global inbox_pipeline
    if inbox_pipeline is None:
        inbox_pipeline = InboxPipeline()
    return inbox_pipeline
