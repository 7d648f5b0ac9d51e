import pytest

from app.features.inbox_actions.domain.models import ChildProfile
from app.features.inbox_actions.pipeline.extractor import ExtractionEngine
from app.features.inbox_actions.pipeline.orchestrator import InboxPipeline
from app.features.inbox_actions.services.cleanup_service import CleanupService
from app.features.inbox_actions.services.job_service import JobService
from app.services.ai.base import AIBackend
from tests.fakes import (
    FakeAnalysisRepository,
    FakeClock,
    FakeDatabase,
    FakeEmailRepository,
    FakeEventRepository,
    FakeFeedbackRepository,
    FakeInboxAdapter,
    FakeJobRepository,
    FakeProfileRepository,
    FakeTodoRepository,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_repository():
    return FakeJobRepository()


@pytest.fixture
def job_service_fake(job_repository, clock):
    return JobService(repository=job_repository, clock=clock)


@pytest.fixture
def email_repository():
    return FakeEmailRepository()


@pytest.fixture
def event_repository():
    return FakeEventRepository()


@pytest.fixture
def todo_repository():
    return FakeTodoRepository()


@pytest.fixture
def profile_repository():
    return FakeProfileRepository([ChildProfile(real_name="Emma", year_group="Year 3", school_name="Oak Primary")])


@pytest.fixture
def feedback_repository():
    return FakeFeedbackRepository()


@pytest.fixture
def analysis_repository():
    return FakeAnalysisRepository()


@pytest.fixture
def database(email_repository, event_repository, todo_repository, feedback_repository, analysis_repository):
    return FakeDatabase(email_repository, event_repository, todo_repository, feedback_repository, analysis_repository)


@pytest.fixture
def inbox_adapter():
    return FakeInboxAdapter()


@pytest.fixture
def make_pipeline(
    inbox_adapter,
    job_service_fake,
    email_repository,
    event_repository,
    todo_repository,
    profile_repository,
    feedback_repository,
    analysis_repository,
    database,
    clock,
):
    def _make(backends: dict[str, AIBackend], fallback_provider: str = "", batch_size: int = 10):
        engine = ExtractionEngine(
            backend_resolver=lambda name: backends[name],
            batch_size=batch_size,
            max_concurrency=2,
            fallback_provider=fallback_provider,
        )
        return InboxPipeline(
            adapter=inbox_adapter,
            jobs=job_service_fake,
            emails=email_repository,
            events=event_repository,
            todos=todo_repository,
            profiles=profile_repository,
            feedback=feedback_repository,
            analyses=analysis_repository,
            cleanup=CleanupService(events=event_repository, todos=todo_repository, timezone="Europe/London"),
            extractor=engine,
            timezone="Europe/London",
            clock=clock,
            transaction=database.transaction,
            apply_label=True,
        )

    return _make
