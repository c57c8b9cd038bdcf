"""
Pytest configuration and fixtures for Circadian tests.

Provides:
- Async test database with SQLite
- Test client for API testing (admin key preset)
- Scripted text generator and search provider fakes
- Factory fixtures for users, messages, jobs and output records
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from circadian.config import PipelineConfig, ScheduleConfig, Settings, get_settings
from circadian.core.clock import ReferenceClock, utc_now
from circadian.core.database import get_db
from circadian.dependencies import get_job_executor, get_pipeline_engine
from circadian.main import app
from circadian.models import Base
from circadian.models.job import Job, JobStatus
from circadian.models.notification import Notification, NotificationStatus
from circadian.models.output import OutputRecord
from circadian.models.user import Message, User
from circadian.pipeline.engine import PipelineEngine
from circadian.schemas.pipeline import SearchResult
from circadian.services.executor import JobExecutor

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_KEY = "test-admin-key"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    openai_api_key: str = "test-key"
    admin_api_key: str = ADMIN_KEY
    scheduler_enabled: bool = False
    inter_job_delay_seconds: float = 0.0
    pipeline_timeout_seconds: float = 5.0
    push_webhook_url: str = ""
    search_api_url: str = ""


LONG_BODY = (
    "Today you kept circling back to the same worry about the launch, and each time "
    "you talked yourself down a little faster. That is worth noticing."
)

FINAL_OUTPUT = f"TITLE: Circling back, faster each time\nBODY:\n{LONG_BODY}"


class ScriptedGenerator:
    """TextGenerator fake returning queued responses in order.

    A response may be a string, an exception instance (raised), or a callable
    taking the prompt.
    """

    def __init__(self, responses: list[Any] | None = None, default: str = FINAL_OUTPUT) -> None:
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            result = response(prompt)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return response


class FakeSearch:
    """SearchProvider fake recording queries."""

    def __init__(self, results: list[SearchResult] | None = None) -> None:
        self.results = results or []
        self.queries: list[str] = []

    async def search(self, query: str, *, limit: int = 5) -> list[SearchResult]:
        self.queries.append(query)
        return self.results[:limit]


@pytest.fixture
def test_settings() -> TestSettings:
    return TestSettings()


@pytest.fixture
def clock() -> ReferenceClock:
    return ReferenceClock("America/Chicago")


@pytest.fixture
def schedule_config() -> ScheduleConfig:
    """Default session table, independent of any config.yml."""
    return ScheduleConfig({})


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig({})


@pytest.fixture
def make_engine(clock, pipeline_config) -> Callable[..., PipelineEngine]:
    """Factory for engines over a scripted generator."""

    def _make(
        generator: ScriptedGenerator | None = None,
        search: FakeSearch | None = None,
    ) -> PipelineEngine:
        return PipelineEngine(
            generator=generator or ScriptedGenerator(),
            search=search or FakeSearch(),
            clock=clock,
            config=pipeline_config,
            notification_ttl_hours=24,
        )

    return _make


@pytest.fixture
def make_executor(make_engine, test_settings) -> Callable[..., JobExecutor]:
    """Factory for executors with no inter-job delay."""

    def _make(
        generator: ScriptedGenerator | None = None,
        engine: PipelineEngine | None = None,
        **overrides: Any,
    ) -> JobExecutor:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return JobExecutor(engine=engine or make_engine(generator), settings=settings)

    return _make


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def api_generator() -> ScriptedGenerator:
    """Generator used by the API client's engine."""
    return ScriptedGenerator()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, make_engine, test_settings, api_generator
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database, settings and engine overrides."""
    from circadian.core.rate_limit import limiter

    engine = make_engine(api_generator)
    executor = JobExecutor(engine=engine, settings=test_settings)

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return test_settings

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_job_executor] = lambda: executor
    app.dependency_overrides[get_pipeline_engine] = lambda: engine

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"X-Admin-Key": ADMIN_KEY}
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating test users."""

    async def _create_user(
        name: str = "Sam",
        agents_enabled: bool = True,
        is_active: bool = True,
        last_active_at: datetime | None = None,
        active_days_ago: float | None = 0.5,
    ) -> User:
        if last_active_at is None and active_days_ago is not None:
            last_active_at = utc_now() - timedelta(days=active_days_ago)

        user = User(
            name=name,
            email=f"test-{uuid.uuid4().hex[:8]}@example.com",
            is_active=is_active,
            autonomous_agents_enabled=agents_enabled,
            last_active_at=last_active_at,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _create_user


@pytest_asyncio.fixture
async def message_factory(db_session: AsyncSession):
    """Factory for conversation messages."""

    async def _create_message(
        user: User,
        content: str = "I keep worrying about the launch next week.",
        role: str = "user",
        created_at: datetime | None = None,
    ) -> Message:
        message = Message(
            user_id=user.id,
            role=role,
            content=content,
            created_at=created_at or utc_now() - timedelta(minutes=30),
        )
        db_session.add(message)
        await db_session.flush()
        return message

    return _create_message


@pytest_asyncio.fixture
async def job_factory(db_session: AsyncSession, user_factory):
    """Factory for creating jobs directly, bypassing the scheduler."""

    async def _create_job(
        user: User | None = None,
        session_type: str = "evening_consolidation",
        scheduled_for: datetime | None = None,
        status: JobStatus = JobStatus.PENDING,
        local_day: str | None = None,
        metadata: dict | None = None,
    ) -> Job:
        if user is None:
            user = await user_factory()
        if scheduled_for is None:
            scheduled_for = utc_now() - timedelta(minutes=10)

        job = Job(
            user_id=user.id,
            session_type=session_type,
            local_day=local_day or scheduled_for.date().isoformat(),
            status=status,
            scheduled_for=scheduled_for,
            session_metadata=metadata,
        )
        db_session.add(job)
        await db_session.flush()
        return job

    return _create_job


@pytest_asyncio.fixture
async def output_factory(db_session: AsyncSession, user_factory):
    """Factory for output records."""

    async def _create_output(
        user: User | None = None,
        title: str = "A thought about the launch",
        body: str = LONG_BODY,
        session_type: str = "evening_consolidation",
        produced_at: datetime | None = None,
        metadata: dict | None = None,
    ) -> OutputRecord:
        if user is None:
            user = await user_factory()

        record = OutputRecord(
            user_id=user.id,
            session_type=session_type,
            category="reflection",
            title=title,
            body=body,
            metadata_json=metadata,
            produced_at=produced_at or utc_now() - timedelta(hours=1),
        )
        db_session.add(record)
        await db_session.flush()
        return record

    return _create_output


@pytest_asyncio.fixture
async def notification_factory(db_session: AsyncSession, output_factory):
    """Factory for notifications (creates the output record too)."""

    async def _create_notification(
        user: User,
        priority: float = 0.5,
        status: NotificationStatus = NotificationStatus.PENDING,
        created_at: datetime | None = None,
        expires_at: datetime | None = None,
        sent_at: datetime | None = None,
        title: str = "A thought about the launch",
    ) -> Notification:
        output = await output_factory(user=user, title=title)
        now = utc_now()
        notification = Notification(
            user_id=user.id,
            output_id=output.id,
            status=status,
            priority=priority,
            created_at=created_at or now - timedelta(minutes=5),
            expires_at=expires_at or now + timedelta(hours=24),
            sent_at=sent_at,
        )
        db_session.add(notification)
        await db_session.flush()
        return notification

    return _create_notification


@pytest.fixture
def scripted() -> Callable[..., ScriptedGenerator]:
    """Factory for scripted generators: ``scripted("reply 1", RuntimeError(), ...)``."""

    def _make(*responses: Any, default: str = FINAL_OUTPUT) -> ScriptedGenerator:
        return ScriptedGenerator(list(responses), default=default)

    return _make


@pytest.fixture
def fake_search() -> Callable[..., FakeSearch]:
    """Factory for search fakes returning fixed results."""

    def _make(*results: SearchResult) -> FakeSearch:
        return FakeSearch(list(results))

    return _make
