"""Shared test fixtures.

Tests run against an in-memory SQLite database (one shared connection) and
a mocked Redis client, so no external services are needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from learnsphere.config import Settings
from learnsphere.db.base import Base
from learnsphere.db.models import Course, Lesson, Question, Quiz, User
from learnsphere.dependencies import get_db, get_redis_dep
from learnsphere.gamification.seed import seed_badge_tiers
from learnsphere.main import create_app

_BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@dataclass
class SeededCourse:
    """A course with three video lessons and one quiz (two questions)."""

    id: str
    lesson_ids: list[str]
    quiz_lesson_id: str
    quiz_id: str
    question_ids: list[str]
    correct_options: list[int] = field(default_factory=lambda: [0, 1])

    def answers(self, correct: int | None = None) -> list[dict]:
        """Answer sheet with the first ``correct`` answers right (all by default)."""
        if correct is None:
            correct = len(self.question_ids)
        sheet = []
        for i, (qid, right) in enumerate(zip(self.question_ids, self.correct_options)):
            selected = right if i < correct else 1 - right
            sheet.append({"question_id": qid, "selected_option": selected})
        return sheet


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Session with the badge catalog seeded."""
    async with session_factory() as session:
        await seed_badge_tiers(session)
        yield session


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stand-in for redis.asyncio.Redis; records publishes and XADDs."""
    redis = AsyncMock()
    redis.xadd.return_value = "1-0"
    redis.publish.return_value = 1
    redis.ping.return_value = True
    return redis


@pytest_asyncio.fixture
async def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = 0

    async def _make(
        display_name: str | None = None,
        email: str | None = None,
        role: str = "learner",
    ) -> User:
        nonlocal counter
        counter += 1
        name = display_name or f"Learner {counter}"
        user = User(
            email=email or f"learner{counter}@example.com",
            display_name=name,
            role=role,
            total_points=0,
            created_at=_BASE_TIME + timedelta(minutes=counter),
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def learner(make_user) -> User:
    return await make_user("Ada")


@pytest_asyncio.fixture
async def make_course(db: AsyncSession) -> Callable[..., Awaitable[SeededCourse]]:
    async def _make(title: str = "Intro to Statistics", reward_policy: dict | None = None) -> SeededCourse:
        course = Course(title=title, published=True, created_at=_BASE_TIME)
        db.add(course)
        await db.flush()

        lessons = [
            Lesson(course_id=course.id, title=f"Lesson {i}", lesson_type="video", order=i)
            for i in (1, 2, 3)
        ]
        quiz_lesson = Lesson(course_id=course.id, title="Checkpoint", lesson_type="quiz", order=4)
        db.add_all([*lessons, quiz_lesson])
        await db.flush()

        quiz = Quiz(
            course_id=course.id,
            lesson_id=quiz_lesson.id,
            title="Checkpoint quiz",
            reward_policy=reward_policy,
        )
        db.add(quiz)
        await db.flush()

        questions = [
            Question(
                quiz_id=quiz.id,
                text="Which is a measure of central tendency?",
                options=[{"text": "Median", "is_correct": True}, {"text": "Variance", "is_correct": False}],
                order=1,
            ),
            Question(
                quiz_id=quiz.id,
                text="Standard deviation is the square root of...",
                options=[{"text": "The mean", "is_correct": False}, {"text": "The variance", "is_correct": True}],
                order=2,
            ),
        ]
        db.add_all(questions)
        await db.commit()

        return SeededCourse(
            id=course.id,
            lesson_ids=[lesson.id for lesson in lessons],
            quiz_lesson_id=quiz_lesson.id,
            quiz_id=quiz.id,
            question_ids=[q.id for q in questions],
        )

    return _make


@pytest_asyncio.fixture
async def course(make_course) -> SeededCourse:
    return await make_course()


@pytest_asyncio.fixture
async def client(
    db: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    redis_mock: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database and mock Redis."""
    app = create_app()

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _redis() -> AsyncGenerator[object, None]:
        yield redis_mock

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis_dep] = _redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
