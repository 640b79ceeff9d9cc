"""ORM models for the progression engine.

Content tables (courses, lessons, quizzes, questions) are owned by the
content service and are read-only here. Users are owned by the identity
service; this engine only writes ``total_points`` and ``current_badge_id``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from learnsphere.db.base import Base, BigIntPK


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users & badge catalog
# ---------------------------------------------------------------------------


class BadgeTier(Base):
    """Badge catalog: ascending, unique point thresholds. Seeded on startup."""

    __tablename__ = "badge_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    points_required: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="learner", server_default="learner")
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_badge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badge_tiers.id"), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PointsLedger(Base):
    """Append-only points log. UNIQUE(user_id, reason_key) makes awards idempotent."""

    __tablename__ = "points_ledger"
    __table_args__ = (
        UniqueConstraint("user_id", "reason_key", name="uq_points_ledger_user_reason"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason_key: Mapped[str] = mapped_column(String(256), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Content (read-only to the engine)
# ---------------------------------------------------------------------------


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    instructor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    lessons: Mapped[list[Lesson]] = relationship("Lesson", back_populates="course", order_by="Lesson.order")
    quizzes: Mapped[list[Quiz]] = relationship("Quiz", back_populates="course")


class Lesson(Base):
    """Lesson. ``lesson_type`` 'quiz' marks a quiz slot, not a required lesson."""

    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    lesson_type: Mapped[str] = mapped_column(String(16), nullable=False, default="video", server_default="video")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    course: Mapped[Course] = relationship("Course", back_populates="lessons")


class Quiz(Base):
    """Quiz. ``reward_policy`` holds a tagged RewardPolicy document."""

    __tablename__ = "quizzes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lesson_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    pass_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reward_policy: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    course: Mapped[Course] = relationship("Course", back_populates="quizzes")
    questions: Mapped[list[Question]] = relationship(
        "Question", back_populates="quiz", order_by="Question.order", lazy="selectin"
    )


class Question(Base):
    """Quiz question. ``options`` is a list of {"text", "is_correct"}."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    quiz_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    quiz: Mapped[Quiz] = relationship("Quiz", back_populates="questions")


# ---------------------------------------------------------------------------
# Learner state
# ---------------------------------------------------------------------------


class Enrollment(Base):
    """One row per (user, course). Status only moves forward; 'completed' is terminal."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="not_started", server_default="not_started")
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LessonProgress(Base):
    """Lesson progress, UNIQUE(user_id, lesson_id); ``completed`` flips false→true once.

    ``lesson_id`` carries no FK: lessons are deleted by the content service
    and the orphans are swept by the maintenance job.
    """

    __tablename__ = "lesson_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class QuizAttemptCounter(Base):
    """Per (user, quiz) monotonic counter that serializes attempt numbering."""

    __tablename__ = "quiz_attempt_counters"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quiz_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class QuizAttempt(Base):
    """Immutable scored attempt, UNIQUE(user_id, quiz_id, attempt_number)."""

    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "quiz_id", "attempt_number", name="uq_quiz_attempt_number"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quiz_id: Mapped[str] = mapped_column(String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    decay_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    answers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Derived aggregates & certificates
# ---------------------------------------------------------------------------


class CourseStats(Base):
    """Course aggregates: derived, recomputed from source tables, never hand-edited."""

    __tablename__ = "course_stats"

    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True
    )
    views_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enrollment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completion_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    average_quiz_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_quiz_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lesson_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Certificate(Base):
    """Course completion certificate, UNIQUE(user_id, course_id)."""

    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_certificate_user_course"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    certificate_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    course_title: Mapped[str] = mapped_column(String(200), nullable=False)
    user_name: Mapped[str] = mapped_column(String(320), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
