"""Lesson progress writes, enrollment state and course completion.

Every transition is a conditional UPDATE guarded on the previous state, so a
replayed or concurrent event finds rowcount 0 and does nothing. Only the
writer that actually moves an enrollment to 'completed' awards the bonus.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.config import Settings, get_settings
from learnsphere.database import dialect_insert
from learnsphere.db.models import Course, Enrollment, Lesson, LessonProgress, Quiz, QuizAttempt, User
from learnsphere.errors import NotFoundError, PreconditionError
from learnsphere.gamification.points_service import award_points
from learnsphere.progress.rules import EnrollmentStatus, ProgressSnapshot, compute_progress, next_status

logger = logging.getLogger(__name__)

COURSE_COMPLETED_CHANNEL = "pubsub:course_completed"
QUIZ_LESSON_TYPE = "quiz"


@dataclass(frozen=True)
class LessonProgressChange:
    progress_id: str
    user_id: str
    course_id: str
    lesson_id: str
    was_completed: bool
    is_completed: bool

    @property
    def newly_completed(self) -> bool:
        return self.is_completed and not self.was_completed


@dataclass(frozen=True)
class ProgressResult:
    enrollment_id: str
    previous_status: EnrollmentStatus
    status: EnrollmentStatus
    snapshot: ProgressSnapshot
    bonus_awarded: bool = False

    @property
    def became_completed(self) -> bool:
        return (
            self.status is EnrollmentStatus.COMPLETED
            and self.previous_status is not EnrollmentStatus.COMPLETED
        )


async def mark_lesson_progress(
    db: AsyncSession,
    user_id: str,
    course_id: str,
    lesson_id: str,
    completed: bool,
) -> LessonProgressChange:
    """Record a view (and optionally completion) of a lesson, then commit.

    The completed flag flips false -> true at most once and is never
    reverted; ``completed=False`` on an already completed lesson is a view.
    """
    lesson = await db.get(Lesson, lesson_id)
    if lesson is None or lesson.course_id != course_id:
        msg = f"Lesson {lesson_id} not found in course {course_id}"
        raise NotFoundError(msg)
    if lesson.lesson_type == QUIZ_LESSON_TYPE:
        msg = f"Lesson {lesson_id} is a quiz; submit a quiz attempt instead"
        raise PreconditionError(msg)

    now = datetime.now(timezone.utc)
    insert = dialect_insert(db)
    await db.execute(
        insert(LessonProgress)
        .values(
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            completed=False,
            viewed_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "lesson_id"])
    )

    where = (LessonProgress.user_id == user_id, LessonProgress.lesson_id == lesson_id)
    flipped = False
    if completed:
        result = await db.execute(
            update(LessonProgress)
            .where(*where, LessonProgress.completed.is_(False))
            .values(completed=True, completed_at=now, viewed_at=now)
            .execution_options(synchronize_session=False)
        )
        flipped = result.rowcount == 1

    row = (
        await db.execute(select(LessonProgress.id, LessonProgress.completed).where(*where))
    ).one()
    await db.commit()

    change = LessonProgressChange(
        progress_id=row.id,
        user_id=user_id,
        course_id=course_id,
        lesson_id=lesson_id,
        was_completed=row.completed and not flipped,
        is_completed=row.completed,
    )
    if change.newly_completed:
        logger.info("Lesson %s completed by %s", lesson_id, user_id)
    return change


async def _load_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_required_lessons(db: AsyncSession, course_id: str) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(Lesson)
        .where(Lesson.course_id == course_id, Lesson.lesson_type != QUIZ_LESSON_TYPE)
    ) or 0


async def _progress_counts(db: AsyncSession, user_id: str, course_id: str) -> tuple[int, int, int, int, bool]:
    lesson_total = await count_required_lessons(db, course_id)

    # Joined to lessons so rows for deleted lessons never count.
    lessons_completed = await db.scalar(
        select(func.count())
        .select_from(LessonProgress)
        .join(Lesson, Lesson.id == LessonProgress.lesson_id)
        .where(
            LessonProgress.user_id == user_id,
            Lesson.course_id == course_id,
            Lesson.lesson_type != QUIZ_LESSON_TYPE,
            LessonProgress.completed.is_(True),
        )
    ) or 0

    quiz_total = await db.scalar(
        select(func.count()).select_from(Quiz).where(Quiz.course_id == course_id)
    ) or 0

    quizzes_passed = await db.scalar(
        select(func.count(distinct(QuizAttempt.quiz_id)))
        .select_from(QuizAttempt)
        .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
        .where(
            QuizAttempt.user_id == user_id,
            Quiz.course_id == course_id,
            QuizAttempt.passed.is_(True),
        )
    ) or 0

    touched_lessons = await db.scalar(
        select(func.count())
        .select_from(LessonProgress)
        .where(LessonProgress.user_id == user_id, LessonProgress.course_id == course_id)
    ) or 0
    attempts = await db.scalar(
        select(func.count())
        .select_from(QuizAttempt)
        .where(QuizAttempt.user_id == user_id, QuizAttempt.course_id == course_id)
    ) or 0

    return lesson_total, lessons_completed, quiz_total, quizzes_passed, (touched_lessons + attempts) > 0


async def recompute_enrollment(
    db: AsyncSession,
    redis: object,
    user_id: str,
    course_id: str,
    settings: Settings | None = None,
) -> ProgressResult | None:
    """Recount a learner's progress and advance the enrollment status.

    The caller owns the transaction. Returns None when the learner is not
    enrolled in the course.
    """
    settings = settings or get_settings()

    enrollment = await _load_enrollment(db, user_id, course_id)
    if enrollment is None:
        logger.warning("No enrollment for user %s in course %s; progress not tracked", user_id, course_id)
        return None

    lesson_total, lessons_done, quiz_total, quizzes_passed, interacted = await _progress_counts(
        db, user_id, course_id
    )
    snapshot = compute_progress(
        lesson_total, lessons_done, quiz_total, quizzes_passed, settings.quiz_progress_policy
    )
    current = EnrollmentStatus(enrollment.status)
    target = next_status(current, snapshot, interacted)
    now = datetime.now(timezone.utc)

    # Counts are refreshed on every pass; a completed enrollment keeps 100%.
    await db.execute(
        update(Enrollment)
        .where(Enrollment.id == enrollment.id, Enrollment.status != EnrollmentStatus.COMPLETED.value)
        .values(
            progress_percentage=snapshot.percentage,
            completed_lessons=lessons_done,
            total_lessons=lesson_total,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )

    if current is EnrollmentStatus.NOT_STARTED and target is not EnrollmentStatus.NOT_STARTED:
        await db.execute(
            update(Enrollment)
            .where(Enrollment.id == enrollment.id, Enrollment.status == EnrollmentStatus.NOT_STARTED.value)
            .values(status=EnrollmentStatus.ACTIVE.value, started_at=now)
            .execution_options(synchronize_session=False)
        )

    previous = current
    status = target
    bonus_awarded = False
    if target is EnrollmentStatus.COMPLETED and current is not EnrollmentStatus.COMPLETED:
        if await complete_enrollment(db, enrollment.id, now):
            bonus_awarded = await award_course_bonus(db, redis, user_id, course_id, settings)
            await _emit_course_completed(redis, user_id, course_id)
            logger.info("Course %s completed by %s", course_id, user_id)
        else:
            # Another writer completed it first.
            previous = EnrollmentStatus.COMPLETED

    await db.flush()
    return ProgressResult(
        enrollment_id=enrollment.id,
        previous_status=previous,
        status=status,
        snapshot=snapshot,
        bonus_awarded=bonus_awarded,
    )


async def complete_enrollment(db: AsyncSession, enrollment_id: str, now: datetime | None = None) -> bool:
    """Move an enrollment to 'completed'. True only for the writer that did it."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(Enrollment)
        .where(Enrollment.id == enrollment_id, Enrollment.status != EnrollmentStatus.COMPLETED.value)
        .values(
            status=EnrollmentStatus.COMPLETED.value,
            progress_percentage=100,
            completed_at=now,
            started_at=func.coalesce(Enrollment.started_at, now),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def award_course_bonus(
    db: AsyncSession,
    redis: object,
    user_id: str,
    course_id: str,
    settings: Settings | None = None,
) -> bool:
    """Course completion bonus; the ledger key makes it once per (user, course)."""
    settings = settings or get_settings()
    return await award_points(
        db,
        redis,
        user_id,
        settings.course_completion_bonus,
        f"course:{course_id}:bonus",
        source="course",
        description=f"Completed course {course_id}",
    )


async def _emit_course_completed(redis: object, user_id: str, course_id: str) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            COURSE_COMPLETED_CHANNEL,
            json.dumps({"user_id": user_id, "course_id": course_id}),
        )
    except Exception:
        logger.warning("Failed to publish course_completed broadcast", exc_info=True)


async def enroll(
    db: AsyncSession,
    user_id: str,
    course_id: str,
    status: EnrollmentStatus = EnrollmentStatus.NOT_STARTED,
) -> tuple[Enrollment, bool]:
    """Enroll a user, then commit. Returns (enrollment, created).

    Enrolling twice returns the existing row unchanged.
    """
    if await db.get(Course, course_id) is None:
        msg = f"Course {course_id} not found"
        raise NotFoundError(msg)
    if await db.get(User, user_id) is None:
        msg = f"User {user_id} not found"
        raise NotFoundError(msg)

    existing = await _load_enrollment(db, user_id, course_id)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    enrollment = Enrollment(
        user_id=user_id,
        course_id=course_id,
        status=status.value,
        enrolled_at=now,
        started_at=now if status is EnrollmentStatus.ACTIVE else None,
        total_lessons=await count_required_lessons(db, course_id),
        updated_at=now,
    )
    db.add(enrollment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _load_enrollment(db, user_id, course_id)
        if existing is None:
            raise
        return existing, False

    logger.info("Enrolled %s in %s (%s)", user_id, course_id, status.value)
    return enrollment, True


async def get_course_progress(db: AsyncSession, user_id: str, course_id: str) -> dict:
    """Enrollment status plus per-lesson completion for one learner."""
    enrollment = await _load_enrollment(db, user_id, course_id)
    if enrollment is None:
        msg = f"User {user_id} is not enrolled in course {course_id}"
        raise NotFoundError(msg)

    lessons = (
        await db.execute(
            select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order, Lesson.id)
        )
    ).scalars().all()
    done = set(
        (
            await db.execute(
                select(LessonProgress.lesson_id).where(
                    LessonProgress.user_id == user_id,
                    LessonProgress.course_id == course_id,
                    LessonProgress.completed.is_(True),
                )
            )
        ).scalars().all()
    )

    return {
        "enrollment": enrollment,
        "lessons": [
            {
                "lesson_id": lesson.id,
                "title": lesson.title,
                "lesson_type": lesson.lesson_type,
                "completed": lesson.id in done,
            }
            for lesson in lessons
        ],
    }
