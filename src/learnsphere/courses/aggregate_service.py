"""Course aggregates: incremental updates plus authoritative reconciliation.

The incremental path runs per event and is best effort. The batch path
recomputes everything from the source tables and repairs whatever the
incremental path missed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.database import dialect_insert
from learnsphere.db.models import Course, CourseStats, Enrollment, Lesson, QuizAttempt
from learnsphere.errors import NotFoundError
from learnsphere.progress.rules import EnrollmentStatus
from learnsphere.rounding import percent, round_half_up

logger = logging.getLogger(__name__)


async def _ensure_stats_row(db: AsyncSession, course_id: str) -> None:
    insert = dialect_insert(db)
    await db.execute(
        insert(CourseStats)
        .values(course_id=course_id)
        .on_conflict_do_nothing(index_elements=["course_id"])
    )


async def record_enrollment_created(db: AsyncSession, course_id: str) -> None:
    """One more view and one more enrollment, as SQL increments."""
    await _ensure_stats_row(db, course_id)
    await db.execute(
        update(CourseStats)
        .where(CourseStats.course_id == course_id)
        .values(
            views_count=CourseStats.views_count + 1,
            enrollment_count=CourseStats.enrollment_count + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


async def _enrollment_counts(db: AsyncSession, course_id: str) -> tuple[int, int]:
    result = await db.execute(
        select(Enrollment.status, func.count())
        .where(Enrollment.course_id == course_id)
        .group_by(Enrollment.status)
    )
    by_status = {status: count for status, count in result.all()}
    return sum(by_status.values()), by_status.get(EnrollmentStatus.COMPLETED.value, 0)


async def recompute_completion_rate(db: AsyncSession, course_id: str) -> int:
    """Full scan of the course's enrollments. Returns the new rate."""
    total, completed = await _enrollment_counts(db, course_id)
    rate = percent(completed, total)

    await _ensure_stats_row(db, course_id)
    await db.execute(
        update(CourseStats)
        .where(CourseStats.course_id == course_id)
        .values(
            completed_count=completed,
            completion_rate=rate,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return rate


async def _quiz_average(db: AsyncSession, course_id: str) -> tuple[int, int]:
    row = (
        await db.execute(
            select(func.avg(QuizAttempt.percentage), func.count()).where(
                QuizAttempt.course_id == course_id
            )
        )
    ).one()
    mean, attempts = row
    return (round_half_up(float(mean)) if attempts else 0), attempts


async def recompute_quiz_average(db: AsyncSession, course_id: str) -> int:
    """Mean attempt percentage over the whole course. Returns the new average."""
    average, attempts = await _quiz_average(db, course_id)

    await _ensure_stats_row(db, course_id)
    await db.execute(
        update(CourseStats)
        .where(CourseStats.course_id == course_id)
        .values(
            average_quiz_score=average,
            total_quiz_attempts=attempts,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return average


async def reconcile_course(db: AsyncSession, course_id: str) -> None:
    """Recompute every derived count for one course from the source tables."""
    lesson_count = await db.scalar(
        select(func.count()).select_from(Lesson).where(Lesson.course_id == course_id)
    ) or 0
    total, completed = await _enrollment_counts(db, course_id)
    average, attempts = await _quiz_average(db, course_id)
    now = datetime.now(timezone.utc)

    await _ensure_stats_row(db, course_id)
    await db.execute(
        update(CourseStats)
        .where(CourseStats.course_id == course_id)
        .values(
            lesson_count=lesson_count,
            enrollment_count=total,
            completed_count=completed,
            completion_rate=percent(completed, total),
            average_quiz_score=average,
            total_quiz_attempts=attempts,
            updated_at=now,
            reconciled_at=now,
        )
        .execution_options(synchronize_session=False)
    )


async def reconcile_all_courses(db: AsyncSession) -> int:
    """Reconcile every course, committing each one. Returns courses reconciled.

    A failure on one course is logged and rolled back; the rest still run.
    """
    course_ids = (await db.execute(select(Course.id).order_by(Course.id))).scalars().all()

    reconciled = 0
    for course_id in course_ids:
        try:
            await reconcile_course(db, course_id)
            await db.commit()
            reconciled += 1
        except Exception:
            await db.rollback()
            logger.exception("Failed to reconcile stats for course %s", course_id)

    logger.info("Reconciled stats for %d/%d courses", reconciled, len(course_ids))
    return reconciled


async def get_course_stats(db: AsyncSession, course_id: str) -> CourseStats:
    """Stored aggregates; zeros when nothing has been recorded yet."""
    if await db.get(Course, course_id) is None:
        msg = f"Course {course_id} not found"
        raise NotFoundError(msg)

    stats = await db.get(CourseStats, course_id, populate_existing=True)
    if stats is None:
        return CourseStats(
            course_id=course_id,
            views_count=0,
            enrollment_count=0,
            completed_count=0,
            completion_rate=0,
            average_quiz_score=0,
            total_quiz_attempts=0,
            lesson_count=0,
        )
    return stats


async def get_course_report(db: AsyncSession, course_id: str) -> dict:
    """Enrollment overview: yet to start / in progress / completed."""
    if await db.get(Course, course_id) is None:
        msg = f"Course {course_id} not found"
        raise NotFoundError(msg)

    result = await db.execute(
        select(Enrollment.status, func.count())
        .where(Enrollment.course_id == course_id)
        .group_by(Enrollment.status)
    )
    by_status = {status: count for status, count in result.all()}
    return {
        "course_id": course_id,
        "total": sum(by_status.values()),
        "yet_to_start": by_status.get(EnrollmentStatus.NOT_STARTED.value, 0),
        "in_progress": by_status.get(EnrollmentStatus.ACTIVE.value, 0),
        "completed": by_status.get(EnrollmentStatus.COMPLETED.value, 0),
    }
