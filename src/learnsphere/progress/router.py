"""Enrollment and lesson-progress endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.dependencies import get_actor_id, get_db, get_redis_dep
from learnsphere.events.publisher import publish_event
from learnsphere.events.schemas import EnrollmentWrite, LessonProgressWrite
from learnsphere.progress.progress_service import enroll, get_course_progress, mark_lesson_progress
from learnsphere.progress.schemas import (
    CourseProgressResponse,
    EnrollmentResponse,
    EnrollResponse,
    LessonProgressRequest,
    LessonProgressResponse,
    LessonState,
)

router = APIRouter(prefix="/api/v1/courses", tags=["Progress"])


@router.post("/{course_id}/enroll", response_model=EnrollResponse)
async def enroll_in_course(
    course_id: str,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Self-enrollment; the learner starts in 'not_started'."""
    enrollment, created = await enroll(db, user_id, course_id)
    if created:
        await publish_event(
            redis,
            EnrollmentWrite(
                enrollment_id=enrollment.id,
                user_id=user_id,
                course_id=course_id,
                status=enrollment.status,
                created=True,
            ).to_event(),
        )
    return EnrollResponse(enrollment=EnrollmentResponse.model_validate(enrollment), created=created)


@router.post("/{course_id}/lessons/{lesson_id}/progress", response_model=LessonProgressResponse)
async def record_lesson_progress(
    course_id: str,
    lesson_id: str,
    body: LessonProgressRequest,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Record a lesson view or completion."""
    change = await mark_lesson_progress(db, user_id, course_id, lesson_id, body.completed)

    await publish_event(
        redis,
        LessonProgressWrite(
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            completed=change.is_completed,
            was_completed=change.was_completed,
        ).to_event(),
    )
    return LessonProgressResponse(
        lesson_id=lesson_id,
        course_id=course_id,
        completed=change.is_completed,
        newly_completed=change.newly_completed,
    )


@router.get("/{course_id}/progress", response_model=CourseProgressResponse)
async def course_progress(
    course_id: str,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's enrollment and per-lesson completion."""
    progress = await get_course_progress(db, user_id, course_id)
    return CourseProgressResponse(
        enrollment=EnrollmentResponse.model_validate(progress["enrollment"]),
        lessons=[LessonState(**lesson) for lesson in progress["lessons"]],
    )
