"""End-to-end progression: lesson and quiz events drive points, status and bonus.

Events are fed straight into EventProcessor, the way the stream consumer does.
"""

from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from learnsphere.courses.aggregate_service import get_course_stats
from learnsphere.db.models import Enrollment, PointsLedger
from learnsphere.errors import NotFoundError, PreconditionError
from learnsphere.events.processor import EventProcessor
from learnsphere.events.schemas import EnrollmentWrite, LessonProgressWrite, QuizAttemptCreate
from learnsphere.gamification.points_service import get_total_points
from learnsphere.progress.progress_service import (
    COURSE_COMPLETED_CHANNEL,
    enroll,
    get_course_progress,
    mark_lesson_progress,
    recompute_enrollment,
)
from learnsphere.progress.rules import EnrollmentStatus
from learnsphere.quizzes.attempt_service import submit_attempt


async def _enrollment(db, user_id: str, course_id: str) -> Enrollment:
    return await db.scalar(
        select(Enrollment)
        .where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
        .execution_options(populate_existing=True)
    )


async def _complete_lesson(db, processor, user_id, course_id, lesson_id, msg_id="1-0"):
    change = await mark_lesson_progress(db, user_id, course_id, lesson_id, completed=True)
    event = LessonProgressWrite(
        user_id=user_id,
        course_id=course_id,
        lesson_id=lesson_id,
        completed=change.is_completed,
        was_completed=change.was_completed,
    )
    return await processor.process("lms:lesson_progress", msg_id, event.model_dump())


async def _quiz_event(processor, attempt, msg_id="2-0"):
    event = QuizAttemptCreate(
        attempt_id=attempt.id,
        user_id=attempt.user_id,
        quiz_id=attempt.quiz_id,
        course_id=attempt.course_id,
    )
    return await processor.process("lms:quiz_attempt", msg_id, event.model_dump())


class TestLessonProgress:
    """Lesson completion writes."""

    async def test_completion_flips_once(self, db, learner, course):
        first = await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=True)
        again = await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=True)

        assert first.newly_completed is True
        assert again.newly_completed is False
        assert again.was_completed is True

    async def test_view_does_not_complete(self, db, learner, course):
        change = await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=False)
        assert change.is_completed is False

    async def test_view_never_reverts_completion(self, db, learner, course):
        await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=True)
        change = await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=False)
        assert change.is_completed is True

    async def test_lesson_from_other_course(self, db, learner, course, make_course):
        other = await make_course("Linear Algebra")
        with pytest.raises(NotFoundError):
            await mark_lesson_progress(db, learner.id, course.id, other.lesson_ids[0], completed=True)

    async def test_quiz_slot_is_rejected(self, db, learner, course):
        with pytest.raises(PreconditionError):
            await mark_lesson_progress(db, learner.id, course.id, course.quiz_lesson_id, completed=True)


class TestProgressionPipeline:
    """Lessons to 75%, passing quiz to 100%, bonus exactly once."""

    async def test_full_course(self, db, learner, course, settings, redis_mock):
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, redis_mock, settings)

        for i, lesson_id in enumerate(course.lesson_ids):
            effects = await _complete_lesson(db, processor, learner.id, course.id, lesson_id)
            assert "points:lesson" in effects
            assert f"progress:{[25, 50, 75][i]}" in effects

        enrollment = await _enrollment(db, learner.id, course.id)
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.progress_percentage == 75
        assert enrollment.completed_lessons == 3
        assert enrollment.total_lessons == 3
        assert await get_total_points(db, learner.id) == 30

        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)
        assert attempt.passed is True
        assert attempt.points_earned == 10

        effects = await _quiz_event(processor, attempt)
        assert effects == ["points:quiz", "progress:100", "course_completed", "points:course_bonus"]

        enrollment = await _enrollment(db, learner.id, course.id)
        assert enrollment.status == EnrollmentStatus.COMPLETED.value
        assert enrollment.progress_percentage == 100
        assert enrollment.completed_at is not None
        assert await get_total_points(db, learner.id) == 30 + 10 + settings.course_completion_bonus

        channels = [call.args[0] for call in redis_mock.publish.await_args_list]
        assert COURSE_COMPLETED_CHANNEL in channels
        completed_payload = next(
            json.loads(call.args[1])
            for call in redis_mock.publish.await_args_list
            if call.args[0] == COURSE_COMPLETED_CHANNEL
        )
        assert completed_payload == {"user_id": learner.id, "course_id": course.id}

    async def test_lost_completion_event_is_recovered(self, db, learner, course, settings):
        """The first completion's event never reaches the stream; the next write still pays."""
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=True)

        effects = await _complete_lesson(db, processor, learner.id, course.id, course.lesson_ids[0])

        assert effects == ["points:lesson", "progress:25"]
        assert await get_total_points(db, learner.id) == settings.lesson_points

    async def test_repeated_lesson_event_awards_once(self, db, learner, course, settings):
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        await _complete_lesson(db, processor, learner.id, course.id, course.lesson_ids[0])

        effects = await _complete_lesson(db, processor, learner.id, course.id, course.lesson_ids[0], msg_id="1-1")

        assert effects == ["progress:25"]
        assert await get_total_points(db, learner.id) == settings.lesson_points

    async def test_replayed_events_are_noops(self, db, learner, course, settings):
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        for lesson_id in course.lesson_ids:
            await _complete_lesson(db, processor, learner.id, course.id, lesson_id)
        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)
        await _quiz_event(processor, attempt)
        total = await get_total_points(db, learner.id)

        replay = await _quiz_event(processor, attempt, msg_id="2-0")
        assert "points:quiz" not in replay
        assert "course_completed" not in replay
        assert "points:course_bonus" not in replay

        lesson_replay = LessonProgressWrite(
            user_id=learner.id, course_id=course.id, lesson_id=course.lesson_ids[0], completed=True
        )
        effects = await processor.process("lms:lesson_progress", "1-0", lesson_replay.model_dump())
        assert "points:lesson" not in effects

        assert await get_total_points(db, learner.id) == total
        bonus_rows = await db.scalar(
            select(func.count()).select_from(PointsLedger).where(PointsLedger.reason_key == f"course:{course.id}:bonus")
        )
        assert bonus_rows == 1

    async def test_second_pass_of_completion_does_not_rebonus(self, db, learner, course, settings):
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        for lesson_id in course.lesson_ids:
            await _complete_lesson(db, processor, learner.id, course.id, lesson_id)
        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)
        await _quiz_event(processor, attempt)

        result = await recompute_enrollment(db, None, learner.id, course.id, settings)
        await db.commit()
        assert result.status is EnrollmentStatus.COMPLETED
        assert result.became_completed is False
        assert result.bonus_awarded is False

    async def test_failed_quiz_does_not_complete(self, db, learner, course, settings):
        await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        for lesson_id in course.lesson_ids:
            await _complete_lesson(db, processor, learner.id, course.id, lesson_id)

        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(correct=1), settings)
        assert attempt.passed is False
        effects = await _quiz_event(processor, attempt)

        # Bucketed rewards pay failed attempts too.
        assert effects == ["points:quiz"]
        enrollment = await _enrollment(db, learner.id, course.id)
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.progress_percentage == 75

    async def test_first_view_activates_enrollment(self, db, learner, course, settings):
        await enroll(db, learner.id, course.id)
        await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[0], completed=False)
        processor = EventProcessor(db, None, settings)

        event = LessonProgressWrite(
            user_id=learner.id, course_id=course.id, lesson_id=course.lesson_ids[0], completed=False
        )
        effects = await processor.process("lms:lesson_progress", "1-0", event.model_dump())

        assert effects == ["progress:0"]
        enrollment = await _enrollment(db, learner.id, course.id)
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.started_at is not None

    async def test_progress_without_enrollment_only_awards_points(self, db, learner, course, settings):
        processor = EventProcessor(db, None, settings)
        effects = await _complete_lesson(db, processor, learner.id, course.id, course.lesson_ids[0])
        assert effects == ["points:lesson"]
        assert await get_total_points(db, learner.id) == settings.lesson_points

class TestProcessorEdgeCases:
    async def test_unknown_stream_is_skipped(self, db, settings):
        processor = EventProcessor(db, None, settings)
        assert await processor.process("lms:certificates", "1-0", {}) == []

    async def test_malformed_payload_is_skipped(self, db, settings):
        processor = EventProcessor(db, None, settings)
        assert await processor.process("lms:lesson_progress", "1-0", {"user_id": "u1"}) == []

    async def test_missing_attempt_is_skipped(self, db, learner, settings):
        processor = EventProcessor(db, None, settings)
        event = QuizAttemptCreate(attempt_id="missing", user_id=learner.id, quiz_id="q", course_id="c")
        assert await processor.process("lms:quiz_attempt", "1-0", event.model_dump()) == []

    async def test_handler_failure_returns_none(self, db, learner, course, settings, monkeypatch):
        processor = EventProcessor(db, None, settings)

        async def boom(*_args, **_kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr("learnsphere.events.processor.recompute_enrollment", boom)
        event = LessonProgressWrite(
            user_id=learner.id, course_id=course.id, lesson_id=course.lesson_ids[0], completed=False
        )
        assert await processor.process("lms:lesson_progress", "1-0", event.model_dump()) is None

    async def test_enrollment_created_counts_stats(self, db, learner, course, settings):
        enrollment, _ = await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        event = EnrollmentWrite(
            enrollment_id=enrollment.id,
            user_id=learner.id,
            course_id=course.id,
            status=enrollment.status,
            created=True,
        )
        effects = await processor.process("lms:enrollment", "3-0", event.model_dump())

        assert effects == ["stats:enrollment"]
        stats = await get_course_stats(db, course.id)
        assert stats.enrollment_count == 1
        assert stats.views_count == 1
        assert stats.completion_rate == 0

    async def test_enrollment_completed_awards_bonus_once(self, db, learner, course, settings):
        enrollment, _ = await enroll(db, learner.id, course.id)
        processor = EventProcessor(db, None, settings)
        event = EnrollmentWrite(
            enrollment_id=enrollment.id,
            user_id=learner.id,
            course_id=course.id,
            status="completed",
            previous_status="active",
        )

        assert await processor.process("lms:enrollment", "3-0", event.model_dump()) == ["points:course_bonus"]
        assert await processor.process("lms:enrollment", "3-0", event.model_dump()) == []
        assert await get_total_points(db, learner.id) == settings.course_completion_bonus


class TestCourseProgressRead:
    async def test_lessons_with_completion(self, db, learner, course):
        await enroll(db, learner.id, course.id)
        await mark_lesson_progress(db, learner.id, course.id, course.lesson_ids[1], completed=True)

        progress = await get_course_progress(db, learner.id, course.id)
        states = {lesson["lesson_id"]: lesson["completed"] for lesson in progress["lessons"]}
        assert states[course.lesson_ids[1]] is True
        assert states[course.lesson_ids[0]] is False
        assert len(states) == 4

    async def test_not_enrolled(self, db, learner, course):
        with pytest.raises(NotFoundError):
            await get_course_progress(db, learner.id, course.id)
