"""Quiz attempt submission and numbering."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from learnsphere.db.models import Quiz, QuizAttempt, QuizAttemptCounter
from learnsphere.errors import NotFoundError
from learnsphere.quizzes.attempt_service import (
    allocate_attempt_number,
    best_attempt,
    get_attempts,
    submit_attempt,
)


class TestAttemptNumbering:
    """Attempt numbers are 1, 2, 3... per (user, quiz)."""

    async def test_sequential_numbers(self, db, learner, course, settings):
        numbers = []
        for _ in range(3):
            attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)
            numbers.append(attempt.attempt_number)
        assert numbers == [1, 2, 3]

    async def test_numbers_are_per_user(self, db, make_user, course, settings):
        a = await make_user()
        b = await make_user()
        await submit_attempt(db, a.id, course.quiz_id, course.answers(), settings)
        await submit_attempt(db, a.id, course.quiz_id, course.answers(), settings)
        attempt = await submit_attempt(db, b.id, course.quiz_id, course.answers(), settings)
        assert attempt.attempt_number == 1

    async def test_counter_tracks_last_attempt(self, db, learner, course):
        assert await allocate_attempt_number(db, learner.id, course.quiz_id) == 1
        assert await allocate_attempt_number(db, learner.id, course.quiz_id) == 2
        await db.commit()

        counter = await db.scalar(
            select(QuizAttemptCounter.last_attempt).where(
                QuizAttemptCounter.user_id == learner.id,
                QuizAttemptCounter.quiz_id == course.quiz_id,
            )
        )
        assert counter == 2

    async def test_separate_sessions_get_distinct_numbers(self, session_factory, learner, course, settings):
        user_id = learner.id
        async with session_factory() as first, session_factory() as second:
            a = await submit_attempt(first, user_id, course.quiz_id, course.answers(), settings)
            b = await submit_attempt(second, user_id, course.quiz_id, course.answers(), settings)
        assert sorted([a.attempt_number, b.attempt_number]) == [1, 2]

    async def test_reused_number_rejected_and_counter_rolls_back(self, db, learner, course, settings):
        user_id = learner.id
        first = await submit_attempt(db, user_id, course.quiz_id, course.answers(), settings)
        reused = first.attempt_number

        assert await allocate_attempt_number(db, user_id, course.quiz_id) == 2
        db.add(QuizAttempt(
            user_id=user_id,
            quiz_id=course.quiz_id,
            course_id=course.id,
            attempt_number=reused,
            raw_score=0,
            total_questions=2,
            percentage=0,
            passed=False,
            points_earned=0,
            created_at=datetime.now(timezone.utc),
        ))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

        attempt = await submit_attempt(db, user_id, course.quiz_id, course.answers(), settings)
        assert attempt.attempt_number == 2


class TestSubmitAttempt:
    async def test_bucketed_points_decline(self, db, learner, course, settings):
        points = [
            (await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)).points_earned
            for _ in range(5)
        ]
        assert points == [10, 7, 5, 3, 3]

    async def test_decayed_policy(self, db, learner, make_course, settings):
        course = await make_course(reward_policy={"mode": "decayed"})
        first = await submit_attempt(db, learner.id, course.quiz_id, course.answers(correct=1), settings)
        second = await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)

        assert first.passed is False
        assert first.points_earned == 0
        # 20 * 100% * 0.8
        assert second.points_earned == 16

    async def test_quiz_threshold_overrides_default(self, db, learner, course, settings):
        quiz = await db.get(Quiz, course.quiz_id)
        quiz.pass_threshold = 50
        await db.commit()

        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(correct=1), settings)
        assert attempt.percentage == 50
        assert attempt.passed is True

    async def test_graded_answers_stored(self, db, learner, course, settings):
        attempt = await submit_attempt(db, learner.id, course.quiz_id, course.answers(correct=1), settings)
        assert attempt.raw_score == 1
        assert attempt.total_questions == 2
        assert [a["is_correct"] for a in attempt.answers] == [True, False]

    async def test_unknown_quiz(self, db, learner, settings):
        with pytest.raises(NotFoundError):
            await submit_attempt(db, learner.id, "no-such-quiz", [], settings)

    async def test_listing_and_best(self, db, learner, course, settings):
        await submit_attempt(db, learner.id, course.quiz_id, course.answers(correct=1), settings)
        await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)
        await submit_attempt(db, learner.id, course.quiz_id, course.answers(), settings)

        attempts = await get_attempts(db, learner.id, course.quiz_id)
        assert [a.attempt_number for a in attempts] == [1, 2, 3]

        best = await best_attempt(db, learner.id, course.quiz_id)
        assert best.percentage == 100
        assert best.attempt_number == 2

    async def test_best_without_attempts(self, db, learner, course):
        assert await best_attempt(db, learner.id, course.quiz_id) is None
