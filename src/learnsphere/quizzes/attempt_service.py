"""Quiz attempt submission with serialized attempt numbering."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.config import Settings, get_settings
from learnsphere.database import dialect_insert
from learnsphere.db.models import Question, Quiz, QuizAttempt, QuizAttemptCounter
from learnsphere.errors import NotFoundError
from learnsphere.quizzes.scoring import parse_reward_policy, score_attempt

logger = logging.getLogger(__name__)


async def allocate_attempt_number(db: AsyncSession, user_id: str, quiz_id: str) -> int:
    """Claim the next attempt number for (user, quiz).

    The counter row is bumped with a single ``UPDATE ... SET last_attempt =
    last_attempt + 1``, which row-locks it until the caller commits, so two
    concurrent submissions cannot read the same value. The UNIQUE constraint
    on quiz_attempts backs this up.
    """
    insert = dialect_insert(db)
    await db.execute(
        insert(QuizAttemptCounter)
        .values(user_id=user_id, quiz_id=quiz_id, last_attempt=0)
        .on_conflict_do_nothing(index_elements=["user_id", "quiz_id"])
    )

    where = (
        QuizAttemptCounter.user_id == user_id,
        QuizAttemptCounter.quiz_id == quiz_id,
    )
    await db.execute(
        update(QuizAttemptCounter)
        .where(*where)
        .values(last_attempt=QuizAttemptCounter.last_attempt + 1)
        .execution_options(synchronize_session=False)
    )
    return await db.scalar(select(QuizAttemptCounter.last_attempt).where(*where))


async def submit_attempt(
    db: AsyncSession,
    user_id: str,
    quiz_id: str,
    answers: Sequence[Mapping[str, Any]],
    settings: Settings | None = None,
) -> QuizAttempt:
    """Score and persist an attempt, then commit.

    Points are not awarded here: the stored ``points_earned`` is applied by
    the event processor when it handles the attempt-created event.
    """
    settings = settings or get_settings()

    quiz = await db.get(Quiz, quiz_id)
    if quiz is None:
        msg = f"Quiz {quiz_id} not found"
        raise NotFoundError(msg)

    policy = parse_reward_policy(
        quiz.reward_policy,
        default_base_points=settings.quiz_default_base_points,
        default_decay=settings.quiz_decay_factor,
    )
    threshold = quiz.pass_threshold if quiz.pass_threshold is not None else settings.quiz_pass_threshold

    attempt_number = await allocate_attempt_number(db, user_id, quiz_id)
    questions = (
        await db.execute(
            select(Question).where(Question.quiz_id == quiz_id).order_by(Question.order, Question.id)
        )
    ).scalars().all()
    score = score_attempt(questions, answers, attempt_number, policy, threshold)

    attempt = QuizAttempt(
        user_id=user_id,
        quiz_id=quiz_id,
        course_id=quiz.course_id,
        attempt_number=attempt_number,
        raw_score=score.raw_score,
        total_questions=score.total_questions,
        percentage=score.percentage,
        passed=score.passed,
        points_earned=score.points_earned,
        decay_factor=score.decay_factor,
        answers=score.graded_answers,
        created_at=datetime.now(timezone.utc),
    )
    db.add(attempt)
    await db.commit()

    logger.info(
        "Quiz attempt %d by %s on %s: %d%% (%s), %d points",
        attempt_number,
        user_id,
        quiz_id,
        score.percentage,
        "passed" if score.passed else "failed",
        score.points_earned,
    )
    return attempt


async def get_attempts(db: AsyncSession, user_id: str, quiz_id: str) -> list[QuizAttempt]:
    """All attempts for (user, quiz), oldest first."""
    result = await db.execute(
        select(QuizAttempt)
        .where(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz_id)
        .order_by(QuizAttempt.attempt_number.asc())
    )
    return list(result.scalars().all())


async def best_attempt(db: AsyncSession, user_id: str, quiz_id: str) -> QuizAttempt | None:
    """Highest-scoring attempt; the earliest wins a tie."""
    result = await db.execute(
        select(QuizAttempt)
        .where(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz_id)
        .order_by(QuizAttempt.percentage.desc(), QuizAttempt.attempt_number.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()
