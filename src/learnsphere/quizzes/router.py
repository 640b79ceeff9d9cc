"""Quiz attempt endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.dependencies import get_actor_id, get_db, get_redis_dep
from learnsphere.events.publisher import publish_event
from learnsphere.events.schemas import QuizAttemptCreate
from learnsphere.quizzes.attempt_service import best_attempt, get_attempts, submit_attempt
from learnsphere.quizzes.schemas import AttemptListResponse, AttemptResponse, SubmitAttemptRequest

router = APIRouter(prefix="/api/v1/quizzes", tags=["Quizzes"])


@router.post("/{quiz_id}/attempts", response_model=AttemptResponse, status_code=201)
async def create_attempt(
    quiz_id: str,
    body: SubmitAttemptRequest,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Score and store an attempt; points follow asynchronously."""
    answers = [a.model_dump() for a in body.answers]
    attempt = await submit_attempt(db, user_id, quiz_id, answers)

    await publish_event(
        redis,
        QuizAttemptCreate(
            attempt_id=attempt.id,
            user_id=user_id,
            quiz_id=quiz_id,
            course_id=attempt.course_id,
            answers=answers,
        ).to_event(),
    )
    return AttemptResponse.model_validate(attempt)


@router.get("/{quiz_id}/attempts", response_model=AttemptListResponse)
async def list_attempts(
    quiz_id: str,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's attempts on a quiz, plus the best one."""
    attempts = await get_attempts(db, user_id, quiz_id)
    best = await best_attempt(db, user_id, quiz_id)
    return AttemptListResponse(
        attempts=[AttemptResponse.model_validate(a) for a in attempts],
        best=AttemptResponse.model_validate(best) if best else None,
    )
