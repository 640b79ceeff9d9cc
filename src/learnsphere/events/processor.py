"""Progression event processor: reacts to writes on the event streams.

Delivery is at-least-once, so every handler is safe to run twice: points go
through reason-keyed ledger rows and status changes through guarded updates.
Course aggregates are updated after the main effects commit, in their own
transaction, and a failure there is only logged.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.config import Settings, get_settings
from learnsphere.courses.aggregate_service import (
    record_enrollment_created,
    recompute_completion_rate,
    recompute_quiz_average,
)
from learnsphere.db.models import QuizAttempt
from learnsphere.events.schemas import (
    PAYLOADS,
    EnrollmentWrite,
    EventType,
    LessonProgressWrite,
    QuizAttemptCreate,
    event_type_for_stream,
)
from learnsphere.gamification.points_service import award_points
from learnsphere.progress.progress_service import ProgressResult, award_course_bonus, recompute_enrollment
from learnsphere.progress.rules import EnrollmentStatus

logger = structlog.get_logger(__name__)


class EventProcessor:
    """Applies the side effects of one progression event."""

    def __init__(self, db: AsyncSession, redis: object, settings: Settings | None = None) -> None:
        self.db = db
        self.redis = redis
        self.settings = settings or get_settings()
        self._handlers: dict[EventType, Callable[[Any], Awaitable[list[str]]]] = {
            EventType.LESSON_PROGRESS: self.on_lesson_progress,
            EventType.QUIZ_ATTEMPT: self.on_quiz_attempt_created,
            EventType.ENROLLMENT: self.on_enrollment_written,
        }

    async def process(self, stream: str, event_id: str, data: dict) -> list[str] | None:
        """Handle one event. Returns the effects applied, or None if it failed.

        Never raises. Unknown streams and malformed payloads are logged and
        reported as handled (an empty list) since retrying cannot fix them.
        """
        log = logger.bind(stream=stream, event_id=event_id)

        event_type = event_type_for_stream(stream)
        if event_type is None:
            log.warning("unknown_stream")
            return []

        try:
            payload: BaseModel = PAYLOADS[event_type].model_validate(data)
        except ValidationError as exc:
            log.error("invalid_event_payload", errors=exc.errors(include_url=False))
            return []

        try:
            effects = await self._handlers[event_type](payload)
        except Exception:
            log.exception("event_processing_failed")
            await self.db.rollback()
            return None

        if effects:
            log.info("event_processed", effects=effects)
        return effects

    # ── Handlers ──

    async def on_lesson_progress(self, event: LessonProgressWrite) -> list[str]:
        effects: list[str] = []

        # Keyed on the lesson, so a later write can recover a lost first event.
        if event.completed:
            awarded = await award_points(
                self.db,
                self.redis,
                event.user_id,
                self.settings.lesson_points,
                f"lesson:{event.lesson_id}:complete",
                source="lesson",
                description=f"Completed lesson {event.lesson_id}",
            )
            if awarded:
                effects.append("points:lesson")

        result = await recompute_enrollment(
            self.db, self.redis, event.user_id, event.course_id, self.settings
        )
        effects += self._progress_effects(result)
        await self.db.commit()

        if result is not None and result.became_completed:
            await self._aggregate("completion_rate", recompute_completion_rate, event.course_id)
        return effects

    async def on_quiz_attempt_created(self, event: QuizAttemptCreate) -> list[str]:
        attempt = await self.db.get(QuizAttempt, event.attempt_id)
        if attempt is None:
            logger.error("quiz_attempt_missing", attempt_id=event.attempt_id, user_id=event.user_id)
            return []

        effects: list[str] = []
        if attempt.points_earned > 0:
            awarded = await award_points(
                self.db,
                self.redis,
                attempt.user_id,
                attempt.points_earned,
                f"quiz:{attempt.id}",
                source="quiz",
                description=f"Quiz {attempt.quiz_id} attempt {attempt.attempt_number}",
            )
            if awarded:
                effects.append("points:quiz")

        result = None
        if attempt.passed:
            result = await recompute_enrollment(
                self.db, self.redis, attempt.user_id, attempt.course_id, self.settings
            )
            effects += self._progress_effects(result)
        await self.db.commit()

        await self._aggregate("quiz_average", recompute_quiz_average, attempt.course_id)
        if result is not None and result.became_completed:
            await self._aggregate("completion_rate", recompute_completion_rate, attempt.course_id)
        return effects

    async def on_enrollment_written(self, event: EnrollmentWrite) -> list[str]:
        effects: list[str] = []

        completed_now = (
            event.status == EnrollmentStatus.COMPLETED.value
            and event.previous_status != EnrollmentStatus.COMPLETED.value
        )
        if completed_now:
            if await award_course_bonus(
                self.db, self.redis, event.user_id, event.course_id, self.settings
            ):
                effects.append("points:course_bonus")
            await self.db.commit()

        if event.created:
            # Replays double-count here; the weekly reconciliation corrects it.
            if await self._aggregate("enrollment_created", record_enrollment_created, event.course_id):
                effects.append("stats:enrollment")
        if event.created or completed_now:
            await self._aggregate("completion_rate", recompute_completion_rate, event.course_id)
        return effects

    # ── Helpers ──

    @staticmethod
    def _progress_effects(result: ProgressResult | None) -> list[str]:
        if result is None:
            return []
        effects = [f"progress:{result.snapshot.percentage}"]
        if result.became_completed:
            effects.append("course_completed")
        if result.bonus_awarded:
            effects.append("points:course_bonus")
        return effects

    async def _aggregate(self, name: str, update: Callable[..., Awaitable[Any]], course_id: str) -> bool:
        """Run one best-effort aggregate update in its own transaction."""
        try:
            await update(self.db, course_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.warning("aggregate_update_failed", aggregate=name, course_id=course_id, exc_info=True)
            return False
        return True
