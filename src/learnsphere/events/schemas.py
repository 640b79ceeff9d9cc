"""Domain event definitions for learner progression.

All events share a common envelope:
{
    "event": "<event_type>",
    "ts": 1708617600.123456,
    "data": { ... type-specific fields ... }
}

Each event type has its own Redis stream, ``lms:{event_type}``.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

STREAM_PREFIX = "lms:"


class EventType(str, Enum):
    """All supported progression event types."""

    LESSON_PROGRESS = "lesson_progress"
    QUIZ_ATTEMPT = "quiz_attempt"
    ENROLLMENT = "enrollment"

    @property
    def stream(self) -> str:
        return f"{STREAM_PREFIX}{self.value}"


STREAMS = [t.stream for t in EventType]


class DomainEvent(BaseModel):
    """Common envelope for all events."""

    event: EventType
    ts: float = Field(default_factory=time.time)
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def stream(self) -> str:
        return self.event.stream


class LessonProgressWrite(BaseModel):
    """A lesson-progress row was created or updated."""

    user_id: str
    course_id: str
    lesson_id: str
    completed: bool
    was_completed: bool = False

    def to_event(self) -> DomainEvent:
        return DomainEvent(event=EventType.LESSON_PROGRESS, data=self.model_dump())


class QuizAttemptCreate(BaseModel):
    """A quiz attempt was scored and stored."""

    attempt_id: str
    user_id: str
    quiz_id: str
    course_id: str
    answers: list[dict[str, Any]] = Field(default_factory=list)

    def to_event(self) -> DomainEvent:
        return DomainEvent(event=EventType.QUIZ_ATTEMPT, data=self.model_dump())


class EnrollmentWrite(BaseModel):
    """An enrollment was created or changed status."""

    enrollment_id: str
    user_id: str
    course_id: str
    status: str
    previous_status: str | None = None
    created: bool = False

    def to_event(self) -> DomainEvent:
        return DomainEvent(event=EventType.ENROLLMENT, data=self.model_dump())


PAYLOADS: dict[EventType, type[BaseModel]] = {
    EventType.LESSON_PROGRESS: LessonProgressWrite,
    EventType.QUIZ_ATTEMPT: QuizAttemptCreate,
    EventType.ENROLLMENT: EnrollmentWrite,
}


def event_type_for_stream(stream: str) -> EventType | None:
    """Map a stream key back to its event type; None for unknown streams."""
    if not stream.startswith(STREAM_PREFIX):
        return None
    try:
        return EventType(stream[len(STREAM_PREFIX):])
    except ValueError:
        return None
