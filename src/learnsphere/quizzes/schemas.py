"""Request/response models for quiz attempts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AnswerIn(BaseModel):
    question_id: str
    selected_option: int = Field(ge=0)


class SubmitAttemptRequest(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)


class GradedAnswer(BaseModel):
    question_id: str
    selected_option: int
    is_correct: bool


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quiz_id: str
    course_id: str
    attempt_number: int
    raw_score: int
    total_questions: int
    percentage: int
    passed: bool
    points_earned: int
    answers: list[GradedAnswer] = []
    created_at: datetime


class AttemptListResponse(BaseModel):
    attempts: list[AttemptResponse]
    best: AttemptResponse | None = None
