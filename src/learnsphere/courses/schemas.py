"""Response models for course aggregates."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CourseStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    views_count: int
    enrollment_count: int
    completed_count: int
    completion_rate: int
    average_quiz_score: int
    total_quiz_attempts: int
    lesson_count: int
    updated_at: datetime | None = None
    reconciled_at: datetime | None = None


class CourseReportResponse(BaseModel):
    course_id: str
    total: int
    yet_to_start: int
    in_progress: int
    completed: int
