"""Request/response models for enrollment and lesson progress."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    course_id: str
    status: str
    progress_percentage: int
    completed_lessons: int
    total_lessons: int
    enrolled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class EnrollResponse(BaseModel):
    enrollment: EnrollmentResponse
    created: bool


class LessonProgressRequest(BaseModel):
    completed: bool = False


class LessonProgressResponse(BaseModel):
    lesson_id: str
    course_id: str
    completed: bool
    newly_completed: bool


class LessonState(BaseModel):
    lesson_id: str
    title: str
    lesson_type: str
    completed: bool


class CourseProgressResponse(BaseModel):
    enrollment: EnrollmentResponse
    lessons: list[LessonState]
