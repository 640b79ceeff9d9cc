"""Request/response models for administrative endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CreateInstructorRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    display_name: str = Field(min_length=1, max_length=128)


class InstructorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str | None
    display_name: str | None
    role: str
    total_points: int


class BulkEnrollRequest(BaseModel):
    emails: list[str] = Field(default_factory=list)


class BulkEnrollFailure(BaseModel):
    email: str
    error: str


class BulkEnrollResponse(BaseModel):
    success: list[str]
    failed: list[BulkEnrollFailure]


class CertificateRequest(BaseModel):
    course_id: str


class CertificateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    certificate_number: str
    user_id: str
    course_id: str
    course_title: str
    user_name: str
    completed_at: datetime | None = None
    generated_at: datetime


class PointsCorrectionRequest(BaseModel):
    delta: int
    reference: str = Field(min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=256)


class PointsCorrectionResponse(BaseModel):
    user_id: str
    applied: int
    total_points: int
