"""Course aggregate endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.courses.aggregate_service import get_course_report, get_course_stats
from learnsphere.courses.schemas import CourseReportResponse, CourseStatsResponse
from learnsphere.dependencies import get_db

router = APIRouter(prefix="/api/v1/courses", tags=["Courses"])


@router.get("/{course_id}/stats", response_model=CourseStatsResponse)
async def course_stats(course_id: str, db: AsyncSession = Depends(get_db)):
    """Derived aggregates (eventually consistent)."""
    stats = await get_course_stats(db, course_id)
    return CourseStatsResponse.model_validate(stats)


@router.get("/{course_id}/report", response_model=CourseReportResponse)
async def course_report(course_id: str, db: AsyncSession = Depends(get_db)):
    """Enrollment overview computed live from enrollments."""
    return CourseReportResponse(**await get_course_report(db, course_id))
