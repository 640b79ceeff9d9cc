"""Administrative endpoints. Role checks happen upstream of this service."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.admin.schemas import (
    BulkEnrollFailure,
    BulkEnrollRequest,
    BulkEnrollResponse,
    CertificateRequest,
    CertificateResponse,
    CreateInstructorRequest,
    InstructorResponse,
    PointsCorrectionRequest,
    PointsCorrectionResponse,
)
from learnsphere.admin.service import bulk_enroll, correct_points, create_instructor, generate_certificate
from learnsphere.dependencies import get_actor_id, get_db, get_redis_dep
from learnsphere.events.publisher import publish_events

router = APIRouter(prefix="/api/v1", tags=["Admin"])


@router.post("/admin/instructors", response_model=InstructorResponse, status_code=201)
async def create_instructor_account(body: CreateInstructorRequest, db: AsyncSession = Depends(get_db)):
    user = await create_instructor(db, body.email, body.display_name)
    return InstructorResponse.model_validate(user)


@router.post("/admin/courses/{course_id}/bulk-enroll", response_model=BulkEnrollResponse)
async def bulk_enroll_learners(
    course_id: str,
    body: BulkEnrollRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Enroll many learners at once; per-email failures do not abort the batch."""
    result = await bulk_enroll(db, course_id, body.emails)
    await publish_events(redis, [e.to_event() for e in result.events])
    return BulkEnrollResponse(
        success=result.success,
        failed=[BulkEnrollFailure(**f) for f in result.failed],
    )


@router.post("/admin/users/{user_id}/points/corrections", response_model=PointsCorrectionResponse)
async def correct_user_points(
    user_id: str,
    body: PointsCorrectionRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Signed manual adjustment; totals are floored at zero."""
    applied, total = await correct_points(db, redis, user_id, body.delta, body.reference, body.description)
    return PointsCorrectionResponse(user_id=user_id, applied=applied, total_points=total)


@router.post("/certificates", response_model=CertificateResponse)
async def issue_certificate(
    body: CertificateRequest,
    user_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Certificate for the caller's completed course."""
    certificate = await generate_certificate(db, user_id, body.course_id)
    return CertificateResponse.model_validate(certificate)
