"""Administrative operations: instructors, bulk enrollment, certificates, point corrections."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.db.models import Certificate, Course, Enrollment, User
from learnsphere.errors import DuplicateError, NotFoundError, PreconditionError
from learnsphere.events.schemas import EnrollmentWrite
from learnsphere.gamification.points_service import apply_admin_correction, get_total_points
from learnsphere.progress.progress_service import enroll
from learnsphere.progress.rules import EnrollmentStatus

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def create_instructor(db: AsyncSession, email: str, display_name: str) -> User:
    """Create an instructor account with no points and no badge, then commit."""
    email = _normalize_email(email or "")
    display_name = (display_name or "").strip()
    if not email or not display_name:
        msg = "Email and display name are required"
        raise PreconditionError(msg)

    taken = await db.scalar(select(User.id).where(func.lower(User.email) == email))
    if taken is not None:
        msg = f"A user with email {email} already exists"
        raise DuplicateError(msg)

    now = datetime.now(timezone.utc)
    user = User(
        email=email,
        display_name=display_name,
        role="instructor",
        total_points=0,
        current_badge_id=None,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        msg = f"A user with email {email} already exists"
        raise DuplicateError(msg) from None

    logger.info("Created instructor %s (%s)", user.id, email)
    return user


@dataclass
class BulkEnrollResult:
    success: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    events: list[EnrollmentWrite] = field(default_factory=list)


async def bulk_enroll(db: AsyncSession, course_id: str, emails: list[str]) -> BulkEnrollResult:
    """Enroll each e-mail as an active learner. Each item stands alone.

    Unknown e-mails and existing enrollments are reported in ``failed``;
    the rest are committed one by one. ``events`` holds the enrollment
    events for the caller to publish.
    """
    if await db.get(Course, course_id) is None:
        msg = f"Course {course_id} not found"
        raise NotFoundError(msg)
    if not emails:
        msg = "Course ID and user emails are required"
        raise PreconditionError(msg)

    result = BulkEnrollResult()
    for raw_email in emails:
        email = _normalize_email(raw_email)
        try:
            user_id = await db.scalar(select(User.id).where(func.lower(User.email) == email))
            if user_id is None:
                result.failed.append({"email": raw_email, "error": "User not found"})
                continue

            enrollment, created = await enroll(db, user_id, course_id, status=EnrollmentStatus.ACTIVE)
            if not created:
                result.failed.append({"email": raw_email, "error": "Already enrolled"})
                continue

            result.success.append(raw_email)
            result.events.append(EnrollmentWrite(
                enrollment_id=enrollment.id,
                user_id=user_id,
                course_id=course_id,
                status=enrollment.status,
                created=True,
            ))
        except Exception as exc:
            await db.rollback()
            logger.exception("Bulk enroll failed for %s in course %s", raw_email, course_id)
            result.failed.append({"email": raw_email, "error": str(exc)})

    logger.info(
        "Bulk enroll into %s: %d enrolled, %d failed",
        course_id, len(result.success), len(result.failed),
    )
    return result


def certificate_number(user_id: str, now_ms: int | None = None) -> str:
    """``CERT-<epoch ms>-<first 6 chars of the user id>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"CERT-{now_ms}-{user_id[:6]}"


async def generate_certificate(db: AsyncSession, user_id: str, course_id: str) -> Certificate:
    """Issue (or return the already issued) certificate for a completed course."""
    enrollment = await db.scalar(
        select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
            Enrollment.status == EnrollmentStatus.COMPLETED.value,
        )
        .execution_options(populate_existing=True)
    )
    if enrollment is None:
        msg = "Course not completed"
        raise PreconditionError(msg)

    course = await db.get(Course, course_id)
    user = await db.get(User, user_id)
    if course is None or user is None:
        msg = "Course or user not found"
        raise NotFoundError(msg)

    existing = await db.scalar(
        select(Certificate).where(Certificate.user_id == user_id, Certificate.course_id == course_id)
    )
    if existing is not None:
        return existing

    certificate = Certificate(
        certificate_number=certificate_number(user_id),
        user_id=user_id,
        course_id=course_id,
        course_title=course.title,
        user_name=user.display_name or user.email or user_id,
        completed_at=enrollment.completed_at,
        generated_at=datetime.now(timezone.utc),
    )
    db.add(certificate)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await db.scalar(
            select(Certificate).where(Certificate.user_id == user_id, Certificate.course_id == course_id)
        )
        if existing is None:
            raise
        return existing

    logger.info("Generated certificate %s for user %s", certificate.certificate_number, user_id)
    return certificate


async def correct_points(
    db: AsyncSession,
    redis: object,
    user_id: str,
    delta: int,
    reference: str,
    description: str | None = None,
) -> tuple[int, int]:
    """Apply ``admin:<reference>`` and commit. Returns (applied, new total).

    Repeating a reference applies nothing.
    """
    applied = await apply_admin_correction(
        db, redis, user_id, delta, f"admin:{reference}", description
    )
    await db.commit()
    return applied, await get_total_points(db, user_id) or 0
