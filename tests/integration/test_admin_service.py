"""Instructor creation, bulk enrollment and certificates."""

from __future__ import annotations

import pytest

from learnsphere.admin.service import bulk_enroll, create_instructor, generate_certificate
from learnsphere.errors import DuplicateError, NotFoundError, PreconditionError
from learnsphere.progress.progress_service import complete_enrollment, enroll
from learnsphere.progress.rules import EnrollmentStatus


class TestCreateInstructor:
    async def test_creates_instructor_without_points(self, db):
        user = await create_instructor(db, "  Prof@Example.com ", "Prof. Noether")
        assert user.role == "instructor"
        assert user.email == "prof@example.com"
        assert user.total_points == 0
        assert user.current_badge_id is None

    async def test_duplicate_email_is_case_insensitive(self, db, make_user):
        await make_user(email="taken@example.com")
        with pytest.raises(DuplicateError):
            await create_instructor(db, "TAKEN@example.com", "Someone")

    @pytest.mark.parametrize(("email", "name"), [("", "Name"), ("a@b.c", "  "), ("   ", "")])
    async def test_required_fields(self, db, email, name):
        with pytest.raises(PreconditionError):
            await create_instructor(db, email, name)


class TestBulkEnroll:
    async def test_mixed_batch(self, db, make_user, course):
        alice = await make_user(email="alice@example.com")
        await make_user(email="bob@example.com")
        await enroll(db, alice.id, course.id)

        result = await bulk_enroll(
            db, course.id, ["alice@example.com", "Bob@Example.com", "nobody@example.com"]
        )

        assert result.success == ["Bob@Example.com"]
        assert result.failed == [
            {"email": "alice@example.com", "error": "Already enrolled"},
            {"email": "nobody@example.com", "error": "User not found"},
        ]
        assert len(result.events) == 1
        event = result.events[0]
        assert event.status == EnrollmentStatus.ACTIVE.value
        assert event.created is True

    async def test_bulk_enrolled_learners_start_active(self, db, make_user, course):
        user = await make_user(email="carol@example.com")
        await bulk_enroll(db, course.id, ["carol@example.com"])
        enrollment, created = await enroll(db, user.id, course.id)
        assert created is False
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.started_at is not None

    async def test_unknown_course(self, db):
        with pytest.raises(NotFoundError):
            await bulk_enroll(db, "no-such-course", ["a@example.com"])

    async def test_empty_list(self, db, course):
        with pytest.raises(PreconditionError, match="required"):
            await bulk_enroll(db, course.id, [])


class TestCertificates:
    async def test_requires_completed_course(self, db, learner, course):
        await enroll(db, learner.id, course.id)
        with pytest.raises(PreconditionError, match="Course not completed"):
            await generate_certificate(db, learner.id, course.id)

    async def test_issue_once(self, db, learner, course):
        enrollment, _ = await enroll(db, learner.id, course.id)
        await complete_enrollment(db, enrollment.id)
        await db.commit()

        first = await generate_certificate(db, learner.id, course.id)
        second = await generate_certificate(db, learner.id, course.id)

        assert first.certificate_number.startswith("CERT-")
        assert first.certificate_number.endswith(learner.id[:6])
        assert second.id == first.id
        assert first.course_title == "Intro to Statistics"
        assert first.user_name == "Ada"
        assert first.completed_at is not None
