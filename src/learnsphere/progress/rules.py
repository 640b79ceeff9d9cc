"""Enrollment status transitions and progress arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from learnsphere.rounding import round_half_up


class EnrollmentStatus(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"


_RANK = {
    EnrollmentStatus.NOT_STARTED: 0,
    EnrollmentStatus.ACTIVE: 1,
    EnrollmentStatus.COMPLETED: 2,
}

SINGLE_ITEM = "single_item"
PER_QUIZ = "per_quiz"


@dataclass(frozen=True)
class ProgressSnapshot:
    completed_items: int
    total_items: int
    percentage: int
    is_complete: bool


def compute_progress(
    lesson_total: int,
    lessons_completed: int,
    quiz_total: int,
    quizzes_passed: int,
    policy: str = SINGLE_ITEM,
) -> ProgressSnapshot:
    """Progress over lessons plus quizzes.

    ``single_item``: all quizzes together count as one item, done once any
    quiz has a passing attempt. ``per_quiz``: each quiz is its own item.
    A course with nothing to complete is never complete.
    """
    if policy == PER_QUIZ:
        quiz_items = quiz_total
        quiz_done = min(quizzes_passed, quiz_total)
    elif policy == SINGLE_ITEM:
        quiz_items = 1 if quiz_total > 0 else 0
        quiz_done = 1 if quiz_items and quizzes_passed > 0 else 0
    else:
        msg = f"Unknown progress policy: {policy!r}"
        raise ValueError(msg)

    total = lesson_total + quiz_items
    done = min(lessons_completed, lesson_total) + quiz_done

    if total == 0:
        return ProgressSnapshot(0, 0, 0, False)

    percentage = min(100, round_half_up(done / total * 100))
    return ProgressSnapshot(done, total, percentage, done == total)


def next_status(
    current: EnrollmentStatus,
    snapshot: ProgressSnapshot,
    interacted: bool,
) -> EnrollmentStatus:
    """Forward-only transition; ``completed`` is terminal.

    ``interacted`` is True once the learner has touched any lesson or quiz.
    """
    target = current
    if snapshot.is_complete:
        target = EnrollmentStatus.COMPLETED
    elif interacted or snapshot.completed_items > 0:
        target = EnrollmentStatus.ACTIVE

    if _RANK[target] <= _RANK[current]:
        return current
    return target
