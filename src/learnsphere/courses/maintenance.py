"""Periodic maintenance jobs."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.db.models import Lesson, LessonProgress

logger = logging.getLogger(__name__)


async def cleanup_orphaned_progress(db: AsyncSession) -> int:
    """Delete lesson-progress rows whose lesson no longer exists. Returns rows removed."""
    result = await db.execute(
        delete(LessonProgress)
        .where(LessonProgress.lesson_id.not_in(select(Lesson.id)))
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    removed = result.rowcount or 0
    if removed:
        logger.info("Removed %d orphaned lesson-progress rows", removed)
    return removed
