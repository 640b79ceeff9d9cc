"""arq worker for progression events and scheduled course maintenance."""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from learnsphere.config import get_settings
from learnsphere.courses.aggregate_service import reconcile_all_courses
from learnsphere.courses.maintenance import cleanup_orphaned_progress
from learnsphere.database import close_db, get_session_factory, init_db
from learnsphere.gamification.points_service import reconcile_all_user_points
from learnsphere.middleware.logging import setup_logging
from learnsphere.redis_client import connect
from learnsphere.workers.consumer import ProgressionConsumer

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis and the stream consumer."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = connect(settings.redis_url, max_connections=20)
    consumer = ProgressionConsumer(
        redis_client,
        get_session_factory(),
        consumer_name=settings.event_consumer_name,
        settings=settings,
    )
    await consumer.setup_groups()

    ctx["redis_client"] = redis_client
    ctx["consumer"] = consumer
    logger.info("Progression worker started (consumer=%s)", settings.event_consumer_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    consumer: ProgressionConsumer | None = ctx.get("consumer")
    if consumer:
        consumer.stop()

    redis_client = ctx.get("redis_client")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Progression worker shut down")


async def consume_progression_events(ctx: dict) -> None:  # type: ignore[type-arg]
    """Long-running job: consume the progression streams until shutdown."""
    consumer: ProgressionConsumer = ctx["consumer"]
    await consumer.run()


async def reconcile_course_stats(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled: recompute every course's aggregates (Sunday 03:00 UTC)."""
    async with get_session_factory()() as db:
        return await reconcile_all_courses(db)


async def reconcile_points(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled: reset drifted point totals to the ledger sum (daily, 02:00 UTC)."""
    async with get_session_factory()() as db:
        return await reconcile_all_user_points(db, ctx.get("redis_client"))


async def cleanup_orphaned_lesson_progress(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled: sweep progress rows for deleted lessons (1st of month, 04:00 UTC)."""
    async with get_session_factory()() as db:
        return await cleanup_orphaned_progress(db)


class WorkerSettings:
    """arq worker settings for the progression worker."""

    functions = [
        consume_progression_events,
        reconcile_course_stats,
        cleanup_orphaned_lesson_progress,
        reconcile_points,
    ]
    cron_jobs = [
        cron(reconcile_course_stats, weekday=6, hour=3, minute=0),
        cron(cleanup_orphaned_lesson_progress, day=1, hour=4, minute=0),
        cron(reconcile_points, hour=2, minute=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 0  # consume_progression_events runs forever
    allow_abort_jobs = True
