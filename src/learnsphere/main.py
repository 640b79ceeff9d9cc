"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from learnsphere.admin.router import router as admin_router
from learnsphere.config import get_settings
from learnsphere.courses.router import router as courses_router
from learnsphere.database import close_db, get_session_factory, init_db
from learnsphere.gamification.router import router as gamification_router
from learnsphere.gamification.seed import seed_badge_tiers
from learnsphere.health.router import router as health_router
from learnsphere.middleware import setup_middleware
from learnsphere.progress.router import router as progress_router
from learnsphere.quizzes.router import router as quizzes_router
from learnsphere.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Badge catalog (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_badge_tiers(db)
    except Exception:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LearnSphere Progression API",
        description="Learner progress, quiz scoring, points and badges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)
    app.include_router(quizzes_router)
    app.include_router(progress_router)
    app.include_router(courses_router)
    app.include_router(admin_router)

    return app


app = create_app()
