"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from academy.config import get_settings
from academy.database import close_db, get_session, init_db
from academy.gamification.router import router as gamification_router
from academy.gamification.seed import seed_achievements
from academy.health.router import router as health_router
from academy.learning.router import router as learning_router
from academy.middleware import setup_middleware
from academy.progress.router import router as progress_router
from academy.redis_client import close_redis, init_redis
from academy.users.router import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed achievement definitions (idempotent)
    try:
        async for db in get_session():
            await seed_achievements(db)
            break
    except Exception:
        logger.warning("Achievement seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Web3 Academy API",
        description="Backend API for Web3 Academy: courses, lesson progress, XP and badges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(learning_router)
    app.include_router(progress_router)
    app.include_router(gamification_router)

    return app


app = create_app()
