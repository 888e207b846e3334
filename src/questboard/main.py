"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from questboard.config import get_settings
from questboard.database import close_db, init_db
from questboard.gamification.router import router as gamification_router
from questboard.health.router import router as health_router
from questboard.middleware import setup_middleware
from questboard.prizes.router import router as prizes_router
from questboard.quests.router import router as quests_router
from questboard.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Questboard API",
        description="Quest completion, points, leaderboard and prize settlement",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(quests_router)
    app.include_router(gamification_router)
    app.include_router(prizes_router)

    return app


app = create_app()
