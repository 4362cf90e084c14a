"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from vpay.api.router import router as gamification_router
from vpay.config import get_settings
from vpay.database import close_db, get_session_factory, init_db
from vpay.gamification.seed import seed_badges
from vpay.health.router import router as health_router
from vpay.middleware import setup_middleware
from vpay.redis_client import close_redis, init_redis

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
            await seed_badges(db)
    except SQLAlchemyError:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="VPay Gamification API",
        description="Streaks, quests, levels, badges and reward recommendations for VPay",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (console script `vpay-api`)."""
    settings = get_settings()
    uvicorn.run("vpay.main:app", host=settings.host, port=settings.port, log_config=None)
