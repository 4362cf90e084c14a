"""Scheduled batch jobs for the gamification core.

Each job opens its own session from ``ctx["session_factory"]``, runs one
engine batch entry point and returns how many rows it touched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis

from vpay.config import get_settings
from vpay.database import close_db, get_session_factory, init_db
from vpay.gamification.constants import LeaderboardCategory
from vpay.gamification.engine import GamificationEngine

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Gamification worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Gamification worker shut down")


def _now(ctx: dict) -> datetime:  # type: ignore[type-arg]
    return ctx.get("now") or datetime.now(timezone.utc)


async def sweep_stale_streaks(ctx: dict) -> int:  # type: ignore[type-arg]
    """Daily: deactivate streaks with no activity since before yesterday."""
    async with ctx["session_factory"]() as db:
        engine = GamificationEngine(db, ctx.get("redis"))
        try:
            broken = await engine.break_stale_streaks(_now(ctx))
        except Exception:
            logger.exception("Stale streak sweep failed")
            return 0
    logger.info("Stale streak sweep: %d streak(s) broken", broken)
    return broken


async def expire_quests(ctx: dict) -> int:  # type: ignore[type-arg]
    """Hourly: move overdue ACTIVE quest instances to EXPIRED."""
    async with ctx["session_factory"]() as db:
        engine = GamificationEngine(db, ctx.get("redis"))
        try:
            return await engine.expire_quests(_now(ctx))
        except Exception:
            logger.exception("Quest expiry sweep failed")
            return 0


async def generate_weekly_quests_for_all(ctx: dict) -> int:  # type: ignore[type-arg]
    """Weekly: assign the weekly quest set to every user."""
    async with ctx["session_factory"]() as db:
        engine = GamificationEngine(db, ctx.get("redis"))
        try:
            assigned = await engine.generate_weekly_quests_for_all(_now(ctx))
        except Exception:
            logger.exception("Weekly quest generation failed")
            return 0
    logger.info("Weekly quests assigned: %d", assigned)
    return assigned


async def recompute_leaderboards(ctx: dict) -> int:  # type: ignore[type-arg]
    """Every 15 minutes: assign ranks on every global all-time board."""
    total = 0
    async with ctx["session_factory"]() as db:
        engine = GamificationEngine(db, ctx.get("redis"))
        for category in LeaderboardCategory.ALL:
            try:
                total += await engine.recompute_leaderboard(category)
            except Exception:
                logger.exception("Leaderboard recompute failed for %s", category)
    return total


async def expire_recommendations(ctx: dict) -> int:  # type: ignore[type-arg]
    """Hourly: move past-due PENDING recommendations to EXPIRED."""
    async with ctx["session_factory"]() as db:
        engine = GamificationEngine(db, ctx.get("redis"))
        try:
            return await engine.expire_recommendations(_now(ctx))
        except Exception:
            logger.exception("Recommendation expiry sweep failed")
            return 0
