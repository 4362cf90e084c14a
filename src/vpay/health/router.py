"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.config import get_settings
from vpay.dependencies import get_db, get_redis_dep

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe. Redis is optional: absent means degraded push, not down."""
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as exc:
        checks["database"] = f"error: {exc}"

    if redis is None:
        checks["redis"] = "not configured"
    else:
        try:
            await redis.ping()  # type: ignore[attr-defined]
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    ready = checks["database"] == "ok" and checks["redis"] in ("ok", "not configured")
    return {"status": "ready" if ready else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
