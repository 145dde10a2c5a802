"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from questline.config import get_settings
from questline.dependencies import get_db, get_redis_dep
from questline.progression.level_curve import CURVE_VERSION

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
) -> dict[str, object]:
    """Readiness check. Redis is optional: events are best-effort."""
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()  # type: ignore[attr-defined]
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    healthy = checks["database"] == "ok" and checks["redis"] in ("ok", "disabled")
    return {"status": "ready" if healthy else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, object]:
    """Service version, environment and leveling curve version."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "curve_version": CURVE_VERSION,
    }
