"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Request

from btcsim.config import get_settings

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, object]:
    """Readiness probe: the session registry is attached and has room."""
    checks: dict[str, object] = {}
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        checks["registry"] = "error: not initialised"
    elif registry.session_count >= registry.settings.max_sessions:
        checks["registry"] = "full"
    else:
        checks["registry"] = "ok"

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "sessions": registry.session_count if registry is not None else 0,
    }


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
