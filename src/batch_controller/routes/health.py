"""Health check endpoints for Kubernetes probes."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter
from fastapi import Request as HttpRequest
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: HttpRequest) -> HealthResponse:
    """Basic health check for liveness probe."""
    settings = http_request.app.state.settings
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version="0.1.0",
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(http_request: HttpRequest) -> ReadinessResponse:
    """Readiness check: the reconciliation loop must be running when enabled."""
    settings = http_request.app.state.settings
    controller = getattr(http_request.app.state, "job_controller", None)

    checks: dict[str, Any] = {}
    if not settings.controller_enabled:
        checks["job_controller"] = {"status": "ok", "detail": "disabled"}
    else:
        running = controller is not None and controller.is_running
        checks["job_controller"] = {
            "status": "ok" if running else "error",
            "queue_depth": controller.queue_depth if controller is not None else 0,
        }

    all_ok = all(check.get("status") == "ok" for check in checks.values())

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe."""
    return {"status": "started"}
