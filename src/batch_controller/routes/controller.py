"""Controller routes: loop status, manual resync and command requests."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi import Request as HttpRequest
from pydantic import BaseModel, Field

from batch_controller.models.common import JobAction, JobEvent
from batch_controller.models.job import Request
from batch_controller.services.job_controller import JobController

router = APIRouter(prefix="/api/v1/controller", tags=["Controller"])


def get_job_controller(http_request: HttpRequest) -> JobController:
    """Return the controller wired into the application at startup."""
    controller = getattr(http_request.app.state, "job_controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job controller is not initialized",
        )
    return controller


ControllerDep = Annotated[JobController, Depends(get_job_controller)]


class ControllerStatusResponse(BaseModel):
    """Response model for the reconciliation loop status."""

    running: bool
    started_at: str = Field(alias="startedAt")
    queue_depth: int = Field(alias="queueDepth")
    in_flight: list[str] = Field(alias="inFlight")
    reconciles: int
    resyncs: int
    conflicts: int
    errors: list[str]

    class Config:
        populate_by_name = True


class ControllerConfigResponse(BaseModel):
    """Response model for controller configuration."""

    enabled: bool
    workers: int
    resync_interval_seconds: int = Field(alias="resyncIntervalSeconds")
    max_conflict_retries: int = Field(alias="maxConflictRetries")
    enabled_plugins: list[str] = Field(alias="enabledPlugins")
    watch_namespace: str | None = Field(default=None, alias="watchNamespace")

    class Config:
        populate_by_name = True


class CommandRequest(BaseModel):
    """Body of a command issued against a job."""

    action: JobAction | None = None
    event: JobEvent | None = None
    task_name: str | None = Field(default=None, alias="taskName")
    exit_code: int | None = Field(default=None, alias="exitCode")
    job_version: int = Field(default=0, alias="jobVersion")

    class Config:
        populate_by_name = True


class QueuedResponse(BaseModel):
    """Response model for queued work."""

    queued: int
    key: str | None = None


@router.get("/status", response_model=ControllerStatusResponse)
async def get_controller_status(controller: ControllerDep) -> dict:
    """Get the state of the reconciliation loop."""
    metrics = controller.metrics
    return {
        "running": controller.is_running,
        "startedAt": metrics.started_at.isoformat(),
        "queueDepth": controller.queue_depth,
        "inFlight": controller.in_flight,
        "reconciles": metrics.reconciles,
        "resyncs": metrics.resyncs,
        "conflicts": metrics.conflicts,
        "errors": list(metrics.errors)[-20:],
    }


@router.get("/config", response_model=ControllerConfigResponse)
async def get_controller_config(controller: ControllerDep) -> dict:
    """Get current controller configuration."""
    settings = controller.settings
    return {
        "enabled": settings.controller_enabled,
        "workers": settings.controller_workers,
        "resyncIntervalSeconds": settings.resync_interval_seconds,
        "maxConflictRetries": settings.max_conflict_retries,
        "enabledPlugins": settings.enabled_plugins,
        "watchNamespace": settings.watch_namespace,
    }


@router.post("/resync", response_model=QueuedResponse)
async def trigger_resync(controller: ControllerDep) -> dict:
    """Queue a sync of every job immediately instead of waiting for the interval."""
    queued = await controller.resync()
    return {"queued": queued}


@router.post(
    "/jobs/{namespace}/{name}/requests",
    response_model=QueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_request(
    namespace: str, name: str, body: CommandRequest, controller: ControllerDep
) -> dict:
    """Queue a reconciliation request for one job.

    Either an explicit action or an event must be given; the policy engine
    decides the action for event-only requests.
    """
    if body.action is None and body.event is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either action or event is required",
        )

    request = Request(
        namespace=namespace,
        job_name=name,
        task_name=body.task_name,
        event=body.event,
        exit_code=body.exit_code,
        action=body.action,
        job_version=body.job_version,
    )
    await controller.enqueue(request)
    return {"queued": 1, "key": request.key}
