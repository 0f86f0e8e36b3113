"""Controller process entry point: HTTP surface plus the reconciliation loop."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from batch_controller.core.config import Settings, get_settings
from batch_controller.core.telemetry import setup_telemetry
from batch_controller.routes import controller_router, health_router
from batch_controller.services.job_controller import JobController, JobReconciler
from batch_controller.services.k8s_store import K8sResourceStore
from batch_controller.services.plugins import PluginRegistry
from batch_controller.services.webhook_config import register_ca_bundle

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_controller(settings: Settings, store: K8sResourceStore) -> JobController:
    """Wire the reconciler, plugin registry and controller together."""
    reconciler = JobReconciler(
        store=store,
        settings=settings,
        plugins=PluginRegistry.from_settings(settings),
    )
    return JobController(reconciler=reconciler, settings=settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the controller on startup and stop it on shutdown."""
    settings: Settings = app.state.settings
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")

    if not hasattr(app.state, "job_controller"):
        store = K8sResourceStore(settings=settings)
        if settings.ca_cert_file is not None:
            await asyncio.to_thread(register_ca_bundle, store.admission_api, settings)
        app.state.job_controller = build_controller(settings, store)

    controller: JobController = app.state.job_controller
    await controller.start()

    yield

    logger.info("Shutting down...")
    await controller.stop()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Batch job controller - reconciles Job resources into pods",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    setup_telemetry(app, settings)

    app.include_router(health_router)
    app.include_router(controller_router)

    return app


def run() -> None:
    """Run the controller with uvicorn."""
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
