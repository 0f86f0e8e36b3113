"""API route modules."""

from batch_controller.routes.controller import router as controller_router
from batch_controller.routes.health import router as health_router

__all__ = [
    "controller_router",
    "health_router",
]
