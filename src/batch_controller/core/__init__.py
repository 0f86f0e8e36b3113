"""Core modules for configuration and telemetry."""

from batch_controller.core.config import Settings, get_settings
from batch_controller.core.telemetry import get_tracer, setup_telemetry

__all__ = ["Settings", "get_settings", "get_tracer", "setup_telemetry"]
