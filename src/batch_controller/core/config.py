"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BATCH_CONTROLLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Batch Job Controller"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Server (health and controller endpoints)
    host: str = "0.0.0.0"
    port: int = 8080

    # OpenTelemetry
    otel_enabled: bool = True
    otel_service_name: str = "batch-controller"
    otel_exporter_endpoint: str = "http://localhost:4317"

    # Kubernetes
    kube_in_cluster_only: bool = False  # Do not fall back to kubeconfig
    job_group: str = "batch.volcano.sh"
    job_version: str = "v1alpha1"
    job_plural: str = "jobs"
    watch_namespace: str | None = None  # None watches all namespaces
    default_scheduler_name: str = "volcano"

    # Reconciliation Controller
    controller_enabled: bool = True
    controller_workers: int = 3
    resync_interval_seconds: int = 30  # Enqueue every job for a sync pass
    max_conflict_retries: int = 3  # Re-fetch and retry on status write conflicts

    # Plugins available to jobs that request them in spec.plugins
    enabled_plugins: list[str] = ["svc", "ssh", "env"]

    # Admission webhook CA bundle registration
    ca_cert_file: Path | None = None  # Skip registration when unset
    mutate_webhook_config_name: str = "volcano-mutate-job"
    mutate_webhook_name: str = "mutatejob.volcano.sh"
    validate_webhook_config_name: str = "volcano-validate-job"
    validate_webhook_name: str = "validatejob.volcano.sh"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
