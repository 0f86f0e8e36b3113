"""Service layer: policy engine, state machine, pod synthesis and reconciliation."""

from batch_controller.services.job_controller import (
    ControllerMetrics,
    JobController,
    JobReconciler,
    ReconcileResult,
)
from batch_controller.services.job_state import (
    get_condition,
    has_condition,
    new_state_condition,
    set_condition,
    update_job_phase,
)
from batch_controller.services.k8s_store import (
    K8sResourceStore,
    ResourceConflictError,
    ResourceNotFoundError,
    TransientStoreError,
)
from batch_controller.services.plugins import Plugin, PluginRegistry
from batch_controller.services.pod_builder import PodBuilder, build_pod, make_pod_name
from batch_controller.services.policy import resolve_action
from batch_controller.services.resources import add_resource_list, calc_min_resources
from batch_controller.services.task_priority import sort_tasks_by_priority
from batch_controller.services.webhook_config import (
    WebhookKind,
    WebhookNotFoundError,
    patch_webhook_ca_bundle,
)

__all__ = [
    # Policy engine
    "resolve_action",
    # State machine
    "get_condition",
    "has_condition",
    "new_state_condition",
    "set_condition",
    "update_job_phase",
    # Pod synthesis
    "PodBuilder",
    "build_pod",
    "make_pod_name",
    # Resources and ordering
    "add_resource_list",
    "calc_min_resources",
    "sort_tasks_by_priority",
    # Plugins
    "Plugin",
    "PluginRegistry",
    # Resource store
    "K8sResourceStore",
    "ResourceConflictError",
    "ResourceNotFoundError",
    "TransientStoreError",
    # Webhook configuration
    "WebhookKind",
    "WebhookNotFoundError",
    "patch_webhook_ca_bundle",
    # Reconciliation
    "ControllerMetrics",
    "JobController",
    "JobReconciler",
    "ReconcileResult",
]
