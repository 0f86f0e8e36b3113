"""Kubernetes naming constants and client model helpers."""

import json
from functools import lru_cache
from typing import Any

from kubernetes.client import ApiClient

# Job custom resource identity
JOB_API_GROUP = "batch.volcano.sh"
JOB_API_VERSION = f"{JOB_API_GROUP}/v1alpha1"
JOB_KIND = "Job"

# Pod naming: <job name>-<task name>-<index>
POD_NAME_FMT = "%s-%s-%d"

# Annotation and label keys stamped on synthesized pods
TASK_SPEC_KEY = "volcano.sh/task-spec"
JOB_NAME_KEY = "volcano.sh/job-name"
JOB_NAMESPACE_KEY = "volcano.sh/job-namespace"
JOB_VERSION_KEY = "volcano.sh/job-version"
GROUP_NAME_ANNOTATION_KEY = "scheduling.k8s.io/group-name"

# Task-spec annotation value for templates without a name
DEFAULT_TASK_SPEC = "default"

# Controlled-resource marker for claims backed by an emptyDir volume
EMPTY_DIR_RESOURCE_PREFIX = "volume-emptyDir-"


@lru_cache
def _api_client() -> ApiClient:
    return ApiClient()


def deserialize_model(data: Any, klass: str) -> Any:
    """Convert plain JSON data into a kubernetes client model.

    Args:
        data: Decoded JSON (dicts/lists) as returned by the API server
        klass: Client model name, e.g. "V1PodTemplateSpec"

    Returns:
        Instance of the requested client model
    """
    return _api_client().deserialize(json.dumps(data), klass, "application/json")


def serialize_model(obj: Any) -> Any:
    """Convert a kubernetes client model into JSON-compatible data."""
    return _api_client().sanitize_for_serialization(obj)
