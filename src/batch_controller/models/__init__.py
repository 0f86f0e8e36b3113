"""Pydantic models for Job resources and reconciliation requests."""

from batch_controller.models.common import (
    ConditionStatus,
    JobAction,
    JobConditionType,
    JobEvent,
    JobPhase,
)
from batch_controller.models.job import (
    Job,
    JobCondition,
    JobSpec,
    JobState,
    JobStatus,
    LifecyclePolicy,
    ObjectMeta,
    Request,
    TaskSpec,
    VolumeSpec,
)

__all__ = [
    "ConditionStatus",
    "Job",
    "JobAction",
    "JobCondition",
    "JobConditionType",
    "JobEvent",
    "JobPhase",
    "JobSpec",
    "JobState",
    "JobStatus",
    "LifecyclePolicy",
    "ObjectMeta",
    "Request",
    "TaskSpec",
    "VolumeSpec",
]
