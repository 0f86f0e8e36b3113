"""Job resource models: tasks, lifecycle policies, status and requests."""

from datetime import datetime
from typing import Any

from kubernetes.client import V1PodTemplateSpec
from pydantic import BaseModel, Field, field_serializer, field_validator

from batch_controller.models.common import (
    ConditionStatus,
    JobAction,
    JobConditionType,
    JobEvent,
    JobPhase,
)
from batch_controller.models.k8s import (
    JOB_API_VERSION,
    JOB_KIND,
    deserialize_model,
    serialize_model,
)


class LifecyclePolicy(BaseModel):
    """Rule mapping an event set or an exit code to an action.

    Only one of ``event``/``events`` or ``exit_code`` is expected to be set.
    A policy with neither never matches. An exit code of 0 is a valid value
    and is distinct from an unset exit code (``None``).
    """

    action: JobAction
    event: JobEvent | None = None
    events: list[JobEvent] = Field(default_factory=list)
    exit_code: int | None = Field(default=None, alias="exitCode")

    class Config:
        populate_by_name = True


class TaskSpec(BaseModel):
    """A named group of identical pod replicas within a Job.

    Attributes:
        name: Task name, unique within the job
        replicas: Number of pods to run for this task
        min_available: Minimum pods of this task needed for the job to run
        priority: Higher priority tasks are created and counted first
        template: Pod template each replica is built from
        policies: Task-scoped lifecycle policies, checked before job policies
    """

    name: str = ""
    replicas: int = 0
    min_available: int | None = Field(default=None, alias="minAvailable")
    priority: int = 0
    template: V1PodTemplateSpec = Field(default_factory=V1PodTemplateSpec)
    policies: list[LifecyclePolicy] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        arbitrary_types_allowed = True

    @field_validator("template", mode="before")
    @classmethod
    def _parse_template(cls, value: Any) -> Any:
        if value is None:
            return V1PodTemplateSpec()
        if isinstance(value, dict):
            return deserialize_model(value, "V1PodTemplateSpec")
        return value

    @field_serializer("template")
    def _dump_template(self, template: V1PodTemplateSpec) -> Any:
        return serialize_model(template)


class VolumeSpec(BaseModel):
    """Volume claim shared by every pod of the job."""

    mount_path: str = Field(alias="mountPath")
    volume_claim_name: str = Field(default="", alias="volumeClaimName")
    volume_claim: dict[str, Any] | None = Field(default=None, alias="volumeClaim")

    class Config:
        populate_by_name = True


class JobSpec(BaseModel):
    """Desired state of a batch Job."""

    scheduler_name: str = Field(default="", alias="schedulerName")
    min_available: int = Field(default=0, alias="minAvailable")
    queue: str = "default"
    max_retry: int = Field(default=3, alias="maxRetry")
    tasks: list[TaskSpec] = Field(default_factory=list)
    policies: list[LifecyclePolicy] = Field(default_factory=list)
    volumes: list[VolumeSpec] = Field(default_factory=list)
    plugins: dict[str, list[str]] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class JobCondition(BaseModel):
    """Timestamped, typed boolean record in a Job's status history."""

    type: JobConditionType
    status: ConditionStatus = ConditionStatus.TRUE
    reason: str = ""
    message: str = ""
    last_update_time: datetime | None = Field(default=None, alias="lastUpdateTime")
    last_transition_time: datetime | None = Field(
        default=None, alias="lastTransitionTime"
    )

    class Config:
        populate_by_name = True


class JobState(BaseModel):
    """Current phase of a Job with the reason it was entered."""

    phase: JobPhase = JobPhase.PENDING
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = Field(
        default=None, alias="lastTransitionTime"
    )

    class Config:
        populate_by_name = True


class JobStatus(BaseModel):
    """Observed state of a Job.

    Attributes:
        state: Current phase
        conditions: Condition history, at most one entry per type, in append order
        start_time: Set once the job has a Created condition
        completion_time: Set once the job succeeded, cleared on restart
        version: Generation counter, bumped whenever pods are reset
        retry_count: Number of restarts performed
        min_resources: Resources the first min_available pods request, in
            priority order; the gang size the scheduler must place
        controlled_resources: Markers for resources the controller created
    """

    state: JobState = Field(default_factory=JobState)
    conditions: list[JobCondition] = Field(default_factory=list)
    start_time: datetime | None = Field(default=None, alias="startTime")
    completion_time: datetime | None = Field(default=None, alias="completionTime")
    version: int = 0
    retry_count: int = Field(default=0, alias="retryCount")
    min_available: int = Field(default=0, alias="minAvailable")
    min_resources: dict[str, str] = Field(default_factory=dict, alias="minResources")
    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    terminating: int = 0
    unknown: int = 0
    controlled_resources: dict[str, str] = Field(
        default_factory=dict, alias="controlledResources"
    )

    class Config:
        populate_by_name = True


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the controller."""

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class Job(BaseModel):
    """Declarative batch workload composed of tasks.

    Example:
        ```python
        job = Job.from_resource(
            custom_objects_api.get_namespaced_custom_object(...)
        )
        print(job.key, job.status.state.phase)
        ```
    """

    api_version: str = Field(default=JOB_API_VERSION, alias="apiVersion")
    kind: str = JOB_KIND
    metadata: ObjectMeta
    spec: JobSpec = Field(default_factory=JobSpec)
    status: JobStatus = Field(default_factory=JobStatus)

    class Config:
        populate_by_name = True

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Queue key of the job: ``namespace/name``."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @classmethod
    def from_resource(cls, data: dict[str, Any]) -> "Job":
        """Build a Job from custom resource JSON returned by the API server."""
        return cls.model_validate(data)

    def to_resource(self) -> dict[str, Any]:
        """Render the Job as custom resource JSON."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Request(BaseModel):
    """Unit of reconciliation input.

    Requests are ephemeral. ``job_version`` is the job status version the
    request was observed at; requests older than the job are treated as a
    plain sync.
    """

    namespace: str
    job_name: str = Field(alias="jobName")
    task_name: str | None = Field(default=None, alias="taskName")
    event: JobEvent | None = None
    exit_code: int | None = Field(default=None, alias="exitCode")
    action: JobAction | None = None
    job_version: int = Field(default=0, alias="jobVersion")

    class Config:
        populate_by_name = True

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.job_name}"

    def __str__(self) -> str:
        return (
            f"Request(job={self.key}, task={self.task_name}, event={self.event}, "
            f"exit_code={self.exit_code}, action={self.action}, "
            f"version={self.job_version})"
        )
