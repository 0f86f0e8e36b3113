"""Pod synthesis from job task templates."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING

from kubernetes import client

from batch_controller.models.job import Job, TaskSpec
from batch_controller.models.k8s import (
    DEFAULT_TASK_SPEC,
    EMPTY_DIR_RESOURCE_PREFIX,
    GROUP_NAME_ANNOTATION_KEY,
    JOB_KIND,
    JOB_NAME_KEY,
    JOB_NAMESPACE_KEY,
    JOB_VERSION_KEY,
    POD_NAME_FMT,
    TASK_SPEC_KEY,
)

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

    from batch_controller.services.plugins import PluginRegistry

logger = logging.getLogger(__name__)


def make_pod_name(job_name: str, task_name: str, index: int) -> str:
    """Return the stable name of replica ``index`` of a task."""
    return POD_NAME_FMT % (job_name, task_name, index)


def get_task_index(pod: V1Pod) -> int | None:
    """Recover the replica index from a pod name built by ``make_pod_name``."""
    name = pod.metadata.name if pod.metadata else None
    if not name:
        return None
    _, _, suffix = name.rpartition("-")
    return int(suffix) if suffix.isdigit() else None


def get_pod_version(pod: V1Pod) -> int | None:
    """Return the job version a pod was built for, if annotated."""
    annotations = (pod.metadata.annotations if pod.metadata else None) or {}
    value = annotations.get(JOB_VERSION_KEY)
    if value is None or not value.lstrip("-").isdigit():
        return None
    return int(value)


def controller_ref(job: Job) -> client.V1OwnerReference:
    """Owner reference marking the job as the managing controller."""
    return client.V1OwnerReference(
        api_version=job.api_version,
        kind=JOB_KIND,
        name=job.name,
        uid=job.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def _inject_volumes(job: Job, pod_spec: client.V1PodSpec) -> None:
    attached = {v.name for v in pod_spec.volumes or []}
    injected: set[str] = set()

    for volume in job.spec.volumes:
        claim_name = volume.volume_claim_name
        if claim_name in injected or claim_name in attached:
            continue

        empty_dir_marker = EMPTY_DIR_RESOURCE_PREFIX + claim_name
        if (
            empty_dir_marker in job.status.controlled_resources
            and volume.volume_claim is None
        ):
            pod_volume = client.V1Volume(
                name=claim_name, empty_dir=client.V1EmptyDirVolumeSource()
            )
        else:
            pod_volume = client.V1Volume(
                name=claim_name,
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                    claim_name=claim_name
                ),
            )
        pod_spec.volumes = [*(pod_spec.volumes or []), pod_volume]
        injected.add(claim_name)

        for container in pod_spec.containers:
            mount = client.V1VolumeMount(name=claim_name, mount_path=volume.mount_path)
            container.volume_mounts = [*(container.volume_mounts or []), mount]


def build_pod(job: Job, task: TaskSpec, index: int) -> V1Pod:
    """Build replica ``index`` of a task as a pod owned by the job.

    The task template is deep-copied first so the shared template is never
    mutated. The result only depends on the inputs: building the same
    (job, task, index) twice yields equal pods.

    Args:
        job: Owning job; supplies scheduler name, volumes and version
        task: Task whose template the pod is built from
        index: Replica index within the task

    Returns:
        Pod ready to be created in the job's namespace
    """
    template = copy.deepcopy(task.template)
    template_meta = template.metadata or client.V1ObjectMeta()
    pod_spec = template.spec or client.V1PodSpec(containers=[])
    if pod_spec.containers is None:
        pod_spec.containers = []

    annotations = dict(template_meta.annotations or {})
    labels = dict(template_meta.labels or {})

    if not pod_spec.scheduler_name and job.spec.scheduler_name:
        pod_spec.scheduler_name = job.spec.scheduler_name

    _inject_volumes(job, pod_spec)

    annotations[TASK_SPEC_KEY] = template_meta.name or DEFAULT_TASK_SPEC
    annotations[GROUP_NAME_ANNOTATION_KEY] = job.name
    annotations[JOB_NAME_KEY] = job.name
    annotations[JOB_NAMESPACE_KEY] = job.namespace
    annotations[JOB_VERSION_KEY] = str(job.status.version)

    # Selected by the job's headless service
    labels[JOB_NAME_KEY] = job.name
    labels[JOB_NAMESPACE_KEY] = job.namespace

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=make_pod_name(job.name, task.name, index),
            namespace=job.namespace,
            owner_references=[controller_ref(job)],
            labels=labels,
            annotations=annotations,
        ),
        spec=pod_spec,
    )


class PodBuilder:
    """Builds job pods and runs plugin pod decorators over them.

    Example:
        ```python
        builder = PodBuilder(plugins=PluginRegistry.from_settings(settings))
        pod = builder.build(job, job.spec.tasks[0], 0)
        ```
    """

    def __init__(self, plugins: PluginRegistry | None = None) -> None:
        self.plugins = plugins

    def build(self, job: Job, task: TaskSpec, index: int) -> V1Pod:
        pod = build_pod(job, task, index)
        if self.plugins is None:
            return pod

        for plugin in self.plugins.plugins_for(job):
            pod = plugin.on_pod_create(pod, task, job)
        logger.debug("Built pod %s for job %s", pod.metadata.name, job.key)
        return pod
