"""Pytest configuration and shared fixtures for batch-controller tests."""

import pytest
from kubernetes import client

from batch_controller.models.job import Job, JobSpec, ObjectMeta, TaskSpec


def make_task(
    name: str = "worker",
    replicas: int = 1,
    priority: int = 0,
    policies: list | None = None,
    cpu: str | None = "1",
    template_name: str | None = None,
) -> TaskSpec:
    """Build a task with a single-container pod template."""
    resources = None
    if cpu is not None:
        resources = client.V1ResourceRequirements(requests={"cpu": cpu})
    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(
            name=template_name,
            labels={"app": name},
            annotations={"team": "ml"},
        ),
        spec=client.V1PodSpec(
            containers=[
                client.V1Container(name="main", image="busybox", resources=resources)
            ],
            restart_policy="Never",
        ),
    )
    return TaskSpec(
        name=name,
        replicas=replicas,
        priority=priority,
        template=template,
        policies=policies or [],
    )


def make_job(
    name: str = "mpi-job",
    namespace: str = "default",
    tasks: list[TaskSpec] | None = None,
    **spec_fields,
) -> Job:
    """Build a job with the given tasks and spec fields."""
    return Job(
        metadata=ObjectMeta(name=name, namespace=namespace, uid="uid-1234"),
        spec=JobSpec(tasks=tasks if tasks is not None else [make_task()], **spec_fields),
    )


@pytest.fixture
def job() -> Job:
    """A job with a master and two workers."""
    return make_job(
        tasks=[
            make_task("master", replicas=1, priority=10),
            make_task("worker", replicas=2, priority=1),
        ],
        min_available=3,
    )
