"""Tests for pod synthesis from task templates."""

import copy
import json

from conftest import make_job, make_task
from kubernetes import client

from batch_controller.models.job import Job, VolumeSpec
from batch_controller.models.k8s import (
    DEFAULT_TASK_SPEC,
    GROUP_NAME_ANNOTATION_KEY,
    JOB_NAME_KEY,
    JOB_NAMESPACE_KEY,
    JOB_VERSION_KEY,
    TASK_SPEC_KEY,
    serialize_model,
)
from batch_controller.services.plugins import Plugin, PluginRegistry
from batch_controller.services.pod_builder import (
    PodBuilder,
    build_pod,
    get_pod_version,
    get_task_index,
    make_pod_name,
)


def pod_json(pod: client.V1Pod) -> str:
    return json.dumps(serialize_model(pod), sort_keys=True)


class TestPodNaming:
    """Tests for pod name generation."""

    def test_make_pod_name_format(self):
        """Test that pod names join job, task and index."""
        assert make_pod_name("mpi-job", "worker", 3) == "mpi-job-worker-3"

    def test_names_unique_across_tasks(self):
        """Test that pods of different tasks never share a name."""
        names = {make_pod_name("job", task, i) for task in ("a", "b") for i in range(3)}
        assert len(names) == 6

    def test_get_task_index(self):
        """Test that the replica index is recovered from the pod name."""
        job = make_job()
        pod = build_pod(job, job.spec.tasks[0], 7)
        assert get_task_index(pod) == 7


class TestBuildPod:
    """Tests for building a pod from a task template."""

    def test_build_pod_metadata(self, job: Job):
        """Test pod identity, ownership, labels and annotations."""
        job.status.version = 4
        task = job.spec.tasks[1]
        pod = build_pod(job, task, 1)

        assert pod.metadata.name == "mpi-job-worker-1"
        assert pod.metadata.namespace == "default"

        owner = pod.metadata.owner_references[0]
        assert owner.controller is True
        assert owner.kind == "Job"
        assert owner.name == "mpi-job"
        assert owner.uid == "uid-1234"

        assert pod.metadata.labels["app"] == "worker"
        assert pod.metadata.labels[JOB_NAME_KEY] == "mpi-job"
        assert pod.metadata.labels[JOB_NAMESPACE_KEY] == "default"

        annotations = pod.metadata.annotations
        assert annotations["team"] == "ml"
        assert annotations[TASK_SPEC_KEY] == DEFAULT_TASK_SPEC
        assert annotations[GROUP_NAME_ANNOTATION_KEY] == "mpi-job"
        assert annotations[JOB_NAME_KEY] == "mpi-job"
        assert annotations[JOB_NAMESPACE_KEY] == "default"
        assert annotations[JOB_VERSION_KEY] == "4"
        assert get_pod_version(pod) == 4

    def test_task_spec_annotation_uses_template_name(self):
        """Test that a named template is recorded in the task-spec annotation."""
        job = make_job(tasks=[make_task("ps", template_name="ps")])
        pod = build_pod(job, job.spec.tasks[0], 0)
        assert pod.metadata.annotations[TASK_SPEC_KEY] == "ps"

    def test_template_is_not_mutated(self, job: Job):
        """Test that building a pod leaves the shared template unchanged."""
        job.spec.volumes = [VolumeSpec(mount_path="/data", volume_claim_name="data")]
        task = job.spec.tasks[0]
        before = copy.deepcopy(task.template)

        pod = build_pod(job, task, 0)
        pod.spec.containers[0].image = "changed"

        assert task.template == before
        assert task.template.metadata.annotations == {"team": "ml"}

    def test_build_pod_is_deterministic(self, job: Job):
        """Test that identical inputs yield byte-identical pods."""
        job.spec.volumes = [VolumeSpec(mount_path="/data", volume_claim_name="data")]
        task = job.spec.tasks[0]
        assert pod_json(build_pod(job, task, 0)) == pod_json(build_pod(job, task, 0))

    def test_scheduler_inherited_from_job(self):
        """Test that pods without a scheduler use the job's scheduler."""
        job = make_job(scheduler_name="volcano")
        pod = build_pod(job, job.spec.tasks[0], 0)
        assert pod.spec.scheduler_name == "volcano"

    def test_template_scheduler_kept(self):
        """Test that a scheduler set on the template wins."""
        task = make_task()
        task.template.spec.scheduler_name = "custom"
        job = make_job(tasks=[task], scheduler_name="volcano")
        pod = build_pod(job, job.spec.tasks[0], 0)
        assert pod.spec.scheduler_name == "custom"


class TestVolumeInjection:
    """Tests for injecting job volume claims into pods."""

    def test_pvc_volume_and_mount(self):
        """Test that a declared claim is attached as a PVC and mounted."""
        job = make_job(volumes=[VolumeSpec(mount_path="/data", volume_claim_name="data")])
        pod = build_pod(job, job.spec.tasks[0], 0)

        assert len(pod.spec.volumes) == 1
        volume = pod.spec.volumes[0]
        assert volume.name == "data"
        assert volume.persistent_volume_claim.claim_name == "data"
        mounts = pod.spec.containers[0].volume_mounts
        assert [(m.name, m.mount_path) for m in mounts] == [("data", "/data")]

    def test_empty_dir_backed_claim(self):
        """Test that claims marked empty-dir-backed become emptyDir volumes."""
        job = make_job(volumes=[VolumeSpec(mount_path="/scratch", volume_claim_name="s")])
        job.status.controlled_resources["volume-emptyDir-s"] = "s"
        pod = build_pod(job, job.spec.tasks[0], 0)

        volume = pod.spec.volumes[0]
        assert volume.empty_dir is not None
        assert volume.persistent_volume_claim is None

    def test_inline_claim_is_never_empty_dir(self):
        """Test that a claim with an inline spec stays a PVC even if marked."""
        job = make_job(
            volumes=[
                VolumeSpec(
                    mount_path="/scratch",
                    volume_claim_name="s",
                    volume_claim={"accessModes": ["ReadWriteOnce"]},
                )
            ]
        )
        job.status.controlled_resources["volume-emptyDir-s"] = "s"
        pod = build_pod(job, job.spec.tasks[0], 0)
        assert pod.spec.volumes[0].persistent_volume_claim.claim_name == "s"

    def test_duplicate_claims_attached_once(self):
        """Test that a claim declared twice yields a single volume and mount."""
        job = make_job(
            volumes=[
                VolumeSpec(mount_path="/data", volume_claim_name="data"),
                VolumeSpec(mount_path="/data2", volume_claim_name="data"),
            ]
        )
        pod = build_pod(job, job.spec.tasks[0], 0)

        assert [v.name for v in pod.spec.volumes] == ["data"]
        assert len(pod.spec.containers[0].volume_mounts) == 1

    def test_volume_already_in_template_is_skipped(self):
        """Test that a claim the template already attaches is not added again."""
        task = make_task()
        task.template.spec.volumes = [
            client.V1Volume(name="data", empty_dir=client.V1EmptyDirVolumeSource())
        ]
        job = make_job(
            tasks=[task],
            volumes=[VolumeSpec(mount_path="/data", volume_claim_name="data")],
        )
        pod = build_pod(job, job.spec.tasks[0], 0)
        assert len(pod.spec.volumes) == 1
        assert pod.spec.volumes[0].empty_dir is not None

    def test_mount_added_to_every_container(self):
        """Test that all containers get the claim mount."""
        task = make_task()
        task.template.spec.containers.append(
            client.V1Container(name="sidecar", image="busybox")
        )
        job = make_job(
            tasks=[task],
            volumes=[VolumeSpec(mount_path="/data", volume_claim_name="data")],
        )
        pod = build_pod(job, job.spec.tasks[0], 0)
        for container in pod.spec.containers:
            assert [m.name for m in container.volume_mounts] == ["data"]


class RecordingPlugin(Plugin):
    name = "record"

    def on_pod_create(self, pod, task, job):
        pod.metadata.labels["decorated"] = task.name
        return pod


class TestPodBuilder:
    """Tests for plugin decoration in PodBuilder."""

    def test_builder_without_plugins(self, job: Job):
        """Test that the builder without a registry matches build_pod."""
        builder = PodBuilder()
        task = job.spec.tasks[0]
        assert pod_json(builder.build(job, task, 0)) == pod_json(build_pod(job, task, 0))

    def test_builder_runs_requested_plugins(self, job: Job):
        """Test that plugins requested by the job decorate the pod."""
        job.spec.plugins = {"record": []}
        registry = PluginRegistry(factories={"record": RecordingPlugin})
        pod = PodBuilder(plugins=registry).build(job, job.spec.tasks[0], 0)
        assert pod.metadata.labels["decorated"] == "master"

    def test_builder_skips_unrequested_plugins(self, job: Job):
        """Test that registered plugins only run when the job asks for them."""
        registry = PluginRegistry(factories={"record": RecordingPlugin})
        pod = PodBuilder(plugins=registry).build(job, job.spec.tasks[0], 0)
        assert "decorated" not in pod.metadata.labels
