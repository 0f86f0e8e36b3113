"""Job plugins that decorate pods and provision per-job helper resources.

Plugins are looked up in an explicitly constructed ``PluginRegistry``; a job
opts into a plugin by listing it in ``spec.plugins`` with its arguments.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from kubernetes import client

from batch_controller.core.config import Settings
from batch_controller.services.pod_builder import controller_ref, get_task_index, make_pod_name

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

    from batch_controller.models.job import Job, TaskSpec
    from batch_controller.services.k8s_store import K8sResourceStore

logger = logging.getLogger(__name__)

SVC_CONFIG_MOUNT_PATH = "/etc/volcano"
SSH_MOUNT_PATH = "/root/.ssh"
SSH_KEY_BITS = 2048
TASK_INDEX_ENV_NAMES = ("VK_TASK_INDEX", "VC_TASK_INDEX")


class Plugin:
    """Base class for job plugins. Hooks default to no-ops."""

    name = ""

    def __init__(self, args: list[str] | None = None) -> None:
        self.args = list(args or [])

    def config_map_name(self, job: Job) -> str:
        return f"{job.name}-{self.name}"

    def on_pod_create(self, pod: V1Pod, task: TaskSpec, job: Job) -> V1Pod:
        """Decorate a freshly built pod before it is submitted."""
        return pod

    def on_job_add(self, job: Job, store: K8sResourceStore) -> None:
        """Provision per-job resources the first time the job is synced."""

    def on_job_delete(self, job: Job, store: K8sResourceStore) -> None:
        """Release per-job resources."""

    def _config_map(self, job: Job, data: dict[str, str]) -> client.V1ConfigMap:
        return client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=client.V1ObjectMeta(
                name=self.config_map_name(job),
                namespace=job.namespace,
                owner_references=[controller_ref(job)],
            ),
            data=data,
        )

    def _mount_config_map(
        self, pod: V1Pod, job: Job, mount_path: str, default_mode: int | None = None
    ) -> None:
        volume_name = self.config_map_name(job)
        spec = pod.spec
        if any(v.name == volume_name for v in spec.volumes or []):
            return

        spec.volumes = [
            *(spec.volumes or []),
            client.V1Volume(
                name=volume_name,
                config_map=client.V1ConfigMapVolumeSource(
                    name=volume_name, default_mode=default_mode
                ),
            ),
        ]
        for container in spec.containers:
            mount = client.V1VolumeMount(name=volume_name, mount_path=mount_path)
            container.volume_mounts = [*(container.volume_mounts or []), mount]


class SvcPlugin(Plugin):
    """Publishes the host names of every task replica to each pod."""

    name = "svc"

    def on_pod_create(self, pod: V1Pod, task: TaskSpec, job: Job) -> V1Pod:
        # Pods are addressable as <pod name>.<job name>
        pod.spec.hostname = pod.metadata.name
        pod.spec.subdomain = job.name
        self._mount_config_map(pod, job, SVC_CONFIG_MOUNT_PATH)
        return pod

    def host_files(self, job: Job) -> dict[str, str]:
        data: dict[str, str] = {}
        for task in job.spec.tasks:
            hosts = [
                f"{make_pod_name(job.name, task.name, i)}.{job.name}"
                for i in range(task.replicas)
            ]
            data[f"{task.name.upper()}_NUM"] = str(task.replicas)
            data[f"{task.name}.host"] = "\n".join(hosts)
        return data

    def on_job_add(self, job: Job, store: K8sResourceStore) -> None:
        store.create_config_map(self._config_map(job, self.host_files(job)))

    def on_job_delete(self, job: Job, store: K8sResourceStore) -> None:
        store.delete_config_map(job.namespace, self.config_map_name(job))


class SshPlugin(Plugin):
    """Shares a generated RSA key pair so job pods can ssh into each other."""

    name = "ssh"

    def on_pod_create(self, pod: V1Pod, task: TaskSpec, job: Job) -> V1Pod:
        self._mount_config_map(pod, job, SSH_MOUNT_PATH, default_mode=0o600)
        return pod

    def generate_key_files(self) -> dict[str, str]:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=SSH_KEY_BITS)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public_key = (
            private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.OpenSSH,
                format=serialization.PublicFormat.OpenSSH,
            )
            .decode()
        )
        return {
            "id_rsa": private_pem,
            "id_rsa.pub": public_key,
            "authorized_keys": public_key,
            "config": "StrictHostKeyChecking no\nUserKnownHostsFile /dev/null\n",
        }

    def on_job_add(self, job: Job, store: K8sResourceStore) -> None:
        store.create_config_map(self._config_map(job, self.generate_key_files()))

    def on_job_delete(self, job: Job, store: K8sResourceStore) -> None:
        store.delete_config_map(job.namespace, self.config_map_name(job))


class EnvPlugin(Plugin):
    """Exposes the replica index to containers as environment variables."""

    name = "env"

    def on_pod_create(self, pod: V1Pod, task: TaskSpec, job: Job) -> V1Pod:
        index = get_task_index(pod)
        if index is None:
            return pod

        for container in pod.spec.containers:
            existing = {e.name for e in container.env or []}
            added = [
                client.V1EnvVar(name=name, value=str(index))
                for name in TASK_INDEX_ENV_NAMES
                if name not in existing
            ]
            container.env = [*(container.env or []), *added]
        return pod


PluginFactory = Callable[[list[str]], Plugin]

BUILTIN_PLUGINS: dict[str, PluginFactory] = {
    SvcPlugin.name: SvcPlugin,
    SshPlugin.name: SshPlugin,
    EnvPlugin.name: EnvPlugin,
}


class PluginRegistry:
    """Registry of plugin factories available to jobs.

    Example:
        ```python
        registry = PluginRegistry.from_settings(settings)
        for plugin in registry.plugins_for(job):
            pod = plugin.on_pod_create(pod, task, job)
        ```
    """

    def __init__(
        self,
        factories: dict[str, PluginFactory] | None = None,
        enabled: Iterable[str] | None = None,
    ) -> None:
        self._factories: dict[str, PluginFactory] = dict(factories or {})
        self._enabled = set(enabled) if enabled is not None else None

    @classmethod
    def from_settings(cls, settings: Settings) -> PluginRegistry:
        """Create a registry of the built-in plugins enabled in settings."""
        return cls(factories=BUILTIN_PLUGINS, enabled=settings.enabled_plugins)

    def register(self, name: str, factory: PluginFactory) -> None:
        self._factories[name] = factory

    def is_enabled(self, name: str) -> bool:
        if name not in self._factories:
            return False
        return self._enabled is None or name in self._enabled

    def plugins_for(self, job: Job) -> list[Plugin]:
        """Instantiate the plugins a job requests, ordered by name."""
        plugins = []
        for name in sorted(job.spec.plugins):
            if not self.is_enabled(name):
                logger.warning("Job %s requests unknown plugin %s", job.key, name)
                continue
            plugins.append(self._factories[name](job.spec.plugins[name]))
        return plugins
