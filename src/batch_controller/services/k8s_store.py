"""Kubernetes resource store for Job custom resources, pods and config maps."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from batch_controller.core.config import Settings, get_settings
from batch_controller.models.job import Job
from batch_controller.models.k8s import JOB_NAME_KEY

if TYPE_CHECKING:
    from kubernetes.client import (
        AdmissionregistrationV1Api,
        CoreV1Api,
        CustomObjectsApi,
        V1ConfigMap,
        V1Pod,
    )

logger = logging.getLogger(__name__)


class ResourceNotFoundError(Exception):
    """Raised when a resource does not exist."""

    pass


class ResourceConflictError(Exception):
    """Raised on optimistic-concurrency conflicts or already existing resources."""

    pass


class TransientStoreError(Exception):
    """Raised when the API server call failed for any other reason."""

    pass


def translate_api_exception(e: ApiException, what: str) -> Exception:
    if e.status == 404:
        return ResourceNotFoundError(f"{what} not found")
    if e.status == 409:
        return ResourceConflictError(f"Conflict on {what}: {e.reason}")
    return TransientStoreError(f"Failed to access {what}: {e.reason}")


class K8sResourceStore:
    """Resource store backed by the Kubernetes API.

    Jobs are read and written as custom resources; their status is replaced
    with the resource version they were read at, so concurrent writers get a
    ``ResourceConflictError`` and must re-fetch.

    Example:
        ```python
        store = K8sResourceStore()
        job = store.get_job("default", "mpi-job")
        pods = store.list_pods(job)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the store with lazy-loaded clients."""
        self.settings = settings or get_settings()
        self._custom_api: CustomObjectsApi | None = None
        self._core_api: CoreV1Api | None = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes clients if not already done."""
        if self._initialized:
            return

        try:
            # Try in-cluster config first (when running in K8s)
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException as e:
            if self.settings.kube_in_cluster_only:
                raise RuntimeError("In-cluster Kubernetes configuration required") from e
            # Fall back to kubeconfig (for local development)
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig Kubernetes configuration")
            except config.ConfigException as e:
                logger.warning("Failed to load Kubernetes configuration: %s", e)
                raise RuntimeError("No Kubernetes configuration available") from e

        self._custom_api = client.CustomObjectsApi()
        self._core_api = client.CoreV1Api()
        self._initialized = True

    @property
    def custom_api(self) -> CustomObjectsApi:
        """Get the CustomObjects API client."""
        self._ensure_initialized()
        assert self._custom_api is not None
        return self._custom_api

    @property
    def core_api(self) -> CoreV1Api:
        """Get the CoreV1 API client."""
        self._ensure_initialized()
        assert self._core_api is not None
        return self._core_api

    @property
    def admission_api(self) -> AdmissionregistrationV1Api:
        """Get an AdmissionregistrationV1 API client."""
        self._ensure_initialized()
        return client.AdmissionregistrationV1Api()

    @property
    def _job_resource(self) -> dict[str, str]:
        return {
            "group": self.settings.job_group,
            "version": self.settings.job_version,
            "plural": self.settings.job_plural,
        }

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def get_job(self, namespace: str, name: str) -> Job:
        """Fetch a job.

        Raises:
            ResourceNotFoundError: If the job does not exist
            TransientStoreError: If the API call failed
        """
        try:
            data = self.custom_api.get_namespaced_custom_object(
                namespace=namespace, name=name, **self._job_resource
            )
        except ApiException as e:
            raise translate_api_exception(e, f"job {namespace}/{name}") from e
        return Job.from_resource(data)

    def list_jobs(self, namespace: str | None = None) -> list[Job]:
        """List jobs in a namespace, or in all namespaces if None."""
        try:
            if namespace:
                data = self.custom_api.list_namespaced_custom_object(
                    namespace=namespace, **self._job_resource
                )
            else:
                data = self.custom_api.list_cluster_custom_object(**self._job_resource)
        except ApiException as e:
            raise translate_api_exception(e, "jobs") from e
        return [Job.from_resource(item) for item in data.get("items", [])]

    def update_job_status(self, job: Job) -> Job:
        """Write the job's status back, guarded by its resource version.

        Raises:
            ResourceConflictError: If the job changed since it was read
        """
        try:
            data = self.custom_api.replace_namespaced_custom_object_status(
                namespace=job.namespace,
                name=job.name,
                body=job.to_resource(),
                **self._job_resource,
            )
        except ApiException as e:
            raise translate_api_exception(e, f"job {job.key}") from e
        return Job.from_resource(data)

    # -------------------------------------------------------------------------
    # Pods
    # -------------------------------------------------------------------------

    def list_pods(self, job: Job) -> list[V1Pod]:
        """List the pods labelled as belonging to a job."""
        try:
            pods = self.core_api.list_namespaced_pod(
                namespace=job.namespace,
                label_selector=f"{JOB_NAME_KEY}={job.name}",
            )
        except ApiException as e:
            raise translate_api_exception(e, f"pods of job {job.key}") from e
        return list(pods.items)

    def create_pod(self, pod: V1Pod) -> V1Pod:
        """Create a pod.

        Raises:
            ResourceConflictError: If a pod with that name already exists
        """
        namespace = pod.metadata.namespace
        try:
            created = self.core_api.create_namespaced_pod(namespace=namespace, body=pod)
        except ApiException as e:
            raise translate_api_exception(e, f"pod {namespace}/{pod.metadata.name}") from e
        logger.info("Created pod %s/%s", namespace, pod.metadata.name)
        return created

    def delete_pod(self, namespace: str, name: str) -> None:
        """Delete a pod; a pod that is already gone is not an error."""
        try:
            self.core_api.delete_namespaced_pod(name=name, namespace=namespace)
            logger.info("Deleted pod %s/%s", namespace, name)
        except ApiException as e:
            if e.status == 404:
                logger.warning("Pod %s/%s not found, already deleted?", namespace, name)
                return
            raise translate_api_exception(e, f"pod {namespace}/{name}") from e

    # -------------------------------------------------------------------------
    # Config maps (plugin data)
    # -------------------------------------------------------------------------

    def create_config_map(self, config_map: V1ConfigMap) -> None:
        """Create a config map, leaving an existing one in place."""
        namespace = config_map.metadata.namespace
        try:
            self.core_api.create_namespaced_config_map(
                namespace=namespace, body=config_map
            )
            logger.info("Created config map %s/%s", namespace, config_map.metadata.name)
        except ApiException as e:
            if e.status == 409:
                logger.debug("Config map %s already exists", config_map.metadata.name)
                return
            raise translate_api_exception(e, f"config map {config_map.metadata.name}") from e

    def delete_config_map(self, namespace: str, name: str) -> None:
        """Delete a config map; a missing one is not an error."""
        try:
            self.core_api.delete_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return
            raise translate_api_exception(e, f"config map {namespace}/{name}") from e
