"""Job reconciliation: executes resolved actions and drives the control loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from batch_controller.core.config import Settings, get_settings
from batch_controller.core.telemetry import get_tracer
from batch_controller.models.common import JobAction, JobEvent, JobPhase
from batch_controller.models.job import Job, Request
from batch_controller.models.k8s import JOB_VERSION_KEY, TASK_SPEC_KEY
from batch_controller.services.job_state import update_job_phase
from batch_controller.services.k8s_store import (
    K8sResourceStore,
    ResourceConflictError,
    ResourceNotFoundError,
)
from batch_controller.services.plugins import PluginRegistry
from batch_controller.services.pod_builder import (
    PodBuilder,
    get_pod_version,
    make_pod_name,
)
from batch_controller.services.policy import resolve_action
from batch_controller.services.resources import calc_min_resources, format_resource_list
from batch_controller.services.task_priority import sort_tasks_by_priority

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

TERMINAL_PHASES = frozenset(
    {JobPhase.COMPLETED, JobPhase.FAILED, JobPhase.TERMINATED, JobPhase.ABORTED}
)

PLUGIN_RESOURCE_PREFIX = "plugin-"

# Most recent controller errors kept for the status endpoint
ERROR_HISTORY_LIMIT = 100


@dataclass
class PodCounts:
    """Pods of the current job version grouped by phase."""

    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    terminating: int = 0
    unknown: int = 0


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    key: str
    action: JobAction
    phase: JobPhase
    pods_created: int = 0
    pods_deleted: int = 0
    min_resources: dict[str, str] = field(default_factory=dict)
    follow_ups: list[Request] = field(default_factory=list)


@dataclass
class ControllerMetrics:
    """Counters from the reconciliation controller."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    reconciles: int = 0
    resyncs: int = 0
    conflicts: int = 0
    errors: deque[str] = field(
        default_factory=lambda: deque(maxlen=ERROR_HISTORY_LIMIT)
    )


def _task_of(pod: V1Pod, job: Job) -> str | None:
    """Find the task a job pod was built from.

    The pod name minus its replica index must equal ``<job>-<task>`` exactly,
    so tasks sharing a name prefix ("worker", "worker-gpu") stay apart.
    """
    prefix, _, index = (pod.metadata.name or "").rpartition("-")
    if not index.isdigit():
        return None
    for task in job.spec.tasks:
        if prefix == f"{job.name}-{task.name}":
            return task.name
    return None


def _exit_code(pod: V1Pod) -> int | None:
    for status in (pod.status.container_statuses if pod.status else None) or []:
        terminated = status.state.terminated if status.state else None
        if terminated is not None:
            return terminated.exit_code
    return None


class JobReconciler:
    """Executes one reconciliation pass for a request.

    The pass fetches the job, resolves the action with the policy engine,
    executes it against the resource store and writes the status back. A
    conflicting status write re-runs the whole pass on a fresh copy of the
    job, up to ``max_conflict_retries`` times.

    Example:
        ```python
        reconciler = JobReconciler(store=K8sResourceStore())
        result = reconciler.reconcile(
            Request(namespace="default", jobName="mpi", event=JobEvent.OUT_OF_SYNC)
        )
        ```
    """

    def __init__(
        self,
        store: K8sResourceStore,
        settings: Settings | None = None,
        plugins: PluginRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.plugins = plugins or PluginRegistry.from_settings(self.settings)
        self.pod_builder = PodBuilder(plugins=self.plugins)
        self._handlers: dict[JobAction, Callable[[Job, Request], ReconcileResult]] = {
            JobAction.SYNC_JOB: self._sync_job,
            JobAction.RESTART_JOB: self._restart_job,
            JobAction.RESTART_TASK: self._restart_task,
            JobAction.ABORT_JOB: self._abort_job,
            JobAction.TERMINATE_JOB: self._terminate_job,
            JobAction.COMPLETE_JOB: self._complete_job,
            JobAction.RESUME_JOB: self._resume_job,
            JobAction.ENQUEUE_JOB: self._enqueue_job,
        }

    def reconcile(self, request: Request) -> ReconcileResult | None:
        """Run a reconciliation pass.

        Returns:
            The pass result, or None if the job no longer exists

        Raises:
            ResourceConflictError: If every attempt hit a write conflict
        """
        attempts = self.settings.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                job = self.store.get_job(request.namespace, request.job_name)
            except ResourceNotFoundError:
                logger.info("Job %s not found, skipping %s", request.key, request)
                return None

            action = resolve_action(job, request)
            with tracer.start_as_current_span("reconcile") as span:
                span.set_attribute("job.key", job.key)
                span.set_attribute("job.action", action.value)
                try:
                    result = self._handlers[action](job, request)
                    self.store.update_job_status(job)
                except ResourceConflictError as e:
                    logger.warning(
                        "Conflict reconciling %s (attempt %d/%d): %s",
                        job.key,
                        attempt,
                        attempts,
                        e,
                    )
                    continue

            logger.info(
                "Reconciled %s: action=%s phase=%s created=%d deleted=%d min=%s",
                job.key,
                action.value,
                result.phase.value,
                result.pods_created,
                result.pods_deleted,
                result.min_resources,
            )
            return result

        raise ResourceConflictError(
            f"Gave up reconciling {request.key} after {attempts} conflicting attempts"
        )

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def _ensure_plugins(self, job: Job) -> None:
        for plugin in self.plugins.plugins_for(job):
            marker = PLUGIN_RESOURCE_PREFIX + plugin.name
            if marker in job.status.controlled_resources:
                continue
            plugin.on_job_add(job, self.store)
            job.status.controlled_resources[marker] = plugin.name

    def _release_plugins(self, job: Job) -> None:
        for plugin in self.plugins.plugins_for(job):
            marker = PLUGIN_RESOURCE_PREFIX + plugin.name
            if job.status.controlled_resources.pop(marker, None) is not None:
                plugin.on_job_delete(job, self.store)

    def _sync_job(self, job: Job, request: Request) -> ReconcileResult:
        result = ReconcileResult(
            key=job.key,
            action=JobAction.SYNC_JOB,
            phase=job.status.state.phase,
            min_resources=format_resource_list(calc_min_resources(job)),
        )
        if job.status.state.phase in TERMINAL_PHASES:
            return result

        if not job.spec.scheduler_name:
            job.spec.scheduler_name = self.settings.default_scheduler_name
        self._ensure_plugins(job)

        existing = {pod.metadata.name: pod for pod in self.store.list_pods(job)}
        version = job.status.version
        counts = PodCounts()
        desired: set[str] = set()

        for task in sort_tasks_by_priority(job.spec.tasks):
            for index in range(task.replicas):
                name = make_pod_name(job.name, task.name, index)
                desired.add(name)
                if name in existing:
                    continue
                try:
                    self.store.create_pod(self.pod_builder.build(job, task, index))
                    result.pods_created += 1
                except ResourceConflictError:
                    logger.debug("Pod %s already exists", name)
                counts.pending += 1

        for name, pod in existing.items():
            if pod.metadata.deletion_timestamp is not None:
                counts.terminating += 1
                continue
            if name not in desired or get_pod_version(pod) != version:
                self.store.delete_pod(job.namespace, name)
                result.pods_deleted += 1
                counts.terminating += 1
                continue
            self._count_pod(pod, counts)
            result.follow_ups.extend(self._pod_requests(job, pod))

        result.follow_ups.extend(self._task_completed_requests(job, existing, version))
        result.follow_ups = [
            r for r in result.follow_ups if resolve_action(job, r) != JobAction.SYNC_JOB
        ]

        job.status.min_resources = dict(result.min_resources)
        self._record_counts(job, counts)
        self._advance_sync_phase(job, counts)
        result.phase = job.status.state.phase
        return result

    def _count_pod(self, pod: V1Pod, counts: PodCounts) -> None:
        phase = pod.status.phase if pod.status else None
        if phase == "Running":
            counts.running += 1
        elif phase == "Succeeded":
            counts.succeeded += 1
        elif phase == "Failed":
            counts.failed += 1
        elif phase in (None, "Pending"):
            counts.pending += 1
        else:
            counts.unknown += 1

    def _pod_requests(self, job: Job, pod: V1Pod) -> list[Request]:
        phase = pod.status.phase if pod.status else None
        if phase != "Failed":
            return []
        return [
            Request(
                namespace=job.namespace,
                job_name=job.name,
                task_name=_task_of(pod, job),
                event=JobEvent.POD_FAILED,
                exit_code=_exit_code(pod),
                job_version=job.status.version,
            )
        ]

    def _task_completed_requests(
        self, job: Job, pods: dict[str, V1Pod], version: int
    ) -> list[Request]:
        requests = []
        for task in job.spec.tasks:
            if task.replicas == 0:
                continue
            names = [make_pod_name(job.name, task.name, i) for i in range(task.replicas)]
            if all(
                name in pods
                and pods[name].status is not None
                and pods[name].status.phase == "Succeeded"
                and get_pod_version(pods[name]) == version
                for name in names
            ):
                requests.append(
                    Request(
                        namespace=job.namespace,
                        job_name=job.name,
                        task_name=task.name,
                        event=JobEvent.TASK_COMPLETED,
                        job_version=version,
                    )
                )
        return requests

    def _record_counts(self, job: Job, counts: PodCounts) -> None:
        status = job.status
        status.pending = counts.pending
        status.running = counts.running
        status.succeeded = counts.succeeded
        status.failed = counts.failed
        status.terminating = counts.terminating
        status.unknown = counts.unknown
        status.min_available = job.spec.min_available

    def _advance_sync_phase(self, job: Job, counts: PodCounts) -> None:
        total = sum(task.replicas for task in job.spec.tasks)
        min_available = job.spec.min_available or total
        phase = job.status.state.phase

        if phase in (JobPhase.PENDING, JobPhase.INQUEUE, JobPhase.RESTARTING):
            if total > 0 and counts.running + counts.succeeded >= min_available:
                update_job_phase(job.status, JobPhase.RUNNING, "")
            else:
                update_job_phase(job.status, JobPhase.PENDING, "")
        elif phase == JobPhase.RUNNING and total > 0:
            if counts.succeeded + counts.failed == total:
                if counts.succeeded >= min_available:
                    update_job_phase(job.status, JobPhase.COMPLETED, "")
                else:
                    update_job_phase(
                        job.status,
                        JobPhase.FAILED,
                        f"{counts.failed} pods failed, {min_available} required",
                    )

    # -------------------------------------------------------------------------
    # Kill-based actions
    # -------------------------------------------------------------------------

    def _kill_pods(self, job: Job, task_name: str | None = None) -> int:
        deleted = 0
        for pod in self.store.list_pods(job):
            if pod.metadata.deletion_timestamp is not None:
                continue
            annotations = pod.metadata.annotations or {}
            if task_name is not None and _task_of(pod, job) != task_name:
                continue
            self.store.delete_pod(job.namespace, pod.metadata.name)
            logger.debug(
                "Killed pod %s (task %s, version %s)",
                pod.metadata.name,
                annotations.get(TASK_SPEC_KEY),
                annotations.get(JOB_VERSION_KEY),
            )
            deleted += 1
        return deleted

    def _finish_job(
        self, job: Job, action: JobAction, phase: JobPhase, message: str
    ) -> ReconcileResult:
        deleted = self._kill_pods(job)
        self._release_plugins(job)
        update_job_phase(job.status, phase, message)
        return ReconcileResult(
            key=job.key, action=action, phase=phase, pods_deleted=deleted
        )

    def _abort_job(self, job: Job, request: Request) -> ReconcileResult:
        return self._finish_job(job, JobAction.ABORT_JOB, JobPhase.ABORTED, "Job aborted")

    def _terminate_job(self, job: Job, request: Request) -> ReconcileResult:
        return self._finish_job(
            job, JobAction.TERMINATE_JOB, JobPhase.TERMINATED, "Job terminated"
        )

    def _complete_job(self, job: Job, request: Request) -> ReconcileResult:
        return self._finish_job(
            job, JobAction.COMPLETE_JOB, JobPhase.COMPLETED, "Job completed"
        )

    def _restart_job(self, job: Job, request: Request) -> ReconcileResult:
        status = job.status
        deleted = self._kill_pods(job)
        if status.retry_count >= job.spec.max_retry:
            self._release_plugins(job)
            update_job_phase(
                status,
                JobPhase.FAILED,
                f"Job failed after {status.retry_count} retries",
            )
        else:
            status.retry_count += 1
            status.version += 1
            update_job_phase(
                status, JobPhase.RESTARTING, f"Restart {status.retry_count} of job"
            )
        return ReconcileResult(
            key=job.key,
            action=JobAction.RESTART_JOB,
            phase=status.state.phase,
            pods_deleted=deleted,
        )

    def _restart_task(self, job: Job, request: Request) -> ReconcileResult:
        if not request.task_name:
            logger.warning("RestartTask without a task name for %s, syncing", job.key)
            return self._sync_job(job, request)

        deleted = self._kill_pods(job, task_name=request.task_name)
        return ReconcileResult(
            key=job.key,
            action=JobAction.RESTART_TASK,
            phase=job.status.state.phase,
            pods_deleted=deleted,
        )

    def _resume_job(self, job: Job, request: Request) -> ReconcileResult:
        job.status.version += 1
        update_job_phase(job.status, JobPhase.RESTARTING, "Job resumed")
        return ReconcileResult(
            key=job.key, action=JobAction.RESUME_JOB, phase=JobPhase.RESTARTING
        )

    def _enqueue_job(self, job: Job, request: Request) -> ReconcileResult:
        update_job_phase(job.status, JobPhase.INQUEUE, "Job accepted by queue")
        return ReconcileResult(
            key=job.key, action=JobAction.ENQUEUE_JOB, phase=JobPhase.INQUEUE
        )


class JobController:
    """Background controller feeding requests to the reconciler.

    Requests are queued and processed by a pool of workers. A job key is
    never reconciled by two workers at once: requests for a key that is in
    flight are parked and re-queued when the running pass finishes. Every
    ``resync_interval_seconds`` all jobs are queued for a sync.

    Example:
        ```python
        controller = JobController(reconciler=JobReconciler(store))
        await controller.start()
        await controller.enqueue(request)
        await controller.stop()
        ```
    """

    def __init__(
        self,
        reconciler: JobReconciler,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.reconciler = reconciler
        self.metrics = ControllerMetrics()
        self._queue: asyncio.Queue[Request] = asyncio.Queue()
        self._in_flight: set[str] = set()
        self._parked: dict[str, list[Request]] = defaultdict(list)
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running and bool(self._tasks)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() + sum(len(r) for r in self._parked.values())

    @property
    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)

    async def enqueue(self, request: Request) -> None:
        """Queue a request for reconciliation."""
        await self._queue.put(request)

    async def process_next(self) -> ReconcileResult | None:
        """Take one request off the queue and reconcile it."""
        request = await self._queue.get()
        try:
            key = request.key
            if key in self._in_flight:
                self._parked[key].append(request)
                return None

            self._in_flight.add(key)
            try:
                result = await asyncio.to_thread(self.reconciler.reconcile, request)
                self.metrics.reconciles += 1
            except ResourceConflictError as e:
                self.metrics.conflicts += 1
                logger.error("Reconciliation of %s failed: %s", key, e)
                return None
            except Exception as e:
                self.metrics.errors.append(f"{key}: {e}")
                logger.error("Error reconciling %s: %s", key, e)
                return None
            finally:
                self._in_flight.discard(key)
                for parked in self._parked.pop(key, []):
                    self._queue.put_nowait(parked)

            if result is not None:
                for follow_up in result.follow_ups:
                    await self.enqueue(follow_up)
            return result
        finally:
            self._queue.task_done()

    async def resync(self) -> int:
        """Queue an out-of-sync request for every job; returns the count."""
        jobs = await asyncio.to_thread(
            self.reconciler.store.list_jobs, self.settings.watch_namespace
        )
        for job in jobs:
            await self.enqueue(
                Request(
                    namespace=job.namespace,
                    job_name=job.name,
                    event=JobEvent.OUT_OF_SYNC,
                    job_version=job.status.version,
                )
            )
        self.metrics.resyncs += 1
        return len(jobs)

    async def _worker(self, index: int) -> None:
        while self._running:
            try:
                await self.process_next()
            except asyncio.CancelledError:
                break

    async def _resync_loop(self) -> None:
        interval = self.settings.resync_interval_seconds
        logger.info("Job controller resync running every %d seconds", interval)

        while self._running:
            try:
                await self.resync()
            except Exception as e:
                self.metrics.errors.append(f"resync: {e}")
                logger.error("Error listing jobs for resync: %s", e)

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    async def start(self) -> None:
        """Start the workers and the resync loop.

        Does nothing if the controller is disabled in settings or already running.
        """
        if not self.settings.controller_enabled:
            logger.info("Job controller is disabled in settings")
            return

        if self._running:
            logger.warning("Job controller is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker(i))
            for i in range(self.settings.controller_workers)
        ]
        self._tasks.append(asyncio.create_task(self._resync_loop()))
        logger.info(
            "Job controller started with %d workers", self.settings.controller_workers
        )

    async def stop(self) -> None:
        """Stop workers and the resync loop."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

        logger.info("Job controller stopped")
