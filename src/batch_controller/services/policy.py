"""Lifecycle policy engine resolving the action for a reconciliation request."""

import logging

from batch_controller.models.common import JobAction, JobEvent
from batch_controller.models.job import Job, LifecyclePolicy, Request

logger = logging.getLogger(__name__)


def get_event_list(policy: LifecyclePolicy) -> list[JobEvent]:
    """Return the policy's effective event set (``events`` plus ``event``)."""
    events = list(policy.events)
    if policy.event is not None:
        events.append(policy.event)
    return events


def policy_matches(policy: LifecyclePolicy, request: Request) -> bool:
    """Check whether a single policy fires for the request.

    Event policies fire when the request carries an event that is in the
    policy's event set, or when the set holds the wildcard. Exit code
    policies fire on an exact match, including 0.
    """
    events = get_event_list(policy)
    if events and request.event is not None:
        if request.event in events or JobEvent.ANY in events:
            return True

    return policy.exit_code is not None and policy.exit_code == request.exit_code


def _first_match(
    policies: list[LifecyclePolicy], request: Request
) -> JobAction | None:
    for policy in policies:
        if policy_matches(policy, request):
            return policy.action
    return None


def resolve_action(job: Job, request: Request) -> JobAction:
    """Determine the action to execute for a request.

    Explicit actions win, then out-of-sync and stale requests become a sync.
    Task-level policies are evaluated before job-level policies, first match
    wins at each level. Always returns an action.

    Args:
        job: Current job, used for its version and policies
        request: Incoming reconciliation request

    Returns:
        The action the reconciliation loop should execute
    """
    if request.action is not None:
        return request.action

    if request.event == JobEvent.OUT_OF_SYNC:
        return JobAction.SYNC_JOB

    if request.job_version < job.status.version:
        logger.info("Request %s is outdated, will perform sync instead.", request)
        return JobAction.SYNC_JOB

    if request.task_name:
        task = next((t for t in job.spec.tasks if t.name == request.task_name), None)
        if task is not None:
            action = _first_match(task.policies, request)
            if action is not None:
                return action

    action = _first_match(job.spec.policies, request)
    if action is not None:
        return action

    return JobAction.SYNC_JOB
