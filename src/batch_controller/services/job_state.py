"""Job phase state machine and condition history bookkeeping.

The condition history holds at most one entry per condition type, kept in
append order. ``set_condition`` upserts an entry by dropping the previous
one of the same type and appending the new one at the end:

- an unchanged (status, reason) pair is a no-op;
- a reason change with the same status keeps the old ``last_transition_time``;
- an active Restarting condition removes Scheduled, Succeeded and Stopped;
- any other condition flips an active Restarting entry to inactive.

Phases are not restricted: any phase may follow any other. The functions
here mutate the given ``JobStatus`` in place and return nothing.
"""

from datetime import UTC, datetime

from batch_controller.models.common import ConditionStatus, JobConditionType, JobPhase
from batch_controller.models.job import JobCondition, JobStatus

RESTART_FINISHED_REASON = "Job finished restarting."

# Phase -> (condition type, reason) recorded when the phase is entered
PHASE_CONDITIONS: dict[JobPhase, tuple[JobConditionType, str]] = {
    JobPhase.PENDING: (JobConditionType.CREATED, "Job created"),
    JobPhase.INQUEUE: (JobConditionType.CREATED, "Job created"),
    JobPhase.RUNNING: (JobConditionType.SCHEDULED, "Job successfully scheduled"),
    JobPhase.COMPLETED: (JobConditionType.SUCCEEDED, "Job completed"),
    JobPhase.FAILED: (JobConditionType.STOPPED, "Job stopped"),
    JobPhase.TERMINATED: (JobConditionType.STOPPED, "Job stopped"),
    JobPhase.ABORTED: (JobConditionType.STOPPED, "Job stopped"),
    JobPhase.RESTARTING: (JobConditionType.RESTARTING, "Job is restarting"),
}

# Conditions invalidated by an active Restarting condition
RESTART_INVALIDATES = frozenset(
    {
        JobConditionType.SCHEDULED,
        JobConditionType.SUCCEEDED,
        JobConditionType.STOPPED,
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_state_condition(
    condition_type: JobConditionType,
    reason: str,
    message: str,
    now: datetime | None = None,
) -> JobCondition:
    """Create an active condition stamped with the current time."""
    now = now or _utcnow()
    return JobCondition(
        type=condition_type,
        status=ConditionStatus.TRUE,
        reason=reason,
        message=message,
        last_update_time=now,
        last_transition_time=now,
    )


def has_condition(status: JobStatus, condition_type: JobConditionType) -> bool:
    """Return True if an active condition of the given type exists."""
    return any(
        c.type == condition_type and c.status == ConditionStatus.TRUE
        for c in status.conditions
    )


def get_condition(
    status: JobStatus, condition_type: JobConditionType
) -> JobCondition | None:
    """Return the first condition of the given type, active or not."""
    for condition in status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def _filter_out_condition(
    conditions: list[JobCondition], incoming: JobCondition, now: datetime
) -> list[JobCondition]:
    restarting = (
        incoming.type == JobConditionType.RESTARTING
        and incoming.status == ConditionStatus.TRUE
    )

    kept: list[JobCondition] = []
    for condition in conditions:
        if condition.type == incoming.type:
            continue

        if restarting and condition.type in RESTART_INVALIDATES:
            continue

        if (
            condition.type == JobConditionType.RESTARTING
            and condition.status == ConditionStatus.TRUE
        ):
            condition = condition.model_copy(
                update={
                    "status": ConditionStatus.FALSE,
                    "reason": RESTART_FINISHED_REASON,
                    "message": "",
                    "last_update_time": now,
                }
            )
        kept.append(condition)
    return kept


def set_condition(
    status: JobStatus, condition: JobCondition, now: datetime | None = None
) -> None:
    """Upsert a condition into the status history.

    Args:
        status: Job status to update in place
        condition: Condition to record
        now: Timestamp used for entries refreshed as a side effect
    """
    current = get_condition(status, condition.type)

    if (
        current is not None
        and current.status == condition.status
        and current.reason == condition.reason
    ):
        return

    condition = condition.model_copy()
    if current is not None and current.status == condition.status:
        condition.last_transition_time = current.last_transition_time

    kept = _filter_out_condition(status.conditions, condition, now or _utcnow())
    status.conditions = [*kept, condition]


def update_job_phase(status: JobStatus, new_phase: JobPhase, message: str) -> None:
    """Move the job to a new phase and record the matching condition.

    Also maintains the start and completion timestamps: a restart clears the
    completion time, a Created condition sets the start time and a Succeeded
    condition sets the completion time, each only when not already set.
    """
    now = _utcnow()

    mapped = PHASE_CONDITIONS.get(new_phase)
    if mapped is not None:
        condition_type, reason = mapped
        set_condition(
            status, new_state_condition(condition_type, reason, message, now), now
        )

    if status.state.phase != new_phase:
        status.state.last_transition_time = now
    status.state.phase = new_phase

    if status.completion_time is not None and has_condition(
        status, JobConditionType.RESTARTING
    ):
        status.completion_time = None

    if status.start_time is None and has_condition(status, JobConditionType.CREATED):
        status.start_time = now

    if status.completion_time is None and has_condition(
        status, JobConditionType.SUCCEEDED
    ):
        status.completion_time = now
