"""Common enums and types used across models."""

from enum import Enum


class JobPhase(str, Enum):
    """Coarse lifecycle phase of a batch Job."""

    PENDING = "Pending"  # Created, pods not yet all scheduled
    ABORTING = "Aborting"
    ABORTED = "Aborted"
    RUNNING = "Running"  # At least min_available pods running
    RESTARTING = "Restarting"  # Pods of the previous version are being killed
    COMPLETING = "Completing"
    COMPLETED = "Completed"
    TERMINATING = "Terminating"
    TERMINATED = "Terminated"
    FAILED = "Failed"
    INQUEUE = "Inqueue"  # Accepted by the scheduler queue


class JobAction(str, Enum):
    """Action the reconciliation loop executes for a request."""

    ABORT_JOB = "AbortJob"
    RESTART_JOB = "RestartJob"
    RESTART_TASK = "RestartTask"
    TERMINATE_JOB = "TerminateJob"
    COMPLETE_JOB = "CompleteJob"
    RESUME_JOB = "ResumeJob"
    SYNC_JOB = "SyncJob"
    ENQUEUE_JOB = "EnqueueJob"


class JobEvent(str, Enum):
    """Lifecycle signal that drives reconciliation."""

    ANY = "*"  # Wildcard, matches any event carried by a request
    POD_FAILED = "PodFailed"
    POD_EVICTED = "PodEvicted"
    JOB_UNKNOWN = "Unknown"
    TASK_COMPLETED = "TaskCompleted"
    OUT_OF_SYNC = "OutOfSync"
    COMMAND_ISSUED = "CommandIssued"


class JobConditionType(str, Enum):
    """Type of a condition in a Job's status history."""

    CREATED = "Created"
    SCHEDULED = "Scheduled"
    SUCCEEDED = "Succeeded"
    STOPPED = "Stopped"
    RESTARTING = "Restarting"


class ConditionStatus(str, Enum):
    """Boolean-ish status of a condition, as in core Kubernetes conditions."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"
