"""Stable ordering of job tasks by descending priority."""

from collections.abc import Iterable

from batch_controller.models.job import TaskSpec


def task_priority_key(task: TaskSpec) -> int:
    """Sort key placing higher priority tasks first."""
    return -task.priority


def sort_tasks_by_priority(tasks: Iterable[TaskSpec]) -> list[TaskSpec]:
    """Return tasks ordered by descending priority.

    ``sorted`` is stable, so tasks with equal priority keep their
    declaration order.
    """
    return sorted(tasks, key=task_priority_key)
