"""Resource quantity aggregation for jobs and tasks.

Quantities are parsed with ``kubernetes.utils.parse_quantity`` into
``Decimal`` values so sums stay exact ("100m" + "900m" == 1).
"""

from collections.abc import Mapping
from decimal import Decimal

from kubernetes.utils import parse_quantity

from batch_controller.models.job import Job, TaskSpec
from batch_controller.services.task_priority import sort_tasks_by_priority

ResourceList = dict[str, Decimal]
QuantityMap = Mapping[str, str | int | float | Decimal]


def add_resource_list(
    accumulator: ResourceList,
    requests: QuantityMap | None,
    limits: QuantityMap | None,
) -> None:
    """Merge one container's requests and limits into an accumulator.

    Requests are summed into the accumulator. A resource that only appears
    in limits is then seeded with the limit, since an omitted request
    defaults to the limit. Requests always win over limit-derived values.

    Args:
        accumulator: Totals updated in place
        requests: Requested quantities by resource name
        limits: Limit quantities by resource name
    """
    for name, quantity in (requests or {}).items():
        accumulator[name] = accumulator.get(name, Decimal(0)) + parse_quantity(
            quantity
        )

    for name, quantity in (limits or {}).items():
        if name not in accumulator:
            accumulator[name] = parse_quantity(quantity)


def pod_resources(task: TaskSpec) -> ResourceList:
    """Return the resources requested by one pod of a task."""
    total: ResourceList = {}
    spec = task.template.spec
    if spec is None:
        return total

    for container in spec.containers or []:
        resources = container.resources
        if resources is None:
            continue
        add_resource_list(total, resources.requests, resources.limits)
    return total


def calc_min_resources(job: Job) -> ResourceList:
    """Sum the resources of the first ``min_available`` pods of a job.

    Tasks are walked in priority order so the minimum covers the pods the
    scheduler must place first.
    """
    total: ResourceList = {}
    remaining = job.spec.min_available

    for task in sort_tasks_by_priority(job.spec.tasks):
        if remaining <= 0:
            break
        per_pod = pod_resources(task)
        for _ in range(min(task.replicas, remaining)):
            add_resource_list(total, per_pod, None)
        remaining -= task.replicas
    return total


def format_resource_list(resources: ResourceList) -> dict[str, str]:
    """Render exact totals as quantity strings, keys sorted."""
    return {name: _format_quantity(resources[name]) for name in sorted(resources)}


def _format_quantity(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    # Sub-unit values (fractional CPU) are rendered in milli units
    milli = value * 1000
    if milli == milli.to_integral_value():
        return f"{int(milli)}m"
    return format(value.normalize(), "f")
