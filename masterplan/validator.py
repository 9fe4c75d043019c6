# Schedule validation for the planning engine.
# Version: 1.0.0
# Checks scheduled tasks against working hours, dependency order and graph shape rules.

from collections import defaultdict

from .process_graph import ProcessTask
from .scheduler import WorkingCalendar


def validate_schedule(
    tasks: list[ProcessTask],
    calendar: WorkingCalendar | None = None
) -> list[str]:
    """Validate that a schedule doesn't violate constraints.

    Checks:
    1. Every task is scheduled and starts inside working hours
    2. Every task starts at or after the end of each dependency
    3. Dependencies only reference tasks of the same item
    4. Each item has one assembly task depending on all its production tasks
    5. No task starts before the previous task on the same resource ended

    Args:
        tasks: Scheduled tasks.
        calendar: Working calendar (defaults to 08-18, Mon-Fri).

    Returns:
        List of violation messages (empty if valid).
    """
    calendar = calendar or WorkingCalendar()
    violations = []
    by_id = {t.task_id: t for t in tasks}

    # Working hours
    for task in tasks:
        if not task.is_scheduled:
            violations.append(f"{task.task_id}: not scheduled")
            continue
        if not calendar.is_working_instant(task.start):
            violations.append(
                f"{task.task_id}: starts at {task.start.isoformat()} outside working hours"
            )

    # Dependency order and ownership
    for task in tasks:
        for dep_id in task.dependencies:
            dep = by_id.get(dep_id)
            if dep is None:
                violations.append(f"{task.task_id}: unknown dependency {dep_id}")
                continue
            if dep.item.item_id != task.item.item_id:
                violations.append(
                    f"{task.task_id}: depends on {dep_id} of another item ({dep.item.item_id})"
                )
            if task.is_scheduled and dep.is_scheduled and task.start < dep.end:
                violations.append(
                    f"{task.task_id}: starts at {task.start.isoformat()} before "
                    f"dependency {dep_id} ends at {dep.end.isoformat()}"
                )

    # Assembly fan-in per item
    per_item: dict[str, list[ProcessTask]] = defaultdict(list)
    for task in tasks:
        per_item[task.item.item_id].append(task)

    for item_id, item_tasks in per_item.items():
        assemblies = [t for t in item_tasks if t.plant == "assembly"]
        if len(assemblies) != 1:
            violations.append(f"Item {item_id}: expected 1 assembly task, found {len(assemblies)}")
            continue
        production_ids = {t.task_id for t in item_tasks if t.plant == "production"}
        if set(assemblies[0].dependencies) != production_ids:
            violations.append(
                f"Item {item_id}: assembly task does not depend on every production task"
            )

    # Resource exclusivity
    per_resource: dict[tuple[str, str], list[ProcessTask]] = defaultdict(list)
    for task in tasks:
        if task.is_scheduled:
            per_resource[(task.plant, task.resource)].append(task)

    for (plant, resource), resource_tasks in per_resource.items():
        resource_tasks.sort(key=lambda t: t.start)
        for current, following in zip(resource_tasks, resource_tasks[1:]):
            if following.start < current.end:
                violations.append(
                    f"{plant} resource {resource}: {following.task_id} starts before "
                    f"{current.task_id} ends"
                )

    return violations
