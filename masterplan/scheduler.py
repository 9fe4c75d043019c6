# Greedy production scheduler for the planning engine.
# Version: 1.0.0
# Orders tasks by priority, resolves start times under dependency and resource constraints.

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from .constants import PlanningConstants, Priority, build_constants
from .errors import MissingDependencyError
from .logger import logger
from .process_graph import ProcessTask, ProductionPlan
from .resources import ResourceTimelines


# Lower rank is scheduled first
PRIORITY_RANK: dict[Priority, int] = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class WorkingCalendar:
    """Working-hours calendar used to place task starts.

    Attributes:
        start_hour: First working hour (inclusive).
        end_hour: End of the working day (exclusive).
        work_days: Weekday numbers (Monday=0) that are worked.
        holidays: Closure dates treated like weekend days.
    """
    start_hour: int = 8
    end_hour: int = 18
    work_days: frozenset[int] = frozenset({0, 1, 2, 3, 4})
    holidays: frozenset[date] = frozenset()

    @classmethod
    def from_constants(cls, constants: PlanningConstants) -> "WorkingCalendar":
        return cls(
            start_hour=constants.work_start_hour,
            end_hour=constants.work_end_hour,
            work_days=frozenset(constants.work_days),
            holidays=frozenset(constants.holidays),
        )

    def is_work_day(self, day: date) -> bool:
        return day.weekday() in self.work_days and day not in self.holidays

    def is_working_instant(self, moment: datetime) -> bool:
        """Check if a moment falls inside working hours on a work day."""
        return self.is_work_day(moment.date()) and self.start_hour <= moment.hour < self.end_hour

    def snap(self, moment: datetime) -> datetime:
        """Move a moment forward to the next valid working instant.

        Before opening moves to opening time the same day; at or after
        closing moves to opening time the next day; a non-working day is
        pushed forward to the next work day.

        Args:
            moment: Earliest allowed start.

        Returns:
            Snapped start time.
        """
        snapped = moment
        if snapped.hour < self.start_hour:
            snapped = snapped.replace(hour=self.start_hour, minute=0, second=0, microsecond=0)
        elif snapped.hour >= self.end_hour:
            snapped = (snapped + timedelta(days=1)).replace(
                hour=self.start_hour, minute=0, second=0, microsecond=0
            )

        # Bounded: work_days is never empty, holidays are finite
        for _ in range(366 + len(self.holidays)):
            if self.is_work_day(snapped.date()):
                break
            snapped += timedelta(days=1)
        return snapped

    def end_of_day(self, moment: datetime) -> datetime:
        """Return 23:59:59 of the moment's day."""
        return moment.replace(hour=23, minute=59, second=59, microsecond=0)


@dataclass
class ScheduleWarning:
    """A non-fatal scheduling issue.

    Attributes:
        task_id: Task the warning refers to.
        message: Human-readable description.
    """
    task_id: str
    message: str


@dataclass
class ScheduleResult:
    """Result of one scheduling run.

    Attributes:
        tasks: Tasks in the order they were scheduled, start/end populated.
        timelines: Resource availability after the run.
        warnings: Tolerated problems (unresolved dependencies).
        epoch: Scheduling epoch used.
    """
    tasks: list[ProcessTask] = field(default_factory=list)
    timelines: ResourceTimelines = field(default_factory=ResourceTimelines)
    warnings: list[ScheduleWarning] = field(default_factory=list)
    epoch: datetime | None = None

    @property
    def horizon_end(self) -> datetime | None:
        """Latest end time across all tasks."""
        ends = [t.end for t in self.tasks if t.end is not None]
        return max(ends) if ends else None


def _sort_key(task: ProcessTask) -> tuple[int, date]:
    return (PRIORITY_RANK.get(task.priority, len(PRIORITY_RANK)), task.item.due_date or date.max)


def schedule_tasks(
    tasks: list[ProcessTask],
    epoch: datetime | None = None,
    calendar: WorkingCalendar | None = None,
    strict: bool = False
) -> ScheduleResult:
    """Assign start and end times to every task.

    Tasks are ordered by priority (high first) then by the owning item's
    due date; the sort is stable so an item's chain keeps creation order.
    Each start is the latest of the epoch, the dependencies' ends and the
    resource's availability, snapped into working hours. The end is
    pinned to 23:59:59 of the start day and becomes the resource's new
    availability.

    Args:
        tasks: Unscheduled tasks (mutated in place).
        epoch: Earliest allowed start (defaults to now).
        calendar: Working calendar (defaults to 08-18, Mon-Fri).
        strict: Raise instead of warning on unresolvable dependencies.

    Returns:
        ScheduleResult with tasks in scheduling order.

    Raises:
        MissingDependencyError: In strict mode, if a dependency is not scheduled first.
    """
    epoch = epoch or datetime.now()
    calendar = calendar or WorkingCalendar()

    ordered = sorted(tasks, key=_sort_key)
    result = ScheduleResult(epoch=epoch)
    scheduled_end: dict[str, datetime] = {}

    for task in ordered:
        earliest = epoch

        missing = [dep for dep in task.dependencies if dep not in scheduled_end]
        if missing:
            if strict:
                raise MissingDependencyError(task.task_id, missing)
            logger.warning(
                f"Task {task.task_id}: ignoring {len(missing)} unscheduled dependency(ies)"
            )
            result.warnings.append(ScheduleWarning(
                task_id=task.task_id,
                message=f"Unscheduled dependencies ignored: {', '.join(missing)}"
            ))

        dependency_ends = [scheduled_end[dep] for dep in task.dependencies if dep in scheduled_end]
        if dependency_ends:
            earliest = max(earliest, max(dependency_ends))

        available = result.timelines.available_at(task.plant, task.resource)
        if available is not None:
            earliest = max(earliest, available)

        start = calendar.snap(earliest)
        end = calendar.end_of_day(start)

        task.start = start
        task.end = end
        scheduled_end[task.task_id] = end
        result.timelines.reserve(task.plant, task.resource, end)
        result.tasks.append(task)

    logger.info(f"Scheduled {len(result.tasks)} tasks ({len(result.warnings)} warning(s))")
    return result


def schedule_plan(
    plan: ProductionPlan,
    epoch: datetime | None = None,
    constants: PlanningConstants | None = None
) -> ScheduleResult:
    """Schedule every task of a production plan.

    Plans are built item by item, so every dependency exists; the run is
    strict and a missing dependency surfaces as MissingDependencyError.

    Args:
        plan: ProductionPlan from the graph builder.
        epoch: Earliest allowed start (defaults to now).
        constants: Planning constants for the working calendar.

    Returns:
        ScheduleResult for all tasks of the plan.
    """
    constants = constants or build_constants()
    calendar = WorkingCalendar.from_constants(constants)
    return schedule_tasks(plan.tasks, epoch=epoch, calendar=calendar, strict=True)


def summarize_schedule(result: ScheduleResult) -> dict:
    """Summarize a schedule for display.

    Args:
        result: ScheduleResult to summarize.

    Returns:
        Dictionary with task counts per plant, resource and priority, and the horizon.
    """
    per_plant = Counter(t.plant for t in result.tasks)
    per_resource = Counter(t.resource for t in result.tasks)
    per_priority = Counter(t.priority for t in result.tasks)
    starts = [t.start for t in result.tasks if t.start is not None]
    horizon_end = result.horizon_end
    busiest = result.timelines.busiest()

    return {
        "total_tasks": len(result.tasks),
        "tasks_by_plant": dict(per_plant),
        "tasks_by_resource": dict(per_resource),
        "tasks_by_priority": dict(per_priority),
        "first_start": min(starts).isoformat() if starts else None,
        "horizon_end": horizon_end.isoformat() if horizon_end else None,
        "busiest_resource": busiest[0] if busiest else None,
        "warnings": len(result.warnings),
    }
