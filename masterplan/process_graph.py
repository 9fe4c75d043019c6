# Build per-item process task chains for the planning engine.
# Version: 1.0.0
# Derives required process steps, durations, priorities and resources for each ProductionItem.

import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from math import ceil
from typing import Any

from .constants import (
    ASSEMBLY,
    PlanningConstants,
    Plant,
    Priority,
    ProcessKind,
    TaskStatus,
    build_constants,
)
from .data_loader import IngestionResult, NormalizedRow, ProductionItem, SkippedRow, normalize_rows
from .logger import logger
from .resources import ResourcePool, create_resource_pool


@dataclass
class ProcessTask:
    """One unit of work for one process step of one item.

    Created by the graph builder; the scheduler fills in start/end, user
    interaction (outside this package) changes status.

    Attributes:
        task_id: Unique task identifier.
        item: Owning ProductionItem.
        process: Process kind (a production step or "assembly").
        plant: "production" or "assembly".
        resource: Machine id (production) or assembly line id.
        duration_hours: Estimated duration in hours.
        dependencies: Ids of tasks of the same item that must finish first.
        priority: Priority class inherited from the item.
        sequence: 1-based position within the item's chain.
        title: Display title (PROJECT_COMPONENT).
        description: Multi-line display description.
        status: Lifecycle status.
        from_fallback: Whether the step came from the material fallback rules.
        start: Scheduled start, None until scheduled.
        end: Scheduled end, None until scheduled.
    """
    task_id: str
    item: ProductionItem
    process: ProcessKind
    plant: Plant
    resource: str
    duration_hours: int
    dependencies: tuple[str, ...]
    priority: Priority
    sequence: int
    title: str = ""
    description: str = ""
    status: TaskStatus = "pending"
    from_fallback: bool = False
    start: datetime | None = None
    end: datetime | None = None

    @property
    def is_scheduled(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass
class ItemTaskGraph:
    """Ordered task list for one item plus its dependency adjacency.

    Production steps form a linear chain (each depends on the previous
    one); the final assembly task fans in from every production step.

    Attributes:
        item: The ProductionItem these tasks belong to.
        tasks: Tasks in creation order, assembly last.
        predecessors: For each task index, the indices it depends on.
        used_fallback: Whether the production steps came from material rules.
    """
    item: ProductionItem
    tasks: list[ProcessTask] = field(default_factory=list)
    predecessors: list[tuple[int, ...]] = field(default_factory=list)
    used_fallback: bool = False

    @property
    def production_tasks(self) -> list[ProcessTask]:
        return [t for t in self.tasks if t.plant == "production"]

    @property
    def assembly_task(self) -> ProcessTask | None:
        for task in self.tasks:
            if task.plant == "assembly":
                return task
        return None

    def dependencies_of(self, index: int) -> list[ProcessTask]:
        """Resolve the dependencies of the task at index by position."""
        return [self.tasks[i] for i in self.predecessors[index]]


@dataclass
class ProductionPlan:
    """All items and task graphs produced from one sheet.

    Attributes:
        graphs: One ItemTaskGraph per accepted item, in sheet order.
        pool: Line rotation pool after the last item.
        skipped: Rows the normalizer dropped.
    """
    graphs: list[ItemTaskGraph] = field(default_factory=list)
    pool: ResourcePool | None = None
    skipped: list[SkippedRow] = field(default_factory=list)

    @property
    def items(self) -> list[ProductionItem]:
        return [g.item for g in self.graphs]

    @property
    def tasks(self) -> list[ProcessTask]:
        return [t for g in self.graphs for t in g.tasks]

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def tasks_for_plant(self, plant: Plant) -> list[ProcessTask]:
        return [t for t in self.tasks if t.plant == plant]


def generate_task_id(order_id: str, process: str, position: int | str, index: int | None = None) -> str:
    """Generate a unique task/event identifier.

    Composite of order id, process kind, position, the current time in
    milliseconds and a random suffix.
    """
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(4)
    parts = [str(order_id), str(process).upper(), str(position), str(timestamp)]
    if index is not None:
        parts.append(str(index))
    parts.append(random_part)
    return "-".join(parts)


def task_title(project: str, component: str) -> str:
    """Build the standard [PROJECT]_[COMPONENT] title."""
    clean_project = "_".join(project.split()).upper()
    clean_component = "_".join(component.split()).upper()
    if not clean_component:
        return clean_project
    return f"{clean_project}_{clean_component}"


def determine_priority(
    due_date: date | None,
    today: date,
    constants: PlanningConstants
) -> Priority:
    """Derive the priority class from due-date proximity.

    Args:
        due_date: Item due date, or None when unknown.
        today: Reference date.
        constants: Thresholds (high/medium days).

    Returns:
        "high" if due within high_priority_days, "medium" within
        medium_priority_days or when unknown, otherwise "low".
    """
    if due_date is None:
        return "medium"
    days_until_due = (due_date - today).days
    if days_until_due <= constants.high_priority_days:
        return "high"
    if days_until_due <= constants.medium_priority_days:
        return "medium"
    return "low"


def estimate_process_duration(
    process: str,
    sheets: int,
    quantity: int,
    constants: PlanningConstants
) -> int:
    """Estimate hours for a production step.

    Formula: ROUNDUP(SHEETS / 100 × RATE + QUANTITY / 5000), at least 1.
    """
    rate = constants.get_process_rate(process)
    hours = (sheets / constants.sheets_per_rate_unit) * rate + quantity / constants.quantity_addend_divisor
    return max(1, ceil(hours))


def estimate_assembly_duration(quantity: int, constants: PlanningConstants) -> int:
    """Estimate assembly hours: one hour per 1000 units, at least 1."""
    return max(1, ceil(quantity / constants.assembly_units_per_hour))


def select_processes(
    row: NormalizedRow,
    constants: PlanningConstants
) -> tuple[tuple[ProcessKind, ...], bool]:
    """Choose the production steps for an item.

    Flagged steps win; with no flag set the material fallback rules apply.

    Returns:
        Tuple of (process kinds in canonical order, used_fallback).
    """
    if row.has_any_flag:
        return tuple(k for k in constants.process_order if row.flags.get(k)), False

    implied = set(constants.get_fallback_processes(row.item.material))
    ordered = tuple(k for k in constants.process_order if k in implied)
    logger.info(
        f"No process flags for {row.item.item_id}; "
        f"using material rules for '{row.item.material}': {', '.join(ordered)}"
    )
    return ordered, True


def _describe(item: ProductionItem, fallback: bool) -> str:
    lines = [
        f"Order: {item.order_id}",
        f"Project: {item.project}",
        f"Component: {item.component}",
        f"Material: {item.material}",
        f"Quantity: {item.quantity}",
    ]
    if fallback:
        lines.append("[AUTOMATIC PROCESS]")
    return "\n".join(lines)


def build_item_tasks(
    row: NormalizedRow,
    pool: ResourcePool,
    constants: PlanningConstants | None = None,
    today: date | None = None
) -> tuple[ItemTaskGraph, ResourcePool]:
    """Build the task chain for one item.

    Args:
        row: Normalized row (item plus process flags).
        pool: Current assembly-line rotation.
        constants: Planning constants.
        today: Reference date for the priority class.

    Returns:
        Tuple of (ItemTaskGraph, pool advanced by one line).
    """
    constants = constants or build_constants()
    today = today or date.today()
    item = row.item

    processes, used_fallback = select_processes(row, constants)
    priority = determine_priority(item.due_date, today, constants)
    title = task_title(item.project, item.component)
    description = _describe(item, used_fallback)

    graph = ItemTaskGraph(item=item, used_fallback=used_fallback)

    for index, process in enumerate(processes):
        predecessors = (index - 1,) if index > 0 else ()
        task = ProcessTask(
            task_id=generate_task_id(item.order_id, process, item.position, index),
            item=item,
            process=process,
            plant="production",
            resource=constants.get_default_machine(process),
            duration_hours=estimate_process_duration(process, item.sheets, item.quantity, constants),
            dependencies=tuple(graph.tasks[i].task_id for i in predecessors),
            priority=priority,
            sequence=index + 1,
            title=title,
            description=description,
            status=row.update_status,
            from_fallback=used_fallback,
        )
        graph.tasks.append(task)
        graph.predecessors.append(predecessors)

    # Assembly fans in from every production step
    line, pool = pool.next_line()
    production_indices = tuple(range(len(graph.tasks)))
    assembly = ProcessTask(
        task_id=generate_task_id(item.order_id, ASSEMBLY, item.position, len(graph.tasks)),
        item=item,
        process=ASSEMBLY,
        plant="assembly",
        resource=line,
        duration_hours=estimate_assembly_duration(item.quantity, constants),
        dependencies=tuple(graph.tasks[i].task_id for i in production_indices),
        priority=priority,
        sequence=len(graph.tasks) + 1,
        title=title,
        description=description,
        status=row.update_status,
        from_fallback=used_fallback,
    )
    graph.tasks.append(assembly)
    graph.predecessors.append(production_indices)

    return graph, pool


def build_production_plan(
    rows: IngestionResult | list[Mapping[str, Any]],
    constants: PlanningConstants | None = None,
    pool: ResourcePool | None = None,
    today: date | None = None
) -> ProductionPlan:
    """Expand every accepted row into its task graph.

    Args:
        rows: Raw sheet rows or an already computed IngestionResult.
        constants: Planning constants.
        pool: Line rotation to continue from (a fresh pool if None).
        today: Reference date for priority classes.

    Returns:
        ProductionPlan with the advanced pool.
    """
    constants = constants or build_constants()
    ingestion = rows if isinstance(rows, IngestionResult) else normalize_rows(rows, constants)
    pool = pool or create_resource_pool(constants)

    plan = ProductionPlan(skipped=list(ingestion.skipped))
    for normalized in ingestion.rows:
        graph, pool = build_item_tasks(normalized, pool, constants, today)
        plan.graphs.append(graph)
    plan.pool = pool

    production = len(plan.tasks_for_plant("production"))
    assembly = len(plan.tasks_for_plant("assembly"))
    logger.info(
        f"Built {len(plan.graphs)} items -> {production} production tasks "
        f"+ {assembly} assembly tasks"
    )
    return plan
