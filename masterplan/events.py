# Calendar event model shared by the scheduler output, the sync loop and the server.
# Version: 1.0.0
# Projects scheduled tasks to events, repairs duplicate ids and holds the shared event state.

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Protocol

from .constants import Plant, Priority, TaskStatus
from .errors import ValidationError
from .logger import logger
from .process_graph import ProcessTask, generate_task_id


@dataclass
class CalendarEvent:
    """Externally visible projection of a task or a user-created event.

    Attributes:
        id: Identity, unique within an event collection.
        title: Display title.
        start: Start time.
        end: End time.
        status: Lifecycle status.
        priority: Priority class.
        plant: "production" or "assembly" (None for free-form events).
        process: Process kind.
        resource: Machine or assembly line id.
        dependency_count: Number of tasks that must finish first.
        description: Free text.
        order_id: Purchase order number.
        position: Line position within the order.
        project: Project name.
        component: Component name.
        material: Material code.
        quantity: Ordered quantity.
        sheets: Sheet count.
        unit_price: Price per unit.
        duration_hours: Estimated duration.
        dependencies: Ids of the prerequisite events.
        item_id: Owning item identifier.
        extra: Wire keys this model does not know, kept for round-trips.
    """
    id: str
    title: str
    start: datetime
    end: datetime
    status: TaskStatus = "pending"
    priority: Priority = "medium"
    plant: Plant | None = None
    process: str | None = None
    resource: str | None = None
    dependency_count: int = 0
    description: str = ""
    order_id: str = ""
    position: int | None = None
    project: str = ""
    component: str = ""
    material: str = ""
    quantity: int = 0
    sheets: int = 0
    unit_price: float = 0.0
    duration_hours: int = 0
    dependencies: list[str] = field(default_factory=list)
    item_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary (ISO datetimes)."""
        data: dict[str, Any] = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalendarEvent":
        """Build an event from its wire dictionary.

        Args:
            data: Dictionary with at least id, title, start and end.

        Returns:
            CalendarEvent with unknown keys kept in extra.

        Raises:
            ValidationError: If a required key is missing or a date is invalid.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("event", type(data).__name__, "Event must be an object")
        for key in ("id", "title", "start", "end"):
            if key not in data or data[key] is None or data[key] == "":
                raise ValidationError(key, data.get(key), "Required event field is missing")

        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        kwargs["id"] = str(kwargs["id"])
        kwargs["title"] = str(kwargs["title"])
        kwargs["start"] = parse_event_time(data["start"], "start")
        kwargs["end"] = parse_event_time(data["end"], "end")
        kwargs["dependencies"] = list(kwargs.get("dependencies") or [])
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)


def parse_event_time(value: Any, field_name: str = "time") -> datetime:
    """Parse an ISO-8601 timestamp (a trailing Z is accepted).

    Raises:
        ValidationError: If the value is not a valid timestamp.
    """
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(field_name, value, "Expected an ISO-8601 timestamp")


def task_to_event(task: ProcessTask) -> CalendarEvent:
    """Project one scheduled task to its calendar event.

    Raises:
        ValidationError: If the task has not been scheduled.
    """
    if not task.is_scheduled:
        raise ValidationError("start", None, f"Task {task.task_id} is not scheduled")
    item = task.item
    return CalendarEvent(
        id=task.task_id,
        title=task.title,
        start=task.start,
        end=task.end,
        status=task.status,
        priority=task.priority,
        plant=task.plant,
        process=task.process,
        resource=task.resource,
        dependency_count=len(task.dependencies),
        description=task.description,
        order_id=item.order_id,
        position=item.position,
        project=item.project,
        component=item.component,
        material=item.material,
        quantity=item.quantity,
        sheets=item.sheets,
        unit_price=item.unit_price,
        duration_hours=task.duration_hours,
        dependencies=list(task.dependencies),
        item_id=item.item_id,
    )


def project_tasks(tasks: Iterable[ProcessTask]) -> list[CalendarEvent]:
    """Project scheduled tasks to calendar events, preserving order."""
    return [task_to_event(task) for task in tasks]


def generate_event_id(event: CalendarEvent) -> str:
    """Generate a fresh identity for an event from its order, process and position."""
    return generate_task_id(
        event.order_id or "EVT",
        event.process or "event",
        event.position if event.position is not None else 0,
    )


def repair_duplicate_ids(
    events: Iterable[CalendarEvent]
) -> tuple[list[CalendarEvent], int]:
    """Give every second-and-later occurrence of an id a fresh identity.

    No event is ever dropped: the result has the same length and order.

    Args:
        events: Event collection, possibly with colliding ids.

    Returns:
        Tuple of (repaired events, number of ids regenerated).
    """
    events = list(events)
    taken = {e.id for e in events}
    seen: set[str] = set()
    repaired: list[CalendarEvent] = []
    count = 0

    for event in events:
        if event.id not in seen:
            seen.add(event.id)
            repaired.append(event)
            continue

        new_id = generate_event_id(event)
        while new_id in taken:
            new_id = generate_event_id(event)
        taken.add(new_id)
        seen.add(new_id)
        logger.warning(f"Duplicate event id {event.id} reassigned to {new_id}")
        repaired.append(replace(event, id=new_id))
        count += 1

    if count:
        logger.warning(f"Repaired {count} duplicate event id(s)")
    return repaired, count


class LocalEditMarker(Protocol):
    def mark(self) -> None: ...


class EventStore:
    """Shared in-memory event collection of one client.

    Bulk loads (initial load, sync merges) repair duplicate ids before the
    collection is accepted. Local mutations (add, update, delete) mark the
    attached cooldown so an in-flight sync result does not clobber them.
    """

    def __init__(
        self,
        events: Iterable[CalendarEvent] | None = None,
        cooldown: LocalEditMarker | None = None
    ) -> None:
        self._events: list[CalendarEvent] = []
        self.cooldown = cooldown
        if events is not None:
            self.set_events(events)

    @property
    def events(self) -> list[CalendarEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def ids(self) -> list[str]:
        return [e.id for e in self._events]

    def get(self, event_id: str) -> CalendarEvent | None:
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    def set_events(self, events: Iterable[CalendarEvent]) -> int:
        """Replace the whole collection.

        Returns:
            Number of duplicate ids that were repaired.
        """
        self._events, repaired = repair_duplicate_ids(events)
        return repaired

    def add_event(self, event: CalendarEvent, local: bool = True) -> CalendarEvent:
        """Append an event, giving it a fresh id if the id is taken.

        Returns:
            The event as stored.
        """
        if self.get(event.id) is not None:
            new_id = generate_event_id(event)
            while self.get(new_id) is not None:
                new_id = generate_event_id(event)
            logger.warning(f"Event id {event.id} already present, stored as {new_id}")
            event = replace(event, id=new_id)
        self._events.append(event)
        if local:
            self._mark_local()
        return event

    def update_event(self, event: CalendarEvent, local: bool = True) -> bool:
        """Replace the event with the same id.

        Returns:
            True if an event was replaced.
        """
        for index, existing in enumerate(self._events):
            if existing.id == event.id:
                self._events[index] = event
                if local:
                    self._mark_local()
                return True
        return False

    def delete_event(self, event_id: str, local: bool = True) -> bool:
        """Remove an event by id.

        Returns:
            True if an event was removed.
        """
        remaining = [e for e in self._events if e.id != event_id]
        removed = len(remaining) != len(self._events)
        self._events = remaining
        if removed and local:
            self._mark_local()
        return removed

    def _mark_local(self) -> None:
        if self.cooldown is not None:
            self.cooldown.mark()
