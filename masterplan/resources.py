# Resource management for production machines and assembly lines.
# Version: 1.0.0
# Tracks assembly-line rotation and per-resource availability timelines.

from dataclasses import dataclass, field, replace
from datetime import datetime

from .constants import Plant, PlanningConstants


@dataclass(frozen=True)
class ResourcePool:
    """Round-robin rotation state for assembly lines.

    An immutable value: next_line() hands back the chosen line together
    with the advanced pool, so callers thread the pool through successive
    builder calls instead of relying on hidden module state.

    Attributes:
        assembly_lines: Ordered pool of assembly line ids.
        next_index: Index of the line the next item will receive.
    """
    assembly_lines: tuple[str, ...]
    next_index: int = 0

    def next_line(self) -> tuple[str, "ResourcePool"]:
        """Pick the next assembly line.

        Returns:
            Tuple of (line id, pool advanced by one position).
        """
        line = self.assembly_lines[self.next_index % len(self.assembly_lines)]
        advanced = replace(self, next_index=(self.next_index + 1) % len(self.assembly_lines))
        return line, advanced


def create_resource_pool(constants: PlanningConstants, start_index: int = 0) -> ResourcePool:
    """Create a line rotation pool from the configured assembly lines.

    Args:
        constants: PlanningConstants with the assembly line list.
        start_index: Position to resume the rotation from.

    Returns:
        Initialized ResourcePool.
    """
    lines = tuple(constants.assembly_lines)
    return ResourcePool(assembly_lines=lines, next_index=start_index % len(lines))


@dataclass
class ResourceTimelines:
    """End time of the most recent task on every resource.

    Production machines and assembly lines live in separate namespaces so
    a machine and a line that happen to share a name never block each
    other. Owned by the scheduler for the duration of one run.

    Attributes:
        machines: Machine id to availability time.
        lines: Assembly line id to availability time.
    """
    machines: dict[str, datetime] = field(default_factory=dict)
    lines: dict[str, datetime] = field(default_factory=dict)

    def _namespace(self, plant: Plant) -> dict[str, datetime]:
        return self.lines if plant == "assembly" else self.machines

    def available_at(self, plant: Plant, resource: str) -> datetime | None:
        """Get when a resource becomes free, or None if never used."""
        return self._namespace(plant).get(resource)

    def reserve(self, plant: Plant, resource: str, until: datetime) -> None:
        """Mark a resource busy until the given time."""
        self._namespace(plant)[resource] = until

    def busiest(self) -> tuple[str, datetime] | None:
        """Return the resource with the latest availability across both namespaces."""
        merged = list(self.machines.items()) + list(self.lines.items())
        if not merged:
            return None
        return max(merged, key=lambda kv: kv[1])
