# Event synchronization between a client's event store and the remote server copy.
# Version: 1.0.0
# Periodic delta fetch with merge policies, in-flight guard and local-edit cooldown.

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from .constants import SyncSettings
from .errors import ValidationError
from .events import CalendarEvent, EventStore, parse_event_time
from .logger import logger


PollOutcome = Literal["applied", "unchanged", "suppressed", "failed", "skipped", "discarded"]


class MergeMode(str, Enum):
    """How a remote change set is applied to the local collection."""
    MERGE = "merge"
    REPLACE = "replace"


@dataclass
class SyncResponse:
    """Delta fetch response.

    Attributes:
        events: Events reported by the server (empty when nothing changed).
        server_time: Server clock at response time; the next "since".
        has_changes: Whether anything changed after the requested since.
    """
    events: list[CalendarEvent] = field(default_factory=list)
    server_time: datetime | None = None
    has_changes: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "serverTime": self.server_time.isoformat() if self.server_time else None,
            "hasChanges": self.has_changes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncResponse":
        """Parse the wire form {events, serverTime, hasChanges}.

        Raises:
            ValidationError: If the body does not follow the contract.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("response", type(data).__name__, "Sync response must be an object")
        raw_events = data.get("events") or []
        if not isinstance(raw_events, list):
            raise ValidationError("events", raw_events, "Expected a list of events")
        if "serverTime" not in data:
            raise ValidationError("serverTime", None, "Sync response is missing serverTime")
        has_changes = data.get("hasChanges", False)
        if not isinstance(has_changes, bool):
            raise ValidationError("hasChanges", has_changes, "Expected a boolean")
        return cls(
            events=[CalendarEvent.from_dict(raw) for raw in raw_events],
            server_time=parse_event_time(data["serverTime"], "serverTime"),
            has_changes=has_changes,
        )


def merge_events(
    local: list[CalendarEvent],
    remote: list[CalendarEvent],
    mode: MergeMode | str = MergeMode.MERGE
) -> list[CalendarEvent]:
    """Combine the local collection with a remote change set.

    Remote wins on identity collision in both modes. In merge mode events
    whose id is absent from the remote set are kept (after the remote
    ones); in replace mode they are dropped.

    Args:
        local: Current local events.
        remote: Events received from the server.
        mode: MergeMode or its string value.

    Returns:
        The new local collection.
    """
    if MergeMode(mode) is MergeMode.REPLACE:
        return list(remote)
    remote_ids = {e.id for e in remote}
    local_only = [e for e in local if e.id not in remote_ids]
    return list(remote) + local_only


class CooldownState:
    """Grace period after a local edit during which sync results are not applied.

    Owned by one coordinator instance and shared with its event store.

    Attributes:
        cooldown_seconds: Length of the grace period.
    """

    def __init__(
        self,
        cooldown_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._marked_at: float | None = None

    def mark(self) -> None:
        """Record a local edit now."""
        self._marked_at = self._clock()

    def clear(self) -> None:
        self._marked_at = None

    def elapsed(self) -> float | None:
        """Seconds since the last local edit, None if there was none."""
        if self._marked_at is None:
            return None
        return self._clock() - self._marked_at

    def active(self) -> bool:
        elapsed = self.elapsed()
        return elapsed is not None and elapsed < self.cooldown_seconds


@dataclass
class SyncStats:
    """Counters of poll outcomes."""
    applied: int = 0
    unchanged: int = 0
    suppressed: int = 0
    failed: int = 0
    skipped: int = 0
    discarded: int = 0

    def record(self, outcome: PollOutcome) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)


FetchFn = Callable[[datetime | None], Awaitable[SyncResponse]]
PushFn = Callable[[CalendarEvent], Awaitable[Any]]


class SyncCoordinator:
    """Keeps an EventStore consistent with the server on a fixed interval.

    Runs on the host's asyncio loop; the only suspension point is the
    fetch itself. A poll in flight makes the next tick a no-op, failures
    are logged and retried on the next tick, and results arriving while a
    local edit is cooling down are not applied (since is left untouched so
    the same changes are fetched again).

    Attributes:
        store: Local event collection.
        interval: Seconds between ticks.
        cooldown: Local-edit grace period state.
        merge_mode: How remote change sets are applied.
        since: Server time of the last applied or empty response.
        stats: Poll outcome counters.
    """

    def __init__(
        self,
        store: EventStore,
        fetch: FetchFn,
        push: PushFn | None = None,
        interval: float = 5.0,
        cooldown: CooldownState | None = None,
        merge_mode: MergeMode | str = MergeMode.MERGE,
        since: datetime | None = None
    ) -> None:
        self.store = store
        self._fetch = fetch
        self._push = push
        self.interval = interval
        self.cooldown = cooldown or CooldownState()
        self.merge_mode = MergeMode(merge_mode)
        self.since = since
        self.stats = SyncStats()

        # Local mutations on the store start the grace period
        self.store.cooldown = self.cooldown

        self._in_flight = False
        self._generation = 0
        self._loop_task: asyncio.Task | None = None
        self._polls: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        store: EventStore,
        fetch: FetchFn,
        settings: SyncSettings,
        push: PushFn | None = None,
        clock: Callable[[], float] = time.monotonic
    ) -> "SyncCoordinator":
        """Build a coordinator from configured sync settings."""
        return cls(
            store=store,
            fetch=fetch,
            push=push,
            interval=settings.interval_seconds,
            cooldown=CooldownState(settings.cooldown_seconds, clock),
            merge_mode=settings.merge_mode,
        )

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def poll_once(self) -> PollOutcome:
        """Run one delta fetch and apply its result.

        Returns:
            What happened to this poll.
        """
        if self._in_flight:
            logger.debug("Sync already in flight, skipping tick")
            return self._record("skipped")

        self._in_flight = True
        generation = self._generation
        try:
            response = await self._fetch(self.since)
        except Exception as e:
            # Failed polls never reach the host; the next tick retries
            logger.error(f"Sync fetch failed: {e}")
            return self._record("failed")
        finally:
            self._in_flight = False

        if generation != self._generation:
            logger.debug("Sync stopped while fetching; result discarded")
            return self._record("discarded")

        return self._record(self._apply(response))

    def _apply(self, response: SyncResponse) -> PollOutcome:
        if not response.has_changes:
            self.since = response.server_time
            return "unchanged"

        if self.cooldown.active():
            logger.info(
                f"Local edit {self.cooldown.elapsed():.1f}s ago; "
                f"holding {len(response.events)} remote event(s)"
            )
            return "suppressed"

        merged = merge_events(self.store.events, response.events, self.merge_mode)
        self.store.set_events(merged)
        self.since = response.server_time
        logger.info(
            f"Sync applied {len(response.events)} remote event(s) "
            f"({self.merge_mode.value}); {len(self.store)} total"
        )
        return "applied"

    def _record(self, outcome: PollOutcome) -> PollOutcome:
        self.stats.record(outcome)
        return outcome

    def start(self) -> asyncio.Task:
        """Start polling on the running event loop; the first poll runs immediately.

        Returns:
            The background loop task.
        """
        if self.is_running:
            return self._loop_task
        logger.info(f"Starting event sync every {self.interval}s ({self.merge_mode.value} mode)")
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        return self._loop_task

    def stop(self) -> None:
        """Stop polling.

        A poll already in flight is not aborted; its result is discarded.
        """
        self._generation += 1
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
            logger.info("Stopped event sync")

    async def drain(self) -> None:
        """Wait for polls started by the loop to finish."""
        if self._polls:
            await asyncio.gather(*list(self._polls))

    async def _run(self) -> None:
        while True:
            if self._in_flight:
                self._record("skipped")
            else:
                poll = asyncio.create_task(self.poll_once())
                self._polls.add(poll)
                poll.add_done_callback(self._polls.discard)
            await asyncio.sleep(self.interval)

    async def commit_local_edit(self, event: CalendarEvent) -> bool:
        """Apply a local edit and push it to the server.

        The store is updated (or the event added) immediately and the
        cooldown starts; the remote upsert follows.

        Returns:
            True if the server accepted the event, False otherwise.
        """
        if not self.store.update_event(event):
            event = self.store.add_event(event)
        self.cooldown.mark()

        if self._push is None:
            return False
        try:
            await self._push(event)
        except Exception as e:
            logger.error(f"Failed to push event {event.id}: {e}")
            return False
        return True
