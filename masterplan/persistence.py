# Event persistence back ends and the server's authoritative event store.
# Version: 1.0.0
# Versioned JSON file storage, in-memory storage and change tracking for delta sync.

import json
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .errors import MasterPlanError, PersistenceError
from .events import CalendarEvent, repair_duplicate_ids
from .logger import logger


STORAGE_VERSION = "1.0"


class EventPersistence(Protocol):
    """Durable storage for an event collection.

    Implementations never raise: load() returns None and save() returns
    False when the back end is unavailable.
    """

    def load(self) -> list[CalendarEvent] | None: ...

    def save(self, events: list[CalendarEvent]) -> bool: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JsonFilePersistence:
    """Stores events in a versioned JSON document.

    Layout: {"version": "1.0", "data": {"events": [...], "last_updated": ISO}}.
    A document written with another version is discarded.

    Attributes:
        path: JSON file location.
        version: Expected document version.
    """

    def __init__(self, path: str | Path, version: str = STORAGE_VERSION) -> None:
        self.path = Path(path)
        self.version = version

    def load(self) -> list[CalendarEvent] | None:
        """Load events from disk.

        Returns:
            Stored events, or None if missing, unreadable or of another version.
        """
        if not self.path.exists():
            logger.info(f"No stored events at {self.path}")
            return None
        try:
            events = self._read()
        except PersistenceError as e:
            logger.error(str(e))
            return None
        if events is not None:
            logger.info(f"Loaded {len(events)} events from {self.path}")
        return events

    def save(self, events: list[CalendarEvent]) -> bool:
        """Write events to disk.

        Returns:
            True on success, False if the file could not be written.
        """
        document = {
            "version": self.version,
            "data": {
                "events": [e.to_dict() for e in events],
                "last_updated": utc_now().isoformat(),
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as e:
            logger.error(str(PersistenceError("save", e)))
            return False
        logger.debug(f"Saved {len(events)} events to {self.path}")
        return True

    def clear(self) -> None:
        """Remove the stored document if present."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(str(PersistenceError("clear", e)))

    def _read(self) -> list[CalendarEvent] | None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError("load", e)

        if not isinstance(document, dict) or document.get("version") != self.version:
            logger.warning(f"Discarding stored events at {self.path}: incompatible version")
            return None

        raw_events = (document.get("data") or {}).get("events") or []
        try:
            return [CalendarEvent.from_dict(raw) for raw in raw_events]
        except MasterPlanError as e:
            raise PersistenceError("load", e)


class InMemoryPersistence:
    """Keeps events in process memory; useful for tests and ephemeral servers."""

    def __init__(self, events: list[CalendarEvent] | None = None) -> None:
        self._events = list(events) if events is not None else None
        self.save_count = 0

    def load(self) -> list[CalendarEvent] | None:
        return list(self._events) if self._events is not None else None

    def save(self, events: list[CalendarEvent]) -> bool:
        self._events = list(events)
        self.save_count += 1
        return True


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps from clients are taken as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ServerEventStore:
    """Authoritative event collection kept by the server.

    Tracks the time of the last modification so clients can ask whether
    anything changed since their last sync. Writes are full overwrites or
    single-record upserts and deletes; each one is persisted.

    Attributes:
        persistence: Back end the collection is loaded from and saved to.
        modified_at: Time of the last modification (UTC).
    """

    def __init__(
        self,
        persistence: EventPersistence | None = None,
        clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.persistence = persistence or InMemoryPersistence()
        self._clock = clock
        self._events: dict[str, CalendarEvent] = {}
        loaded = self.persistence.load() or []
        self._replace_all(loaded)
        self.modified_at: datetime = _as_utc(self._clock())

    @property
    def events(self) -> list[CalendarEvent]:
        return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)

    def get(self, event_id: str) -> CalendarEvent | None:
        return self._events.get(event_id)

    def now(self) -> datetime:
        return _as_utc(self._clock())

    def overwrite(self, events: Iterable[CalendarEvent]) -> int:
        """Replace the whole collection.

        Returns:
            Number of duplicate ids that were repaired.
        """
        repaired = self._replace_all(events)
        self._touch()
        logger.info(f"Stored {len(self._events)} events (full overwrite)")
        return repaired

    def upsert(self, event: CalendarEvent) -> bool:
        """Insert or replace a single event.

        Returns:
            True if the event was new.
        """
        created = event.id not in self._events
        self._events[event.id] = event
        self._touch()
        logger.info(f"{'Created' if created else 'Updated'} event {event.id}")
        return created

    def delete(self, event_id: str) -> bool:
        """Delete an event.

        Returns:
            True if the event existed.
        """
        if self._events.pop(event_id, None) is None:
            return False
        self._touch()
        logger.info(f"Deleted event {event_id}")
        return True

    def changes_since(self, since: datetime | None) -> tuple[list[CalendarEvent], datetime, bool]:
        """Answer a delta fetch.

        The whole collection is returned whenever anything (deletions
        included) changed after since; otherwise the event list is empty.

        Args:
            since: Client's last sync time, None for a first sync.

        Returns:
            Tuple of (events, server time, has_changes).
        """
        server_time = self.now()
        has_changes = since is None or self.modified_at > _as_utc(since)
        events = self.events if has_changes else []
        return events, server_time, has_changes

    def _replace_all(self, events: Iterable[CalendarEvent]) -> int:
        repaired_events, repaired = repair_duplicate_ids(events)
        self._events = {e.id: e for e in repaired_events}
        return repaired

    def _touch(self) -> None:
        self.modified_at = self.now()
        if not self.persistence.save(self.events):
            logger.warning("Event store change not persisted; kept in memory only")

    def snapshot(self) -> dict[str, Any]:
        return {
            "events": len(self._events),
            "modified_at": self.modified_at.isoformat(),
        }
