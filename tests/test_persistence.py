"""Tests for event persistence back ends and the server event store."""

import json
from datetime import datetime, timedelta, timezone

from masterplan.events import CalendarEvent
from masterplan.persistence import InMemoryPersistence, JsonFilePersistence, ServerEventStore


def make_event(event_id: str, title: str = "EVENT") -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        title=title,
        start=datetime(2025, 1, 6, 8, 0),
        end=datetime(2025, 1, 6, 23, 59, 59),
        plant="production",
        process="print",
    )


class StepClock:
    """UTC clock advancing one second per reading."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class TestJsonFilePersistence:
    """Versioned JSON document."""

    def test_save_and_load(self, tmp_path):
        persistence = JsonFilePersistence(tmp_path / "data" / "events.json")
        assert persistence.save([make_event("A"), make_event("B", "second")]) is True

        loaded = persistence.load()
        assert [e.id for e in loaded] == ["A", "B"]
        assert loaded[1].title == "second"
        assert loaded[0].start == datetime(2025, 1, 6, 8, 0)

    def test_document_layout(self, tmp_path):
        path = tmp_path / "events.json"
        JsonFilePersistence(path).save([make_event("A")])
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["version"] == "1.0"
        assert document["data"]["events"][0]["id"] == "A"
        assert "last_updated" in document["data"]

    def test_missing_file(self, tmp_path):
        assert JsonFilePersistence(tmp_path / "none.json").load() is None

    def test_version_mismatch_discarded(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text(json.dumps({"version": "0.9", "data": {"events": []}}), encoding="utf-8")
        assert JsonFilePersistence(path).load() is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text("{not json", encoding="utf-8")
        assert JsonFilePersistence(path).load() is None

    def test_invalid_event(self, tmp_path):
        path = tmp_path / "events.json"
        document = {"version": "1.0", "data": {"events": [{"id": "A"}]}}
        path.write_text(json.dumps(document), encoding="utf-8")
        assert JsonFilePersistence(path).load() is None

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        assert JsonFilePersistence(blocker / "events.json").save([make_event("A")]) is False

    def test_clear(self, tmp_path):
        persistence = JsonFilePersistence(tmp_path / "events.json")
        persistence.save([make_event("A")])
        persistence.clear()
        assert persistence.load() is None


class TestServerEventStore:
    """Authoritative server copy with change tracking."""

    def test_loads_from_persistence(self):
        store = ServerEventStore(InMemoryPersistence([make_event("A")]))
        assert [e.id for e in store.events] == ["A"]

    def test_overwrite_repairs_and_persists(self):
        persistence = InMemoryPersistence()
        store = ServerEventStore(persistence)
        repaired = store.overwrite([make_event("A"), make_event("A")])
        assert repaired == 1
        assert len(store) == 2
        assert len(persistence.load()) == 2

    def test_upsert_and_delete(self):
        store = ServerEventStore(InMemoryPersistence())
        assert store.upsert(make_event("A")) is True
        assert store.upsert(make_event("A", "renamed")) is False
        assert store.get("A").title == "renamed"
        assert store.delete("A") is True
        assert store.delete("A") is False

    def test_first_sync_returns_everything(self):
        store = ServerEventStore(InMemoryPersistence([make_event("A")]), clock=StepClock())
        events, server_time, has_changes = store.changes_since(None)
        assert has_changes
        assert [e.id for e in events] == ["A"]
        assert server_time > store.modified_at

    def test_no_changes_since(self):
        store = ServerEventStore(InMemoryPersistence([make_event("A")]), clock=StepClock())
        _, server_time, _ = store.changes_since(None)
        events, later, has_changes = store.changes_since(server_time)
        assert not has_changes
        assert events == []
        assert later > server_time

    def test_changes_after_since(self):
        store = ServerEventStore(InMemoryPersistence(), clock=StepClock())
        _, since, _ = store.changes_since(None)
        store.upsert(make_event("B"))
        events, _, has_changes = store.changes_since(since)
        assert has_changes
        assert [e.id for e in events] == ["B"]

    def test_deletion_counts_as_change(self):
        store = ServerEventStore(InMemoryPersistence([make_event("A")]), clock=StepClock())
        _, since, _ = store.changes_since(None)
        store.delete("A")
        events, _, has_changes = store.changes_since(since)
        assert has_changes
        assert events == []

    def test_naive_since_taken_as_utc(self):
        store = ServerEventStore(InMemoryPersistence(), clock=StepClock())
        _, _, has_changes = store.changes_since(datetime(2030, 1, 1))
        assert not has_changes

    def test_failed_save_keeps_memory_copy(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        store = ServerEventStore(JsonFilePersistence(blocker / "events.json"))
        store.upsert(make_event("A"))
        assert store.get("A") is not None
