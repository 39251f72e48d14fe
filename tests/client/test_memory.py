"""Tests for the in-memory backend."""

import pytest

from syncbridge.client.memory import MemoryBackend
from syncbridge.sync.types import (
    AuthenticationRequired,
    BackendError,
    Command,
    MirroredRecord,
    ScheduledStatus,
    StateSnapshot,
)


class TestCommands:
    """Tests for command storage."""

    def test_acknowledge_removes_command(self, backend: MemoryBackend) -> None:
        backend.enqueue_command("dnd", Command(id="c1", action="enable"))
        backend.enqueue_command("dnd", Command(id="c2", action="disable"))

        backend.acknowledge_command("dnd", "c1")

        assert [c.id for c in backend.fetch_pending_commands("dnd")] == ["c2"]
        assert backend.acknowledged("dnd") == ["c1"]

    def test_namespaces_are_separate(self, backend: MemoryBackend) -> None:
        backend.enqueue_command("dnd", Command(id="c1", action="enable"))

        assert backend.fetch_pending_commands("media") == []

    def test_unauthenticated_calls_raise(self) -> None:
        backend = MemoryBackend(authenticated=False)

        assert not backend.is_authenticated()
        with pytest.raises(AuthenticationRequired):
            backend.fetch_pending_commands("dnd")
        with pytest.raises(AuthenticationRequired):
            backend.push_state("dnd", StateSnapshot("dnd"))


class TestScheduled:
    """Tests for scheduled item storage."""

    def test_fetch_returns_copies_by_status(self, backend: MemoryBackend) -> None:
        backend.add_scheduled_item({"message": "later"}, 2000, item_id="b")
        backend.add_scheduled_item({"message": "sooner"}, 1000, item_id="a")

        items = backend.fetch_scheduled_items(ScheduledStatus.PENDING)
        assert [i.id for i in items] == ["a", "b"]

        items[0].status = ScheduledStatus.SENT
        assert backend.get_scheduled_item("a").status == ScheduledStatus.PENDING

    def test_status_update_recorded(self, backend: MemoryBackend) -> None:
        backend.add_scheduled_item({"message": "hi"}, 1000, item_id="a")

        backend.update_scheduled_item_status("a", ScheduledStatus.FAILED, "no signal")

        assert backend.status_reports == [("a", ScheduledStatus.FAILED, "no signal")]
        assert backend.get_scheduled_item("a").last_error == "no signal"
        assert backend.fetch_scheduled_items(ScheduledStatus.PENDING) == []


class TestMirror:
    """Tests for mirrored records."""

    def test_write_list_delete(self, backend: MemoryBackend) -> None:
        record = MirroredRecord(id="r1", source_key="k1")

        backend.mirror_write(record)
        assert backend.mirror_list() == [record]

        backend.mirror_delete("r1")
        assert backend.mirror_list() == []
        assert backend.mirror_deletes == ["r1"]

    def test_delete_missing_record(self, backend: MemoryBackend) -> None:
        with pytest.raises(BackendError) as exc_info:
            backend.mirror_delete("missing")

        assert exc_info.value.status_code == 404
