"""Tests for the SyncEngine facade."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import FakeClock, ManualTimers

from syncbridge.client.device import SimulatedDevice
from syncbridge.client.memory import MemoryBackend
from syncbridge.client.state import LocalState
from syncbridge.core.config import EngineConfig
from syncbridge.features import DndState, dnd_feature, media_feature
from syncbridge.sync.engine import SCHEDULED_NAMESPACE, Feature, SyncEngine
from syncbridge.sync.progress import DiagnosticsStore
from syncbridge.sync.types import (
    ActuatorError,
    Command,
    PermissionDenied,
    ScheduledItem,
    ScheduledStatus,
    StateSnapshot,
    SyncError,
)


@pytest.fixture
def device() -> SimulatedDevice:
    return SimulatedDevice()


@pytest.fixture
def engine(
    backend: MemoryBackend,
    timers: ManualTimers,
    clock: FakeClock,
    device: SimulatedDevice,
) -> SyncEngine:
    e = SyncEngine(
        backend,
        EngineConfig(),
        timers=timers,
        clock=clock,
        actuator=device.actuator(SCHEDULED_NAMESPACE),
    )
    yield e
    e.shutdown()


def command(clock: FakeClock, command_id: str, action: str, **args: object) -> Command:
    return Command(id=command_id, action=action, args=args, created_at=clock())


class TestRegisterFeature:
    """Tests for feature registration."""

    def test_builds_channels(self, engine: SyncEngine, device: SimulatedDevice) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))

        assert engine.command_channel("dnd").namespace == "dnd"
        assert engine.state_channel("dnd") is not None

    def test_feature_without_state(self, engine: SyncEngine, device: SimulatedDevice) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd")))

        assert engine.state_channel("dnd") is None

    def test_duplicate_namespace_rejected(
        self, engine: SyncEngine, device: SimulatedDevice
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd")))

        with pytest.raises(ValueError, match="already registered"):
            engine.register_feature(dnd_feature(device.actuator("dnd")))

    def test_reserved_namespace_rejected(self, engine: SyncEngine) -> None:
        with pytest.raises(ValueError, match="reserved"):
            engine.register_feature(Feature(namespace=SCHEDULED_NAMESPACE, handlers={}))

    def test_channels_use_config(
        self, backend: MemoryBackend, timers: ManualTimers, device: SimulatedDevice
    ) -> None:
        engine = SyncEngine(backend, EngineConfig(command_poll_interval=0.5), timers=timers)
        engine.register_feature(dnd_feature(device.actuator("dnd")))

        assert engine.command_channel("dnd").poll_interval == 0.5


class TestFeatureLifecycle:
    """Tests for starting and stopping features."""

    def test_start_publishes_initial_state(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        device: SimulatedDevice,
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))

        engine.start("dnd")

        assert backend.get_state("dnd") == DndState().to_snapshot()
        assert "state-dnd" in timers.pending_names()
        assert engine.running_namespaces == {"dnd"}

    def test_restart_republishes_equal_state(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        device: SimulatedDevice,
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))

        engine.start("dnd")
        engine.stop("dnd")
        engine.start("dnd")

        assert len(backend.pushes("dnd")) == 2

    def test_stop_disarms_state_timers(
        self, engine: SyncEngine, timers: ManualTimers, device: SimulatedDevice
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
        engine.start("dnd")

        engine.stop("dnd")

        assert timers.pending == []
        assert engine.running_namespaces == frozenset()

    def test_unknown_feature(self, engine: SyncEngine) -> None:
        with pytest.raises(ValueError, match="Unknown feature"):
            engine.start("wifi")

    def test_shutdown_stops_everything(
        self, engine: SyncEngine, timers: ManualTimers, device: SimulatedDevice
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
        engine.start("dnd")
        engine.start(SCHEDULED_NAMESPACE)

        engine.shutdown()

        assert engine.running_namespaces == frozenset()
        assert timers.shut_down


class TestCommandsAndState:
    """Tests for the command-to-state feedback loop."""

    def test_executed_command_triggers_debounced_push(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
        backend.enqueue_command("dnd", command(clock, "c1", "enable"))

        engine.command_channel("dnd").poll_once()

        assert backend.pushes("dnd") == []
        timers.advance(1000)
        state = backend.get_state("dnd")
        assert state["enabled"] is True
        assert state["mode"] == "priority"

    def test_toggle_redelivery_runs_once_with_journal(
        self,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        """A toggle re-delivered after a lost acknowledgment is not re-run."""
        journal = LocalState(":memory:")
        engine = SyncEngine(backend, timers=timers, clock=clock, journal=journal)
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
        toggle = command(clock, "c1", "toggle")
        backend.enqueue_command("dnd", toggle)
        engine.command_channel("dnd").poll_once()

        # A fresh process sees the same command again
        restarted = SyncEngine(backend, timers=timers, clock=clock, journal=journal)
        restarted.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
        backend.enqueue_command("dnd", toggle)
        restarted.command_channel("dnd").poll_once()

        assert device.read_dnd().enabled is True
        assert backend.acknowledged("dnd") == ["c1", "c1"]
        journal.close()

    def test_permission_denied_publishes_immediately(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        clock: FakeClock,
    ) -> None:
        actuator = MagicMock()
        actuator.execute.side_effect = PermissionDenied("notification policy access")
        denied = DndState(has_permission=False)
        engine.register_feature(dnd_feature(actuator, lambda: denied))
        backend.enqueue_command("dnd", command(clock, "c1", "enable"))

        engine.command_channel("dnd").poll_once()

        assert backend.get_state("dnd")["hasPermission"] is False

    def test_notify_changed_debounces(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        device: SimulatedDevice,
    ) -> None:
        engine.register_feature(media_feature(device.actuator("media"), device.read_media))

        for volume in (1, 2, 3):
            engine.notify_changed("media", StateSnapshot("media", {"volume": volume}))
        timers.advance(1000)

        assert backend.pushes("media") == [StateSnapshot("media", {"volume": 3})]

    def test_notify_changed_unknown_feature(self, engine: SyncEngine) -> None:
        with pytest.raises(ValueError):
            engine.notify_changed("wifi")

    def test_notify_changed_without_state_is_noop(
        self, engine: SyncEngine, timers: ManualTimers, device: SimulatedDevice
    ) -> None:
        engine.register_feature(dnd_feature(device.actuator("dnd")))

        engine.notify_changed("dnd")

        assert timers.pending == []

    def test_wake_unknown_namespace_is_noop(self, engine: SyncEngine) -> None:
        engine.wake("wifi")
        engine.wake()


class TestScheduled:
    """Tests for scheduled delivery through the engine."""

    def test_schedule_item(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        item = ScheduledItem(
            id="m1",
            payload={"recipientNumber": "+15550100", "message": "hi"},
            execute_at=clock() + 5000,
        )

        assert engine.schedule_item(item) is True
        timers.advance(5000)

        assert device.sent_messages == [item.payload]
        assert item.status == ScheduledStatus.SENT

    def test_cancel_item(self, engine: SyncEngine, clock: FakeClock) -> None:
        item = ScheduledItem(
            id="m1",
            payload={"recipientNumber": "+15550100", "message": "hi"},
            execute_at=clock() + 5000,
        )
        engine.schedule_item(item)

        assert engine.cancel_item("m1") is True
        assert item.status == ScheduledStatus.CANCELLED

    def test_retry_backoff_from_config(
        self, backend: MemoryBackend, timers: ManualTimers, clock: FakeClock
    ) -> None:
        actuator = MagicMock()
        actuator.execute.side_effect = [ActuatorError("no signal"), None]
        engine = SyncEngine(
            backend,
            EngineConfig(retry_backoff=60.0),
            timers=timers,
            clock=clock,
            actuator=actuator,
        )
        item = ScheduledItem(id="m1", payload={}, execute_at=clock())

        engine.schedule_item(item)
        timers.advance(60_000)

        assert item.status == ScheduledStatus.SENT

    def test_start_scheduled_rescans(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        backend.add_scheduled_item(
            {"recipientNumber": "+15550100", "message": "overdue"},
            clock() - 1000,
            item_id="s1",
        )

        engine.start(SCHEDULED_NAMESPACE)

        assert engine.running_namespaces == {SCHEDULED_NAMESPACE}
        assert device.sent_messages[0]["message"] == "overdue"
        assert backend.get_scheduled_item("s1").status == ScheduledStatus.SENT

    def test_stop_and_start_scheduled_keeps_pending_items(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        backend.add_scheduled_item(
            {"recipientNumber": "+15550100", "message": "later"},
            clock() + 60_000,
            item_id="s1",
        )
        engine.start(SCHEDULED_NAMESPACE)
        engine.stop(SCHEDULED_NAMESPACE)
        engine.start(SCHEDULED_NAMESPACE)

        timers.advance(120_000)

        assert [m["message"] for m in device.sent_messages] == ["later"]
        assert backend.get_scheduled_item("s1").status == ScheduledStatus.SENT

    def test_scheduling_without_actuator(
        self, backend: MemoryBackend, timers: ManualTimers, clock: FakeClock
    ) -> None:
        engine = SyncEngine(backend, timers=timers, clock=clock)

        assert engine.delivery is None
        with pytest.raises(SyncError, match="actuator"):
            engine.start(SCHEDULED_NAMESPACE)
        with pytest.raises(SyncError):
            engine.schedule_item(ScheduledItem(id="m1", payload={}, execute_at=0))


class TestMirrorAndProgress:
    """Tests for the mirror manager and bulk progress."""

    def test_mirror_uses_config(self, backend: MemoryBackend, timers: ManualTimers) -> None:
        engine = SyncEngine(
            backend,
            EngineConfig(mirror_capacity=2, dedup_capacity=5, dedup_policy="clear"),
            timers=timers,
        )

        assert engine.mirror.capacity == 2
        assert engine.mirror.dedup.capacity == 5
        assert engine.mirror.dedup.policy.value == "clear"

    def test_run_bulk_reports_and_records(
        self, backend: MemoryBackend, timers: ManualTimers, clock: FakeClock
    ) -> None:
        state = LocalState(":memory:")
        engine = SyncEngine(
            backend,
            timers=timers,
            clock=clock,
            diagnostics=DiagnosticsStore(state, clock=clock),
        )
        updates: list[str] = []
        engine.add_progress_observer(lambda done, total, message: updates.append(message))

        result = engine.run_bulk("initial-sync", ["a", "b"], lambda item: None)

        assert result.status == "complete"
        assert updates == ["Syncing 1 of 2", "Syncing 2 of 2", "Sync complete"]
        assert DiagnosticsStore(state).read("initial-sync").last_done == 2
        state.close()
