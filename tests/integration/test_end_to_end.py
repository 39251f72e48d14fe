"""End-to-end tests: engine, simulated device and in-memory backend together."""

from __future__ import annotations

import pytest
from conftest import FakeClock, ManualTimers

from syncbridge.client.device import SimulatedDevice
from syncbridge.client.memory import MemoryBackend
from syncbridge.client.state import LocalState
from syncbridge.core.config import EngineConfig
from syncbridge.features import dnd_feature, media_feature
from syncbridge.sync import (
    SCHEDULED_NAMESPACE,
    Command,
    DiagnosticsStore,
    ScheduledStatus,
    SyncEngine,
    fingerprint,
)


@pytest.fixture
def device() -> SimulatedDevice:
    return SimulatedDevice()


@pytest.fixture
def state() -> LocalState:
    s = LocalState(":memory:")
    yield s
    s.close()


@pytest.fixture
def engine(
    backend: MemoryBackend,
    timers: ManualTimers,
    clock: FakeClock,
    device: SimulatedDevice,
    state: LocalState,
) -> SyncEngine:
    e = SyncEngine(
        backend,
        EngineConfig(mirror_capacity=3),
        timers=timers,
        clock=clock,
        journal=state,
        actuator=device.actuator(SCHEDULED_NAMESPACE),
        diagnostics=DiagnosticsStore(state, clock=clock),
    )
    e.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
    e.register_feature(media_feature(device.actuator("media"), device.read_media))
    yield e
    e.shutdown()


class TestCommandRoundTrip:
    """Remote command in, device state out."""

    def test_volume_command_updates_remote_state(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
    ) -> None:
        backend.enqueue_command(
            "media", Command(id="c1", action="set_volume", args={"volume": 9}, created_at=clock())
        )
        backend.enqueue_command(
            "media", Command(id="c2", action="play", created_at=clock())
        )

        assert engine.command_channel("media").poll_once() == 2
        timers.advance(1000)

        remote = backend.get_state("media")
        assert remote["volume"] == 9
        assert remote["isPlaying"] is True
        assert backend.acknowledged("media") == ["c1", "c2"]

    def test_stale_command_never_reaches_device(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        backend.enqueue_command(
            "dnd", Command(id="old", action="enable", created_at=clock() - 60_000)
        )

        engine.command_channel("dnd").poll_once()

        assert device.read_dnd().enabled is False
        assert backend.acknowledged("dnd") == ["old"]


class TestScheduledScenario:
    """Scheduled message timeline."""

    def test_message_sent_at_its_time(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
        device: SimulatedDevice,
    ) -> None:
        backend.add_scheduled_item(
            {"recipientNumber": "+15550100", "message": "Happy birthday!"},
            clock() + 5000,
            item_id="m1",
        )
        engine.start(SCHEDULED_NAMESPACE)
        assert device.sent_messages == []

        timers.advance(5000)

        assert len(device.sent_messages) == 1
        assert backend.get_scheduled_item("m1").status == ScheduledStatus.SENT

        # Later rescans do not send it again
        timers.advance(60_000)
        assert len(device.sent_messages) == 1

    def test_invalid_message_fails_after_retries(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        timers: ManualTimers,
        clock: FakeClock,
    ) -> None:
        backend.add_scheduled_item({"message": "no recipient"}, clock(), item_id="m2")
        engine.start(SCHEDULED_NAMESPACE)

        timers.advance(2 * 300_000)

        item = backend.get_scheduled_item("m2")
        assert item.status == ScheduledStatus.FAILED
        assert "recipient" in item.last_error


class TestMirrorScenario:
    """Notification mirroring with capacity."""

    def test_burst_of_notifications_stays_bounded(
        self, engine: SyncEngine, backend: MemoryBackend, clock: FakeClock
    ) -> None:
        for n in range(1, 6):
            clock.advance(1)
            key = fingerprint("com.chat", n, f"Message {n}", "body")
            engine.mirror.mirror(n, {"title": f"Message {n}"}, key)
            # The producer reposts the same notification
            engine.mirror.mirror(n, {"title": f"Message {n}"}, key)

        titles = [r.payload["title"] for r in backend.mirror_list()]
        assert titles == ["Message 3", "Message 4", "Message 5"]
        assert backend.mirror_writes == 5


class TestInitialSync:
    """Bulk start of every namespace."""

    def test_run_bulk_starts_everything(
        self,
        engine: SyncEngine,
        backend: MemoryBackend,
        state: LocalState,
    ) -> None:
        namespaces = ["dnd", "media", SCHEDULED_NAMESPACE]
        result = engine.run_bulk("initial-sync", namespaces, engine.start)

        assert result.status == "complete"
        assert engine.running_namespaces == {"dnd", "media", SCHEDULED_NAMESPACE}
        assert backend.get_state("dnd")["enabled"] is False
        assert backend.get_state("media")["isPlaying"] is False
        assert DiagnosticsStore(state).read("initial-sync").last_done == 3
