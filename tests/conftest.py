"""Shared fixtures: a virtual clock and a timer service driven by it."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import pytest

from syncbridge.client.memory import MemoryBackend

START_MS = 1_700_000_000_000


class FakeClock:
    """Virtual clock returning epoch milliseconds."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class ManualJob:
    """Timer armed on ManualTimers."""

    due: int
    func: Callable[[], None]
    interval: int | None
    name: str | None
    seq: int
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """TimerService that only fires when the test advances virtual time."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.jobs: list[ManualJob] = []
        self.shut_down = False
        self._seq = 0

    def _add(
        self,
        delay_ms: int,
        func: Callable[[], None],
        interval: int | None,
        name: str | None,
    ) -> ManualJob:
        self._seq += 1
        job = ManualJob(
            due=self.clock.now + delay_ms,
            func=func,
            interval=interval,
            name=name,
            seq=self._seq,
        )
        self.jobs.append(job)
        return job

    def call_later(
        self,
        delay: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> ManualJob:
        return self._add(max(int(delay * 1000), 0), func, None, name)

    def call_every(
        self,
        interval: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> ManualJob:
        if interval <= 0:
            raise ValueError("interval must be positive")
        interval_ms = int(interval * 1000)
        return self._add(interval_ms, func, interval_ms, name)

    def shutdown(self) -> None:
        for job in self.jobs:
            job.cancel()
        self.shut_down = True

    @property
    def pending(self) -> list[ManualJob]:
        """Armed timers."""
        return [job for job in self.jobs if not job.cancelled]

    def pending_names(self) -> list[str | None]:
        return [job.name for job in self.pending]

    def advance(self, ms: int) -> None:
        """Move virtual time forward, firing due timers in order."""
        target = self.clock.now + ms
        while True:
            due = [job for job in self.pending if job.due <= target]
            if not due:
                break
            job = min(due, key=lambda j: (j.due, j.seq))
            self.clock.now = max(self.clock.now, job.due)
            if job.interval:
                job.due += job.interval
            else:
                job.cancelled = True
            job.func()
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    """Virtual clock."""
    return FakeClock()


@pytest.fixture
def timers(clock: FakeClock) -> ManualTimers:
    """Timer service driven by the virtual clock."""
    return ManualTimers(clock)


@pytest.fixture
def backend() -> MemoryBackend:
    """Authenticated in-memory backend."""
    return MemoryBackend()
