from __future__ import annotations

import logging
import threading
import time
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from config import Config
from trigger_queue import TriggerQueue

LOG = logging.getLogger("dualclock")

# Non-zero so that "is this timestamp unset" checks never match a fresh test clock.
TEST_EPOCH = datetime(2016, 11, 25, 20, 47, 0, tzinfo=timezone.utc)
DEFAULT_GRACE_TIMEOUT_SEC = 0.05


class TimingModeError(Exception):
    pass


def to_timedelta(value: timedelta | int | float) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected a timedelta or a number of seconds, got: {value!r}")
    return timedelta(seconds=value)


def ensure_utc(value: datetime) -> datetime:
    if not isinstance(value, datetime):
        raise TypeError(f"Expected a datetime, got: {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"Naive datetime is not allowed: {value!r}")
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class DispatchMarker:
    had_waiter: bool
    consumed: int


class TimingContext:
    """Clock, trigger queue, mode and pause state shared by a set of schedulers.

    In real mode the system clock is authoritative and schedulers run on
    timers. In test mode time only moves when `next_tick`, `advance_by` or
    `advance_to` is called, and those calls are the only thing that fires
    schedulers.

    Two locks guard the shared state: `mu` for mode transitions and the pause
    state, and the trigger queue's own lock. When both are needed `mu` is
    taken first.
    """

    def __init__(
        self,
        grace_timeout_sec: float = DEFAULT_GRACE_TIMEOUT_SEC,
        test_epoch: datetime = TEST_EPOCH,
    ):
        if grace_timeout_sec <= 0:
            raise ValueError("grace_timeout_sec must be > 0")
        self.grace_timeout_sec = grace_timeout_sec
        self.test_epoch = ensure_utc(test_epoch)
        self.mu = threading.Lock()
        self.triggers = TriggerQueue()
        self._handle_lock = threading.Lock()
        self._next_handle = 0
        self._test_mode = False
        self._now_in_test = self.test_epoch
        self._now_fn: Callable[[], datetime] = _wall_clock_now
        self._paused = False
        self._waiters: dict[int, Any] = {}
        self._real_schedulers: weakref.WeakSet = weakref.WeakSet()

    @classmethod
    def from_config(cls, config: Config) -> "TimingContext":
        return cls(
            grace_timeout_sec=config.grace_timeout_ms / 1000.0,
            test_epoch=config.test_epoch,
        )

    def now(self) -> datetime:
        return self._now_fn()

    def is_test_mode(self) -> bool:
        return self._test_mode

    def allocate_handle(self) -> int:
        with self._handle_lock:
            self._next_handle += 1
            return self._next_handle

    def _test_now(self) -> datetime:
        return self._now_in_test

    def _reset(self, apply: Callable[[], None]) -> None:
        with self.mu:
            real_schedulers = list(self._real_schedulers)
            self._real_schedulers = weakref.WeakSet()
        # Timer callbacks take mu while holding the scheduler's timer lock, so
        # timers are cancelled before mu is taken again.
        for scheduler in real_schedulers:
            scheduler.cancel_timer()
        with self.mu:
            with self.triggers.lock:
                apply()
                self._waiters.clear()
                self.triggers._clear_unlocked()
                self._paused = False

    def test_mode(self) -> None:
        """Switch every scheduler created from now on to the virtual clock."""

        def _apply() -> None:
            self._test_mode = True
            self._now_fn = self._test_now
            self._now_in_test = self.test_epoch

        self._reset(_apply)
        LOG.debug("Entered test mode at %s", self.test_epoch.isoformat())

    def exit_test_mode(self) -> None:
        def _apply() -> None:
            self._test_mode = False
            self._now_fn = _wall_clock_now

        self._reset(_apply)
        LOG.debug("Exited test mode")

    # Pause/resume gates real schedulers only.

    def pause(self) -> None:
        with self.mu:
            self._paused = True
        LOG.debug("Scheduling paused")

    def resume(self) -> None:
        with self.mu:
            self._paused = False
            waiters = list(self._waiters.values())
            self._waiters.clear()
            for scheduler in waiters:
                scheduler.notify()
        LOG.debug("Scheduling resumed, released %d deferred tick(s)", len(waiters))

    def is_paused(self) -> bool:
        with self.mu:
            return self._paused

    def maybe_trigger(self, scheduler: Any) -> None:
        with self.mu:
            if self._paused:
                self._waiters[scheduler.handle] = scheduler
                return
            scheduler.notify()

    def discard_waiter(self, scheduler: Any) -> None:
        with self.mu:
            self._waiters.pop(scheduler.handle, None)

    def register_real(self, scheduler: Any) -> None:
        with self.mu:
            self._real_schedulers.add(scheduler)

    # Clock controller, test mode only.

    def _require_test_mode(self, operation: str) -> None:
        if not self._test_mode:
            raise TimingModeError(f"{operation} is only available in test mode")

    def next_tick(self) -> datetime:
        """Advance to the earliest pending trigger, fire it and return the new time."""
        self._require_test_mode("next_tick")
        earliest = self.triggers.earliest()
        if earliest is None:
            return self._now_in_test
        self.advance_to(earliest)
        return self._now_in_test

    def advance_by(self, duration: timedelta | int | float) -> None:
        self._require_test_mode("advance_by")
        self.advance_to(self._now_in_test + to_timedelta(duration))

    def advance_to(self, target: datetime) -> None:
        """Move the virtual clock to `target`, firing triggers batch by batch.

        Each pass fires only the triggers sharing the earliest fire time, with
        the clock parked exactly on that time. Repeating schedulers are
        re-armed before their consumers are notified. Passes continue until
        nothing is due at or before `target`; the clock never moves backwards.
        """
        self._require_test_mode("advance_to")
        target = ensure_utc(target)
        while True:
            earliest = self.triggers.earliest()
            if earliest is None or earliest > target:
                self._store_now(target)
                return
            self._store_now(earliest)

            fired = self.triggers.pop_batch(earliest, _rearm)
            if not fired:
                self._store_now(target)
                return

            markers = [(scheduler, scheduler.dispatch_marker()) for scheduler in fired]
            for scheduler in fired:
                scheduler.notify()
            LOG.debug(
                "Fired %d scheduler(s) at %s",
                len(fired),
                self._now_in_test.isoformat(),
            )

            if target <= self._now_in_test:
                return
            self._await_consumers(markers)

    def _store_now(self, value: datetime) -> None:
        if value > self._now_in_test:
            self._now_in_test = value

    def _await_consumers(self, markers: list[tuple[Any, DispatchMarker]]) -> None:
        deadline = time.monotonic() + self.grace_timeout_sec
        for scheduler, marker in markers:
            if not marker.had_waiter:
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not scheduler.wait_observed(marker, remaining):
                LOG.debug("%r did not observe its tick within the grace period", scheduler)


def _rearm(scheduler: Any) -> datetime | None:
    if scheduler.is_repeating:
        return scheduler.next_repeating_tick()
    return None


def _wall_clock_now() -> datetime:
    return datetime.now(timezone.utc)
