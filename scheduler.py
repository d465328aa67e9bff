from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from timing_context import DispatchMarker, TimingContext, ensure_utc, to_timedelta

LOG = logging.getLogger("dualclock")


class Scheduler(ABC):
    """One source of time-based wakeups, one-shot or repeating.

    `at`, `after` and `every` replace whatever wakeup was pending; `stop`
    cancels it. The owner blocks in `tick()`, which consumes one fire. Fires
    that happen before the owner calls `tick()` collapse into a single
    pending notification.
    """

    mode = "Base"

    def __init__(self, context: TimingContext):
        self.context = context
        self.handle = context.allocate_handle()
        self._cond = threading.Condition()
        self._fired = False
        self._waiting = 0
        self._consumed = 0
        self._start_time: datetime | None = None
        self._interval: timedelta | None = None

    def __repr__(self) -> str:
        return f"Scheduler#{self.handle}"

    @property
    def is_repeating(self) -> bool:
        return self._interval is not None

    @property
    def interval(self) -> timedelta | None:
        return self._interval

    @abstractmethod
    def at(self, when: datetime) -> "Scheduler":
        ...

    @abstractmethod
    def after(self, delay: timedelta | int | float) -> "Scheduler":
        ...

    @abstractmethod
    def every(self, interval: timedelta | int | float) -> "Scheduler":
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def next_fire_time(self) -> datetime | None:
        ...

    def _trace(self, operation: str, value: object = "") -> None:
        LOG.debug("%r %s[%s](%s)", self, operation, self.mode, value)

    def _validated_interval(self, interval: timedelta | int | float) -> timedelta:
        value = to_timedelta(interval)
        if value <= timedelta(0):
            raise ValueError(f"non-positive interval for Scheduler.every: {value}")
        return value

    def next_repeating_tick(self) -> datetime:
        start = self._start_time
        interval = self._interval
        if start is None or interval is None:
            raise RuntimeError(f"{self!r} is not repeating")
        now = self.context.now()
        if now < start:
            return start + interval
        elapsed_intervals = (now - start) // interval
        return start + interval * (elapsed_intervals + 1)

    def tick(self, timeout: float | None = None) -> bool:
        """Block until the scheduler fires and consume the notification.

        Returns False only if `timeout` seconds pass without a fire.
        """
        with self._cond:
            self._waiting += 1
            self._cond.notify_all()
            try:
                if not self._cond.wait_for(lambda: self._fired, timeout):
                    return False
                self._fired = False
                self._consumed += 1
                return True
            finally:
                self._waiting -= 1
                self._cond.notify_all()

    def notify(self) -> None:
        with self._cond:
            self._fired = True
            self._cond.notify_all()

    def _drop_pending_tick(self) -> None:
        with self._cond:
            self._fired = False

    def has_pending_tick(self) -> bool:
        with self._cond:
            return self._fired

    def dispatch_marker(self) -> DispatchMarker:
        with self._cond:
            return DispatchMarker(
                had_waiter=self._waiting > 0,
                consumed=self._consumed,
            )

    def wait_observed(self, marker: DispatchMarker, timeout: float) -> bool:
        """Wait until the owner took the tick and is back in `tick()`."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._consumed > marker.consumed and self._waiting > 0,
                timeout,
            )


class TestScheduler(Scheduler):
    """Scheduler that only fires when the context's virtual clock is advanced."""

    mode = "Test"

    def _set_next_trigger(self, when: datetime | None) -> "TestScheduler":
        self.context.triggers.set_next(self.handle, self, when)
        return self

    def at(self, when: datetime) -> "TestScheduler":
        when = ensure_utc(when)
        self._trace("At", when)
        self._interval = None
        return self._set_next_trigger(when)

    def after(self, delay: timedelta | int | float) -> "TestScheduler":
        delay = to_timedelta(delay)
        self._trace("After", delay)
        self._interval = None
        return self._set_next_trigger(self.context.now() + delay)

    def every(self, interval: timedelta | int | float) -> "TestScheduler":
        self._trace("Every", interval)
        interval = self._validated_interval(interval)
        self._start_time = self.context.now()
        self._interval = interval
        return self._set_next_trigger(self.next_repeating_tick())

    def stop(self) -> None:
        self._trace("Stop")
        self._interval = None
        self._set_next_trigger(None)
        self._drop_pending_tick()

    def next_fire_time(self) -> datetime | None:
        return self.context.triggers.get(self.handle)


class RealScheduler(Scheduler):
    """Scheduler driven by `threading.Timer` against the wall clock.

    Repeating schedules re-arm on the grid `start + k * interval` after each
    fire. While the context is paused a due scheduler is parked and fires once
    on resume, however many grid points it missed.
    """

    mode = "Real"

    def __init__(self, context: TimingContext):
        super().__init__(context)
        self._timer_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._timer_generation = 0
        self._next_fire: datetime | None = None
        context.register_real(self)

    def _cancel_unlocked(self) -> None:
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._next_fire = None

    def _arm_unlocked(self, when: datetime) -> None:
        self._cancel_unlocked()
        generation = self._timer_generation
        delay_sec = max(0.0, (when - self.context.now()).total_seconds())
        timer = threading.Timer(delay_sec, self._on_timer, args=(generation,))
        timer.daemon = True
        timer.name = f"dualclock-timer-{self.handle}"
        self._timer = timer
        self._next_fire = when
        timer.start()

    def _on_timer(self, generation: int) -> None:
        with self._timer_lock:
            if generation != self._timer_generation:
                return
            if self._interval is not None and self._next_fire is not None:
                next_fire = self.next_repeating_tick()
                if next_fire <= self._next_fire:
                    # Timer woke marginally ahead of the wall clock.
                    next_fire = self._next_fire + self._interval
                self._arm_unlocked(next_fire)
            else:
                self._timer = None
                self._next_fire = None
            # Lock order: _timer_lock, then context.mu, then _cond.
            self.context.maybe_trigger(self)

    def at(self, when: datetime) -> "RealScheduler":
        when = ensure_utc(when)
        self._trace("At", when)
        with self._timer_lock:
            self._interval = None
            self._arm_unlocked(when)
        return self

    def after(self, delay: timedelta | int | float) -> "RealScheduler":
        delay = to_timedelta(delay)
        self._trace("After", delay)
        with self._timer_lock:
            self._interval = None
            self._arm_unlocked(self.context.now() + delay)
        return self

    def every(self, interval: timedelta | int | float) -> "RealScheduler":
        self._trace("Every", interval)
        interval = self._validated_interval(interval)
        with self._timer_lock:
            self._start_time = self.context.now()
            self._interval = interval
            self._arm_unlocked(self.next_repeating_tick())
        return self

    def stop(self) -> None:
        self._trace("Stop")
        self.cancel_timer()
        self.context.discard_waiter(self)

    def cancel_timer(self) -> None:
        with self._timer_lock:
            self._interval = None
            self._cancel_unlocked()
            self._drop_pending_tick()

    def next_fire_time(self) -> datetime | None:
        with self._timer_lock:
            return self._next_fire


def new_scheduler(context: TimingContext) -> Scheduler:
    if context.is_test_mode():
        return TestScheduler(context)
    return RealScheduler(context)
