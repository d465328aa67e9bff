"""Process-wide timing API.

Code that needs wakeups asks this module for a scheduler and never checks
which mode it runs in:

    sch = timing.new_scheduler().every(timedelta(minutes=1))
    while True:
        refresh()
        sch.tick()

Tests switch the whole process to a virtual clock and drive it explicitly:

    timing.test_mode()
    sch = timing.new_scheduler().after(5)
    timing.advance_by(5)  # sch fires here
"""

from __future__ import annotations

from datetime import datetime, timedelta

from scheduler import Scheduler
from scheduler import new_scheduler as _new_scheduler
from timing_context import TimingContext

_default_context = TimingContext()


def default_context() -> TimingContext:
    return _default_context


def configure(context: TimingContext) -> TimingContext:
    """Replace the process-wide context; returns the previous one."""
    global _default_context
    previous = _default_context
    _default_context = context
    return previous


def now() -> datetime:
    return _default_context.now()


def new_scheduler() -> Scheduler:
    return _new_scheduler(_default_context)


def test_mode() -> None:
    _default_context.test_mode()


def exit_test_mode() -> None:
    _default_context.exit_test_mode()


def is_test_mode() -> bool:
    return _default_context.is_test_mode()


def next_tick() -> datetime:
    return _default_context.next_tick()


def advance_by(duration: timedelta | int | float) -> None:
    _default_context.advance_by(duration)


def advance_to(target: datetime) -> None:
    _default_context.advance_to(target)


def pause() -> None:
    _default_context.pause()


def resume() -> None:
    _default_context.resume()


def is_paused() -> bool:
    return _default_context.is_paused()

