"""Status modules built from plain functions.

Each module wraps a function that writes to a sink and decides when it runs:
once, again after every click, or on a fixed interval.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any, Callable

import timing
from scheduler import new_scheduler
from timing_context import TimingContext

LOG = logging.getLogger("dualclock")
WAIT_STEP_SEC = 0.25

Sink = Callable[[Any], None]
Func = Callable[[Sink], None]


def _run_func(fn: Func, sink: Sink, module_name: str) -> bool:
    try:
        fn(sink)
    except Exception:
        LOG.exception("Unhandled exception in %s function", module_name)
        return False
    return True


def _wait_for(event: threading.Event, stop_event: threading.Event) -> bool:
    while not stop_event.is_set():
        if event.wait(timeout=WAIT_STEP_SEC):
            return True
    return False


class OnceModule:
    """Runs the function once and then stays alive. Useful if it loops internally.

    If the function fails, the next click runs it again.
    """

    def __init__(self, fn: Func):
        self.fn = fn
        self._clicked = threading.Event()

    def click(self) -> None:
        self._clicked.set()

    def stream(self, sink: Sink, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        while True:
            self._clicked.clear()
            if _run_func(self.fn, sink, "once"):
                break
            if not _wait_for(self._clicked, stop_event):
                return
        stop_event.wait()


class OnClickModule:
    """Runs the function, then again after each click that follows completion."""

    def __init__(self, fn: Func):
        self.fn = fn
        self._clicked = threading.Event()

    def click(self) -> None:
        self._clicked.set()

    def stream(self, sink: Sink, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            _run_func(self.fn, sink, "on_click")
            # Clicks that arrived while the function ran do not count.
            self._clicked.clear()
            if not _wait_for(self._clicked, stop_event):
                return


class RepeatingModule:
    """Runs the function on a fixed interval, honouring pause and resume."""

    def __init__(
        self,
        interval: timedelta | int | float,
        fn: Func,
        context: TimingContext | None = None,
    ):
        self.interval = interval
        self.fn = fn
        self.context = context

    def stream(self, sink: Sink, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        context = self.context or timing.default_context()
        sch = new_scheduler(context).every(self.interval)
        try:
            while not stop_event.is_set():
                _run_func(self.fn, sink, "every")
                while not stop_event.is_set():
                    if sch.tick(timeout=WAIT_STEP_SEC):
                        break
        finally:
            sch.stop()


def once(fn: Func) -> OnceModule:
    return OnceModule(fn)


def on_click(fn: Func) -> OnClickModule:
    return OnClickModule(fn)


def every(
    interval: timedelta | int | float,
    fn: Func,
    context: TimingContext | None = None,
) -> RepeatingModule:
    return RepeatingModule(interval, fn, context=context)
