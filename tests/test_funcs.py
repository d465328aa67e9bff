from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta

import funcs
from timing_context import TEST_EPOCH, TimingContext


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def _start(module, sink, stop_event) -> threading.Thread:
    thread = threading.Thread(
        target=module.stream,
        kwargs={"sink": sink, "stop_event": stop_event},
        daemon=True,
    )
    thread.start()
    return thread


def test_once_runs_function_a_single_time_and_keeps_streaming():
    outputs = []
    stop_event = threading.Event()
    thread = _start(funcs.once(lambda sink: sink("hello")), outputs.append, stop_event)

    assert _wait_until(lambda: outputs == ["hello"])
    time.sleep(0.05)
    assert thread.is_alive()

    stop_event.set()
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert outputs == ["hello"]


def test_on_click_reruns_after_each_click():
    outputs = []
    stop_event = threading.Event()
    module = funcs.on_click(lambda sink: sink(len(outputs)))
    thread = _start(module, outputs.append, stop_event)
    try:
        assert _wait_until(lambda: outputs == [0])
        time.sleep(0.05)
        assert outputs == [0]

        module.click()
        assert _wait_until(lambda: outputs == [0, 1])
    finally:
        stop_event.set()
        thread.join(timeout=2.0)
    assert not thread.is_alive()


def test_every_runs_on_virtual_clock():
    context = TimingContext(grace_timeout_sec=1.0)
    context.test_mode()
    outputs = []
    stop_event = threading.Event()
    module = funcs.every(timedelta(minutes=1), lambda sink: sink(context.now()), context=context)
    thread = _start(module, outputs.append, stop_event)
    try:
        assert _wait_until(lambda: len(outputs) == 1 and len(context.triggers) == 1)

        context.advance_by(timedelta(minutes=1))
        assert _wait_until(lambda: len(outputs) == 2)

        context.advance_by(timedelta(minutes=1))
        assert _wait_until(lambda: len(outputs) == 3)
    finally:
        stop_event.set()
        thread.join(timeout=2.0)

    assert outputs == [
        TEST_EPOCH,
        TEST_EPOCH + timedelta(minutes=1),
        TEST_EPOCH + timedelta(minutes=2),
    ]
    assert len(context.triggers) == 0


def test_every_keeps_running_after_function_error(caplog):
    context = TimingContext(grace_timeout_sec=1.0)
    context.test_mode()
    calls = []
    stop_event = threading.Event()

    def _flaky(sink):
        calls.append(context.now())
        if len(calls) == 1:
            raise RuntimeError("boom")
        sink("ok")

    outputs = []
    thread = _start(funcs.every(10, _flaky, context=context), outputs.append, stop_event)
    try:
        with caplog.at_level(logging.ERROR, logger="dualclock"):
            assert _wait_until(lambda: len(calls) == 1 and len(context.triggers) == 1)
            context.advance_by(10)
            assert _wait_until(lambda: outputs == ["ok"])
    finally:
        stop_event.set()
        thread.join(timeout=2.0)

    assert "Unhandled exception in every function" in caplog.text


def test_once_restarts_on_click_after_failure():
    outputs = []
    calls = []
    stop_event = threading.Event()

    def _fails_first(sink):
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("first run fails")
        sink("recovered")

    module = funcs.once(_fails_first)
    thread = _start(module, outputs.append, stop_event)
    try:
        assert _wait_until(lambda: calls == [0])

        module.click()
        assert _wait_until(lambda: outputs == ["recovered"])

        module.click()
        time.sleep(0.05)
        assert calls == [0, 1]
        assert thread.is_alive()
    finally:
        stop_event.set()
        thread.join(timeout=2.0)
    assert not thread.is_alive()
