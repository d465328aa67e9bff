from __future__ import annotations

import argparse
import logging
import signal
import threading
from datetime import datetime, timezone
from typing import Any, Callable

import timing
from config import Config, ConfigError, load_config, log_level_value
from funcs import RepeatingModule, Sink
from http_probe import HttpProbe, HttpProbeError, format_probe_result
from scheduler import new_scheduler
from timing_context import TimingContext

LOG = logging.getLogger("dualclock")
EXIT_MISSING_PROBE_URL = 2
CLOCK_FORMAT = "%Y-%m-%d %H:%M:%S"


def stdout_sink(value: Any) -> None:
    print(value, flush=True)


def format_clock(now_dt: datetime) -> str:
    return now_dt.astimezone(timezone.utc).strftime(CLOCK_FORMAT) + " UTC"


def build_clock_func() -> Callable[[Sink], None]:
    def _clock(sink: Sink) -> None:
        sink(format_clock(timing.now()))

    return _clock


def build_probe_func(probe: HttpProbe) -> Callable[[Sink], None]:
    def _probe(sink: Sink) -> None:
        try:
            result = probe.check()
        except HttpProbeError as exc:
            LOG.warning("Probe failed: %s", exc)
            sink(f"error: {exc}")
            return
        sink(format_probe_result(result))

    return _probe


def install_signal_handlers(context: TimingContext, stop_event: threading.Event) -> None:
    def _stop_handler(_signum, _frame):
        stop_event.set()

    def _pause_handler(_signum, _frame):
        LOG.info("Pausing status updates")
        context.pause()

    def _resume_handler(_signum, _frame):
        LOG.info("Resuming status updates")
        context.resume()

    signal.signal(signal.SIGINT, _stop_handler)
    signal.signal(signal.SIGTERM, _stop_handler)
    signal.signal(signal.SIGUSR1, _pause_handler)
    signal.signal(signal.SIGUSR2, _resume_handler)


def run_status_line(
    module: RepeatingModule,
    stop_event: threading.Event,
    sink: Sink = stdout_sink,
) -> None:
    worker = threading.Thread(
        target=module.stream,
        kwargs={"sink": sink, "stop_event": stop_event},
        daemon=True,
        name="status-line",
    )
    worker.start()
    LOG.info("Status line started (every %s)", module.interval)
    try:
        while not stop_event.is_set():
            stop_event.wait(timeout=0.25)
    finally:
        stop_event.set()
        worker.join(timeout=2.0)


def run_test_clock_demo(context: TimingContext, ticks: int, interval_sec: int) -> list[str]:
    context.test_mode()
    try:
        sch = new_scheduler(context).every(interval_sec)
        lines = []
        for _ in range(ticks):
            fired_at = context.next_tick()
            consumed = sch.tick(timeout=0)
            lines.append(f"{fired_at.isoformat()} fired={consumed} next={sch.next_fire_time().isoformat()}")
        return lines
    finally:
        context.exit_test_mode()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Status line runner on a pausable scheduler")
    subparsers = parser.add_subparsers(dest="command", required=True)

    clock_parser = subparsers.add_parser("clock", help="Print the current time on a fixed interval")
    clock_parser.add_argument("--interval", type=int, default=None, help="Seconds between updates")

    probe_parser = subparsers.add_parser("probe", help="Poll a URL and print its status")
    probe_parser.add_argument("--interval", type=int, default=None, help="Seconds between probes")
    probe_parser.add_argument("--url", default=None, help="URL to probe (defaults to PROBE_URL)")

    demo_parser = subparsers.add_parser("demo-test-clock", help="Drive a repeating scheduler on the virtual clock")
    demo_parser.add_argument("--ticks", type=int, default=3)
    demo_parser.add_argument("--interval", type=int, default=60)
    return parser.parse_args(argv)


def run_command(args: argparse.Namespace, config: Config, context: TimingContext) -> int:
    if args.command == "demo-test-clock":
        for line in run_test_clock_demo(context, args.ticks, args.interval):
            print(line)
        return 0

    interval_sec = args.interval or config.status_interval_sec
    if interval_sec <= 0:
        raise SystemExit("--interval must be > 0")

    if args.command == "clock":
        fn = build_clock_func()
    elif args.command == "probe":
        url = (args.url or config.probe_url).strip()
        if not url:
            print("probe requires --url or PROBE_URL")
            return EXIT_MISSING_PROBE_URL
        fn = build_probe_func(HttpProbe(url, timeout_sec=config.http_timeout_sec))
    else:
        raise SystemExit(f"Unknown command: {args.command}")

    stop_event = threading.Event()
    install_signal_handlers(context, stop_event)
    run_status_line(RepeatingModule(interval_sec, fn, context=context), stop_event)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        config = load_config(".env")
    except ConfigError as exc:
        raise SystemExit(f"Config error: {exc}")

    logging.basicConfig(level=log_level_value(config), format="%(asctime)s %(levelname)s %(message)s")
    context = TimingContext.from_config(config)
    timing.configure(context)
    raise SystemExit(run_command(args, config, context))


if __name__ == "__main__":
    main()
