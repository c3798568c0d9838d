#!/usr/bin/env python3
"""
Pitch Up Development Runner
Runs the pitch window engine for one user and prints every decision.

Usage:
    python dev_runner.py [--user USER] [--min-delay SEC] [--max-delay SEC]
    python dev_runner.py --simulate
"""

import argparse
import signal
import sys
import time
from datetime import datetime

from pitchup import (
    PitchEngine, ConfigManager, ThreadedClock, ManualClock, SQLiteStore, InMemoryStore,
    EventLogger, EventBus, DedupGuard, Channel, StatusBus, ControlChannel, SimulatedCaptureDevice,
    TerminalNotifierProbe, StaticPermissionProbe, PushPermission, TerminalNotifierTransport,
    ResendEmailTransport, InAppBannerTransport, WindowTransition, WindowClosed, DeliveryCompleted,
    SchedulerConfig, create_snapshot_from_engine, apply_command
)
from pitchup.platform import is_macos


def transition_printer(event: WindowTransition):
    """Print a window transition."""
    print()
    print("=" * 80)
    print(f"WINDOW TRANSITION: {event.from_state.upper()} → {event.to_state.upper()}")
    print(f"Reason: {event.reason}")
    print(f"Time in previous state: {event.time_in_previous_state:.1f}s")
    print("=" * 80)
    print()


def delivery_printer(event: DeliveryCompleted):
    """Print the outcome of one firing."""
    channels = ", ".join(
        f"{a.channel.value}={'ok' if a.delivered else a.error.value}" for a in event.attempts
    )
    print(f"  [DELIVERY] {'delivered' if event.delivered else 'FAILED'} ({channels})")


def outcome_printer(event: WindowClosed):
    """Print the terminal record of a window."""
    w = event.window
    print(f"  [OUTCOME] {w.state.value.upper()} | late={w.is_late} | retakes={w.retake_count} "
          f"| artifact={w.artifact_ref or '-'}")


def every(clock, interval_sec: float, fn):
    """Run fn on the clock thread every interval_sec."""
    def tick():
        try:
            fn()
        finally:
            clock.schedule_at(clock.now() + interval_sec, tick)
    clock.schedule_at(clock.now() + interval_sec, tick)


def format_status_line(status) -> str:
    """Format a single line of engine status."""
    window = status["window"]
    line = f"[{window['state'].upper()}]"

    if window["time_remaining_sec"] is not None:
        line += f" Window: {window['time_remaining_sec']:.0f}s left"
    if window["recording_remaining_sec"] is not None:
        line += f" | Recording: {window['recording_remaining_sec']:.0f}s left"
    if status["next_fire_in_sec"] is not None:
        line += f" | Next prompt in {status['next_fire_in_sec']/60:.1f}m"

    line += f" | Fired: {status['fire_count']} | Windows: {status['windows_opened']}"
    return line


# ----------------------------------------------------------------------
# Simulation
# ----------------------------------------------------------------------

def _sim_engine(clock, verbose):
    """Engine on simulated time with an in-app channel only."""
    bus = EventBus()
    bus.subscribe(WindowTransition, transition_printer)
    bus.subscribe(DeliveryCompleted, delivery_printer)
    bus.subscribe(WindowClosed, outcome_printer)

    return PitchEngine(
        user_id="sim-user",
        clock=clock,
        store=InMemoryStore(),
        transports={Channel.IN_APP: InAppBannerTransport()},
        probe=StaticPermissionProbe(capable=False, permission=PushPermission.DENIED),
        dedup_guard=DedupGuard(),
        event_bus=bus,
        capture_device=SimulatedCaptureDevice("sim-user"),
        verbose=verbose
    )


def run_simulation(verbose: bool):
    """Replay the reference window scenarios on a ManualClock."""
    today = datetime.now().replace(hour=10, minute=0, second=0, microsecond=0)
    t0 = today.timestamp()

    print("=" * 80)
    print("SCENARIO 1: record, retake, submit late")
    print("=" * 80)
    clock = ManualClock(start=t0)
    engine = _sim_engine(clock, verbose)
    engine.start()
    engine.trigger_now()
    clock.advance_to(t0 + 10)
    engine.start_recording()
    clock.advance_to(t0 + 40)
    engine.stop_recording()
    engine.retake()
    clock.advance_to(t0 + 50)
    engine.start_recording()
    clock.advance_to(t0 + 100)
    engine.submit(caption="Simulated pitch")
    engine.stop()

    print("=" * 80)
    print("SCENARIO 2: no response, window expires")
    print("=" * 80)
    clock = ManualClock(start=t0)
    engine = _sim_engine(clock, verbose)
    engine.start()
    engine.trigger_now()
    clock.advance_to(t0 + 121)
    engine.stop()

    print("=" * 80)
    print("SCENARIO 3: recording hits its cap")
    print("=" * 80)
    clock = ManualClock(start=t0)
    engine = _sim_engine(clock, verbose)
    engine.start()
    engine.trigger_now()
    clock.advance_to(t0 + 10)
    engine.start_recording()
    clock.advance_to(t0 + 70)
    print(f"  State at +70s: {engine.machine.state.value.upper()}")
    engine.submit()
    engine.stop()

    print("=" * 80)
    print("SCENARIO 4: host suspended past a prompt")
    print("=" * 80)
    clock = ManualClock(start=t0)
    engine = _sim_engine(clock, verbose)
    next_fire_at = engine.start()
    clock.set(next_fire_at + 600)
    print(f"  Resumed {600/60:.0f}m after the prompt was due")
    engine.check_overdue()
    engine.check_overdue()
    print(f"  Fired {engine.scheduler.fire_count} time(s)")
    clock.advance(121)
    engine.stop()


# ----------------------------------------------------------------------
# Live
# ----------------------------------------------------------------------

def build_transports(config):
    """Push (macOS), email (Resend) and in-app transports."""
    transports = {
        Channel.EMAIL: ResendEmailTransport(config.delivery),
        Channel.IN_APP: InAppBannerTransport()
    }
    if is_macos():
        transports[Channel.PUSH] = TerminalNotifierTransport()
    return transports


def main():
    parser = argparse.ArgumentParser(description="Pitch Up Dev Runner")
    parser.add_argument("--user", type=str, default="local", help="User id (default: local)")
    parser.add_argument("--min-delay", type=float, help="Override minimum delay between prompts (seconds)")
    parser.add_argument("--max-delay", type=float, help="Override maximum delay between prompts (seconds)")
    parser.add_argument("--check-interval", type=float, help="Overdue check interval (seconds)")
    parser.add_argument("--interval", type=float, default=10.0, help="Print interval in seconds (default: 10.0)")
    parser.add_argument("--simulate", action="store_true", help="Replay reference scenarios on simulated time")
    parser.add_argument("--verbose", action="store_true", help="Print engine internals")
    args = parser.parse_args()

    if args.simulate:
        run_simulation(args.verbose)
        return

    config = ConfigManager().load_config()
    if args.min_delay is not None or args.max_delay is not None:
        try:
            config.scheduler = SchedulerConfig(
                min_delay_sec=args.min_delay if args.min_delay is not None else config.scheduler.min_delay_sec,
                max_delay_sec=args.max_delay if args.max_delay is not None else config.scheduler.max_delay_sec
            )
        except ValueError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
    if args.check_interval is not None:
        config.check_interval_sec = args.check_interval

    print("=" * 80)
    print("Pitch Up - Engine Dev Runner")
    print("=" * 80)
    print(f"User: {args.user}")
    print(f"Active hours: {config.active_hours.start_hour:02d}:00-{config.active_hours.end_hour:02d}:00")
    print(f"Delay: {config.scheduler.min_delay_sec/60:.0f}-{config.scheduler.max_delay_sec/60:.0f} min")
    print(f"Window: {config.window.window_sec:.0f}s, recording cap {config.window.recording_sec:.0f}s")
    print(f"Overdue check every {config.check_interval_sec:.0f}s")
    print()
    print("PRIVACY: No audio leaves the capture device. Only ids and timings are stored.")
    print()
    print("Press Ctrl+C to stop")
    print("=" * 80)
    print()

    clock = ThreadedClock()
    store = SQLiteStore()
    event_logger = EventLogger()
    bus = EventBus()
    bus.subscribe(WindowTransition, transition_printer)
    bus.subscribe(DeliveryCompleted, delivery_printer)
    bus.subscribe(WindowClosed, outcome_printer)

    engine = PitchEngine(
        user_id=args.user,
        clock=clock,
        store=store,
        transports=build_transports(config),
        probe=TerminalNotifierProbe() if is_macos() else StaticPermissionProbe(capable=False),
        config=config,
        event_bus=bus,
        event_logger=event_logger,
        capture_device=SimulatedCaptureDevice(args.user),
        verbose=args.verbose
    )

    control = ControlChannel()
    control.drain()  # drop commands left over from a previous run

    status_bus = StatusBus(update_interval_sec=1.0)
    status_bus.set_snapshot_provider(lambda: create_snapshot_from_engine(engine))

    def drain_commands():
        for entry in control.drain():
            print(f"  [CONTROL] {entry['command']}")
            apply_command(engine, entry)

    def handle_sigterm(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        clock.start()
        clock.call_soon(engine.start)
        every(clock, config.check_interval_sec, engine.check_overdue)
        every(clock, 0.5, drain_commands)

        status_bus.start()
        print("Status bus started (publishing to storage/status.json)")
        print()

        last_print = time.time()
        while True:
            time.sleep(0.5)

            now = time.time()
            if now - last_print >= args.interval:
                print(format_status_line(engine.get_status()))
                last_print = now

    except KeyboardInterrupt:
        print()
        print("=" * 80)
        print("Stopping engine...")

        status_bus.stop()
        clock.stop()
        engine.stop()

        summary = engine.get_history_summary()
        print()
        print("History Summary:")
        print(f"  Windows: {summary['total']} (submitted {summary['submitted']}, expired {summary['expired']})")
        print(f"  Late rate: {summary['late_rate']:.0%}")
        print(f"  Mean retakes: {summary['mean_retakes']:.1f}")

        store.close()
        print()
        print("Engine stopped cleanly.")
        print("=" * 80)

        sys.exit(0)


if __name__ == "__main__":
    main()
