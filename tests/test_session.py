import json

import pytest

from pitchup import (
    CaptureUnavailableError, EventLogger, ManualClock, SessionStateMachine, SimulatedCaptureDevice,
    WindowState
)

T0 = 1_000_000.0


def make_machine(capture_device=None, event_logger=None):
    clock = ManualClock(start=T0)
    closed = []
    machine = SessionStateMachine(
        clock=clock,
        capture_device=capture_device or SimulatedCaptureDevice("u1"),
        terminal_callback=closed.append,
        event_logger=event_logger
    )
    return clock, machine, closed


def test_retake_then_late_submission():
    clock, machine, closed = make_machine()
    machine.notified("u1")

    clock.advance_to(T0 + 10)
    assert machine.start_recording() is not None
    clock.advance_to(T0 + 40)
    assert machine.stop_recording() is not None
    first_take = machine.window.artifact_ref
    assert first_take is not None

    assert machine.retake() is not None
    assert machine.awaiting_take
    assert machine.window.artifact_ref is None
    assert machine.stop_recording() is None

    clock.advance_to(T0 + 50)
    assert machine.start_recording() is not None
    assert not machine.awaiting_take
    assert machine.window.recording_started_at == T0 + 50
    assert machine.window.recording_deadline_at == T0 + 110
    assert machine.start_recording() is None

    clock.advance_to(T0 + 100)
    assert machine.state == WindowState.RECORDING
    assert machine.stop_recording() is not None
    assert machine.window.recording_duration_sec == pytest.approx(50.0)
    assert machine.submit() is not None

    window = closed[0]
    assert window.state == WindowState.SUBMITTED
    assert window.retake_count == 1
    assert window.is_late is True
    assert window.deadline_at == T0 + 120
    assert window.submitted_at == T0 + 100
    assert window.artifact_ref not in (None, first_take)


def test_no_action_expires():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    clock.advance_to(T0 + 121)

    window = closed[0]
    assert window.state == WindowState.EXPIRED
    assert window.artifact_ref is None
    assert window.expired_at == T0 + 120
    assert machine.submit() is None


def test_recording_cap_forces_review():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    clock.advance_to(T0 + 10)
    machine.start_recording()

    clock.advance_to(T0 + 69.9)
    assert machine.state == WindowState.RECORDING
    clock.advance_to(T0 + 70)
    assert machine.state == WindowState.REVIEW
    assert machine.window.recording_duration_sec == pytest.approx(60.0)
    assert machine.window.artifact_ref is not None
    assert closed == []


@pytest.mark.parametrize("submit_at, late", [(59.0, False), (60.0, False), (60.5, True), (119.0, True)])
def test_is_late_threshold(submit_at, late):
    clock, machine, closed = make_machine()
    machine.notified("u1")
    machine.start_recording(T0 + 1)
    machine.stop_recording(T0 + 2)
    clock.advance_to(T0 + submit_at)
    machine.submit()
    assert closed[0].is_late is late


def test_retake_only_from_review_and_keeps_deadline():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    assert machine.retake() is None

    machine.start_recording(T0 + 5)
    assert machine.retake() is None
    machine.stop_recording(T0 + 15)

    for i in range(1, 4):
        clock.advance_to(T0 + 15 + i * 5)
        machine.retake()
        machine.start_recording()
        machine.stop_recording()
        assert machine.state == WindowState.REVIEW
        assert machine.window.retake_count == i
        assert machine.window.deadline_at == T0 + 120


def test_retaken_take_gets_full_recording_cap():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    machine.start_recording(T0 + 10)
    machine.stop_recording(T0 + 40)
    machine.retake(T0 + 40)

    # Nothing is captured while waiting, so no cap runs yet
    clock.advance_to(T0 + 50)
    assert machine.state == WindowState.RECORDING
    assert machine.get_state_summary()["awaiting_take"] is True
    assert machine.get_state_summary()["recording_remaining_sec"] is None

    machine.start_recording()
    clock.advance_to(T0 + 105)
    assert machine.state == WindowState.RECORDING
    clock.advance_to(T0 + 110)
    assert machine.state == WindowState.REVIEW
    assert machine.window.recording_duration_sec == pytest.approx(60.0)


def test_pending_retake_expires_with_window():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    machine.start_recording(T0 + 10)
    machine.stop_recording(T0 + 20)
    machine.retake(T0 + 30)

    clock.advance_to(T0 + 121)
    assert closed[0].state == WindowState.EXPIRED
    assert closed[0].retake_count == 1
    assert closed[0].artifact_ref is None


def test_rejected_events_return_none():
    clock, machine, closed = make_machine()
    assert machine.submit() is None
    assert machine.stop_recording() is None
    assert machine.start_recording() is None

    machine.notified("u1")
    assert machine.notified("u1") is None
    assert machine.submit() is None
    assert machine.stop_recording() is None
    assert machine.state == WindowState.ARMED


def test_expiry_while_recording_discards_take():
    device = SimulatedCaptureDevice("u1")
    clock, machine, closed = make_machine(capture_device=device)
    machine.notified("u1")
    clock.advance_to(T0 + 100)
    machine.start_recording()

    # Window deadline beats the recording cap at 160
    clock.advance_to(T0 + 130)
    assert closed[0].state == WindowState.EXPIRED
    assert closed[0].artifact_ref is None
    assert len(device.discarded) == 1
    assert device.active == {}


def test_capture_failure_leaves_state_untouched():
    device = SimulatedCaptureDevice("u1", available=False)
    clock, machine, closed = make_machine(capture_device=device)
    machine.notified("u1")

    with pytest.raises(CaptureUnavailableError):
        machine.start_recording(T0 + 5)
    assert machine.state == WindowState.ARMED

    device.available = True
    machine.start_recording(T0 + 6)
    machine.stop_recording(T0 + 20)

    device.available = False
    machine.retake(T0 + 25)
    with pytest.raises(CaptureUnavailableError):
        machine.start_recording(T0 + 26)
    assert machine.awaiting_take
    assert machine.window.retake_count == 1

    device.available = True
    assert machine.start_recording(T0 + 27) is not None
    assert machine.window.recording_started_at == T0 + 27


def test_terminal_cancels_timers_and_stale_timers_never_touch_next_window():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    machine.start_recording(T0 + 5)
    machine.stop_recording(T0 + 10)
    machine.submit(T0 + 10)
    assert clock.pending_count() == 0

    assert machine.reset() is True
    assert machine.state == WindowState.IDLE

    clock.advance_to(T0 + 20)
    machine.notified("u1")
    clock.advance_to(T0 + 121)
    assert machine.state == WindowState.ARMED
    assert len(closed) == 1


def test_reset_refused_while_window_live():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    assert machine.reset() is False
    assert machine.state == WindowState.ARMED


def test_passed_window_deadline_reconciled_on_next_event(tmp_path):
    logger = EventLogger(str(tmp_path / "events.jsonl"))
    clock, machine, closed = make_machine(event_logger=logger)
    machine.notified("u1")

    # Host slept through the deadline
    clock.set(T0 + 300)
    assert machine.start_recording() is None
    assert closed[0].state == WindowState.EXPIRED
    assert closed[0].expired_at == T0 + 120

    skew = [e for e in logger.get_recent_events() if e["event_type"] == "clock_skew"]
    assert len(skew) == 1
    assert skew[0]["metadata"]["overdue_sec"] == pytest.approx(180.0)


def test_passed_recording_deadline_reconciled():
    clock, machine, closed = make_machine()
    machine.notified("u1")
    machine.start_recording(T0 + 10)

    clock.set(T0 + 90)
    assert machine.check_deadlines() is True
    assert machine.state == WindowState.REVIEW
    assert machine.window.recording_duration_sec == pytest.approx(60.0)
    assert machine.check_deadlines() is False


def test_transitions_are_recorded():
    clock, machine, closed = make_machine()
    seen = []
    machine.transition_callback = seen.append
    machine.notified("u1")
    machine.start_recording(T0 + 3)

    assert [(e.from_state, e.to_state) for e in seen] == [("idle", "armed"), ("armed", "recording")]
    assert seen[1].time_in_previous_state == pytest.approx(3.0)
    assert json.loads(json.dumps(seen[1].to_dict()))["window_id"] == machine.window.id

    summary = machine.get_state_summary(T0 + 13)
    assert summary["state"] == "recording"
    assert summary["time_remaining_sec"] == pytest.approx(107.0)
    assert summary["recording_remaining_sec"] == pytest.approx(50.0)
