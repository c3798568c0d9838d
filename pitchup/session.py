"""
Pitch window state machine.

Implements states: IDLE, ARMED, RECORDING, REVIEW, SUBMITTED, EXPIRED
One window per prompt: a 120s window deadline from notification, with
<=60s recording sub-sessions nested inside it and a retake loop.

Two deadlines race independently:
- window deadline (armed_at + window_sec): always wins, expires the window
- recording deadline (recording_started_at + recording_sec): forces REVIEW

Timer callbacks are bound to the window id (and recording sequence), and
every timer is cancelled when its state is left, so a late callback can
never touch a later window.
"""

import uuid
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Callable

from .capture import CaptureDevice
from .clock import Clock
from .engine_config import WindowConfig
from .event_logger import EventLogger
from .events import WindowTransition


class WindowState(Enum):
    """Pitch window states."""
    IDLE = "idle"
    ARMED = "armed"
    RECORDING = "recording"
    REVIEW = "review"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


TERMINAL_STATES = (WindowState.SUBMITTED, WindowState.EXPIRED)


@dataclass
class PitchWindow:
    """One prompt -> response session."""
    id: str
    user_id: str
    state: WindowState
    armed_at: float  # unix seconds
    deadline_at: float  # armed_at + window_sec
    recording_started_at: Optional[float] = None
    recording_deadline_at: Optional[float] = None  # recording_started_at + recording_sec
    retake_count: int = 0
    is_late: bool = False  # set once, at submission
    artifact_ref: Optional[str] = None
    recording_duration_sec: Optional[float] = None
    caption: Optional[str] = None
    submitted_at: Optional[float] = None
    expired_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def time_remaining(self, now: float) -> float:
        """Seconds left before the window deadline (never negative)."""
        return max(0.0, self.deadline_at - now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PitchWindow':
        """Create from dictionary."""
        values = dict(data)
        values["state"] = WindowState(values["state"])
        return cls(**values)


class SessionStateMachine:
    """
    State machine for one user's pitch windows.

    Transitions:
    - IDLE --notified--> ARMED
    - ARMED --start_recording--> RECORDING
    - RECORDING --stop_recording / recording deadline--> REVIEW
    - REVIEW --retake--> RECORDING (retake_count += 1, deadline unchanged,
      capture waits for start_recording)
    - REVIEW --submit--> SUBMITTED
    - ARMED/RECORDING/REVIEW --window deadline--> EXPIRED

    Events that don't apply to the current state are rejected and return
    None. After a terminal state, reset() returns the machine to IDLE.
    """

    def __init__(
        self,
        clock: Clock,
        config: Optional[WindowConfig] = None,
        capture_device: Optional[CaptureDevice] = None,
        transition_callback: Optional[Callable[[WindowTransition], None]] = None,
        terminal_callback: Optional[Callable[[PitchWindow], None]] = None,
        event_logger: Optional[EventLogger] = None,
        verbose: bool = False
    ):
        """
        Initialize state machine.

        Args:
            clock: Clock used for timestamps and deadline timers
            config: Window timing (uses defaults if None)
            capture_device: Audio capture device (optional, no audio if None)
            transition_callback: Called with every WindowTransition
            terminal_callback: Called once with the window on SUBMITTED/EXPIRED
            event_logger: Logger for clock skew recoveries
            verbose: Print transitions
        """
        self.clock = clock
        self.config = config or WindowConfig()
        self.capture_device = capture_device
        self.transition_callback = transition_callback
        self.terminal_callback = terminal_callback
        self.event_logger = event_logger
        self.verbose = verbose

        # Current window
        self.window: Optional[PitchWindow] = None
        self.state_entered_at = clock.now()

        # Deadline timers (cancel tokens)
        self._window_timer: Optional[int] = None
        self._recording_timer: Optional[int] = None
        self._recording_seq = 0

        # Active capture
        self._capture_handle: Optional[str] = None

        # Event history
        self.transition_events: List[WindowTransition] = []

    @property
    def state(self) -> WindowState:
        """Current state (IDLE when no window is held)."""
        return self.window.state if self.window else WindowState.IDLE

    @property
    def awaiting_take(self) -> bool:
        """True after a retake, until start_recording() begins the new take."""
        window = self.window
        return (window is not None and window.state == WindowState.RECORDING
                and window.recording_started_at is None)

    def _now(self, now: Optional[float]) -> float:
        return self.clock.now() if now is None else now

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def notified(self, user_id: str, now: Optional[float] = None) -> Optional[WindowTransition]:
        """
        Open a new window (IDLE -> ARMED).

        Returns:
            Transition event, or None if a window is already held
        """
        if self.window is not None:
            self._log(f"notified rejected: window {self.window.id} is {self.state.value}")
            return None

        now = self._now(now)
        window = PitchWindow(
            id=uuid.uuid4().hex,
            user_id=user_id,
            state=WindowState.IDLE,
            armed_at=now,
            deadline_at=now + self.config.window_sec
        )
        self.window = window
        self.state_entered_at = now

        event = self._transition_to(WindowState.ARMED, "Notified", now)
        self._window_timer = self.clock.schedule_at(
            window.deadline_at,
            lambda window_id=window.id: self._on_window_deadline(window_id)
        )
        return event

    def start_recording(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        """
        Start a recording (ARMED -> RECORDING), or the take of a pending retake.

        No-op while a take is already being captured.

        Raises:
            CaptureUnavailableError: device busy/denied; state unchanged
        """
        now = self._now(now)
        self.check_deadlines(now)

        if self.state == WindowState.ARMED:
            reason = "Recording started"
        elif self.awaiting_take:
            reason = f"Retake #{self.window.retake_count} recording started"
        else:
            return None

        handle = self.capture_device.start_capture() if self.capture_device else None
        return self._begin_recording(now, handle, reason)

    def stop_recording(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        """Stop the recording and keep the artifact (RECORDING -> REVIEW)."""
        now = self._now(now)
        self.check_deadlines(now)

        if self.state != WindowState.RECORDING or self.awaiting_take:
            return None

        self.clock.cancel(self._recording_timer)
        self._recording_timer = None
        return self._finish_recording(now, "Recording stopped")

    def retake(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        """
        Discard the current take (REVIEW -> RECORDING).

        The new take starts on the next start_recording(), and its 60s cap
        runs from there. The window deadline is not extended.
        """
        now = self._now(now)
        self.check_deadlines(now)

        if self.state != WindowState.REVIEW:
            return None

        window = self.window
        window.retake_count += 1
        window.recording_started_at = None
        window.recording_deadline_at = None
        window.artifact_ref = None
        window.recording_duration_sec = None
        return self._transition_to(WindowState.RECORDING, f"Retake #{window.retake_count}", now)

    def submit(self, now: Optional[float] = None, caption: Optional[str] = None) -> Optional[WindowTransition]:
        """
        Submit the reviewed take (REVIEW -> SUBMITTED).

        is_late is decided here, from the authoritative deadline.
        """
        now = self._now(now)
        self.check_deadlines(now)

        if self.state != WindowState.REVIEW:
            return None

        window = self.window
        self.clock.cancel(self._window_timer)
        self._window_timer = None

        window.is_late = (window.deadline_at - now) < self.config.late_threshold_sec
        window.submitted_at = now
        window.caption = caption

        remaining = window.deadline_at - now
        event = self._transition_to(
            WindowState.SUBMITTED,
            f"Submitted with {remaining:.0f}s left{' (late)' if window.is_late else ''}",
            now
        )
        self._finish()
        return event

    def check_deadlines(self, now: Optional[float] = None) -> bool:
        """
        Reconcile wall time against the stored deadlines.

        Used on resume and before every user event: a deadline that already
        passed is evaluated now instead of waiting for its timer. The window
        deadline takes precedence over the recording deadline.

        Returns:
            True if a deadline was applied
        """
        now = self._now(now)
        window = self.window
        if window is None or window.is_terminal:
            return False

        if now >= window.deadline_at:
            self._log_skew("window", window.deadline_at, now)
            self._expire("Window deadline passed (reconciled)")
            return True

        if (window.state == WindowState.RECORDING
                and window.recording_deadline_at is not None
                and now >= window.recording_deadline_at):
            self._log_skew("recording", window.recording_deadline_at, now)
            self.clock.cancel(self._recording_timer)
            self._recording_timer = None
            self._finish_recording(window.recording_deadline_at, "Recording cap reached (reconciled)")
            return True

        return False

    def reset(self) -> bool:
        """
        Return to IDLE after a terminal state has been observed.

        Returns:
            True if the machine is IDLE afterwards
        """
        if self.window is None:
            return True
        if not self.window.is_terminal:
            return False

        self.window = None
        self.state_entered_at = self.clock.now()
        return True

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    def _on_window_deadline(self, window_id: str):
        """Window deadline timer fired."""
        window = self.window
        if window is None or window.id != window_id or window.is_terminal:
            return  # stale

        self._window_timer = None
        self._expire("Window deadline passed")

    def _on_recording_deadline(self, window_id: str, recording_seq: int):
        """Recording cap timer fired."""
        window = self.window
        if (window is None or window.id != window_id
                or recording_seq != self._recording_seq
                or window.state != WindowState.RECORDING):
            return  # stale

        self._recording_timer = None
        self._finish_recording(window.recording_deadline_at, "Recording cap reached")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin_recording(self, now: float, handle: Optional[str], reason: str) -> Optional[WindowTransition]:
        window = self.window
        window.recording_started_at = now
        window.recording_deadline_at = now + self.config.recording_sec
        window.artifact_ref = None
        window.recording_duration_sec = None
        self._capture_handle = handle

        self._recording_seq += 1
        self._recording_timer = self.clock.schedule_at(
            window.recording_deadline_at,
            lambda window_id=window.id, seq=self._recording_seq: self._on_recording_deadline(window_id, seq)
        )
        return self._transition_to(WindowState.RECORDING, reason, now)

    def _finish_recording(self, at: float, reason: str) -> Optional[WindowTransition]:
        window = self.window
        if self.capture_device and self._capture_handle:
            window.artifact_ref = self.capture_device.stop_capture(self._capture_handle)
        self._capture_handle = None
        window.recording_duration_sec = at - window.recording_started_at
        return self._transition_to(WindowState.REVIEW, reason, at)

    def _expire(self, reason: str) -> Optional[WindowTransition]:
        window = self.window
        at = window.deadline_at

        # Discard any in-progress take
        self.clock.cancel(self._recording_timer)
        self._recording_timer = None
        self.clock.cancel(self._window_timer)
        self._window_timer = None
        if self.capture_device and self._capture_handle:
            self.capture_device.discard(self._capture_handle)
        self._capture_handle = None

        window.artifact_ref = None
        window.expired_at = at

        event = self._transition_to(WindowState.EXPIRED, reason, at)
        self._finish()
        return event

    def _finish(self):
        """Hand the terminal window to the listener."""
        self.clock.cancel(self._window_timer)
        self._window_timer = None
        self.clock.cancel(self._recording_timer)
        self._recording_timer = None

        if self.terminal_callback:
            self.terminal_callback(self.window)

    def _transition_to(self, new_state: WindowState, reason: str, at: float) -> WindowTransition:
        """Transition to a new state and emit event."""
        window = self.window
        from_state = window.state

        event = WindowTransition(
            timestamp=datetime.fromtimestamp(at).isoformat(),
            window_id=window.id,
            user_id=window.user_id,
            from_state=from_state.value,
            to_state=new_state.value,
            reason=reason,
            time_in_previous_state=max(0.0, at - self.state_entered_at)
        )

        window.state = new_state
        self.state_entered_at = at
        self.transition_events.append(event)

        self._log(f"{from_state.value.upper()} -> {new_state.value.upper()}: {reason}")

        if self.transition_callback:
            self.transition_callback(event)

        return event

    def _log_skew(self, deadline: str, deadline_at: float, now: float):
        overdue = now - deadline_at
        if overdue <= 0:
            return
        self._log(f"{deadline} deadline passed {overdue:.1f}s ago, applying it now")
        if self.event_logger:
            self.event_logger.log_clock_skew(self.window.user_id, self.window.id, deadline, overdue)

    def _log(self, message: str):
        if self.verbose:
            print(f"  [WINDOW] {message}")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_state_summary(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Get summary of current state.

        Returns:
            Dictionary with state info
        """
        now = self._now(now)
        window = self.window

        summary = {
            "state": self.state.value,
            "time_in_state": max(0.0, now - self.state_entered_at),
            "window_id": window.id if window else None,
            "time_remaining_sec": window.time_remaining(now) if window else None,
            "recording_remaining_sec": None,
            "retake_count": window.retake_count if window else 0,
            "awaiting_take": self.awaiting_take,
            "transition_count": len(self.transition_events)
        }

        if window and window.state == WindowState.RECORDING and window.recording_deadline_at:
            summary["recording_remaining_sec"] = max(0.0, window.recording_deadline_at - now)

        return summary
