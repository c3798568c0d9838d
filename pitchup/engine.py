"""
Pitch engine: wires scheduler, dedup guard, delivery router and the
window state machine for one user.

Flow:
    Scheduler fires -> DedupGuard admits -> DeliveryRouter notifies
    -> delivered: window ARMED -> user actions -> SUBMITTED/EXPIRED
    -> window persisted, guard released, machine back to IDLE

Every method is expected to run on the clock's thread (ThreadedClock
dispatcher or the ManualClock caller), which serializes all transitions.
"""

from typing import Optional, Dict, Any, List

from .active_hours import ActiveHoursPolicy
from .capture import CaptureDevice
from .clock import Clock
from .dedup import DedupGuard, get_dedup_guard
from .delivery import Channel, DeliveryRouter, NotificationAttempt, Transport
from .engine_config import EngineConfig
from .errors import ErrorKind
from .event_logger import EventLogger
from .events import (
    EventBus, PromptFired, DeliveryCompleted, WindowArmed, WindowTransition, WindowClosed
)
from .permissions import PermissionProbe
from .randomness import RandomSource, NumpyRandomSource
from .scheduler import Scheduler
from .session import SessionStateMachine, PitchWindow, WindowState
from .storage import Store, InMemoryStore


class PitchEngine:
    """
    Pitch window engine for one user.
    """

    def __init__(
        self,
        user_id: str,
        clock: Clock,
        store: Optional[Store] = None,
        transports: Optional[Dict[Channel, Transport]] = None,
        probe: Optional[PermissionProbe] = None,
        config: Optional[EngineConfig] = None,
        random_source: Optional[RandomSource] = None,
        dedup_guard: Optional[DedupGuard] = None,
        event_bus: Optional[EventBus] = None,
        event_logger: Optional[EventLogger] = None,
        capture_device: Optional[CaptureDevice] = None,
        verbose: bool = False
    ):
        """
        Initialize engine.

        Args:
            user_id: User this engine prompts
            clock: Clock driving every timer
            store: Persistence (default in-memory)
            transports: Transport per delivery channel
            probe: Push permission probe
            config: Engine configuration (default values if None)
            random_source: Source for delays and jitter
            dedup_guard: In-flight guard (default process-wide instance)
            event_bus: Bus for engine events (default private bus)
            event_logger: JSONL logger (optional)
            capture_device: Audio capture device (optional)
            verbose: Print engine decisions
        """
        self.user_id = user_id
        self.clock = clock
        self.config = config or EngineConfig()
        self.store = store or InMemoryStore()
        self.random_source = random_source or NumpyRandomSource()
        self.dedup_guard = dedup_guard or get_dedup_guard()
        self.event_bus = event_bus or EventBus()
        self.event_logger = event_logger
        self.verbose = verbose

        self.policy = ActiveHoursPolicy(self.config.active_hours, self.random_source)
        self.scheduler = Scheduler(
            user_id=user_id,
            clock=clock,
            policy=self.policy,
            config=self.config.scheduler,
            random_source=self.random_source,
            store=self.store,
            event_bus=self.event_bus,
            event_logger=event_logger,
            verbose=verbose
        )
        self.router = DeliveryRouter(
            transports=transports or {},
            store=self.store,
            probe=probe,
            config=self.config.delivery,
            event_logger=event_logger,
            verbose=verbose
        )
        self.machine = SessionStateMachine(
            clock=clock,
            config=self.config.window,
            capture_device=capture_device,
            transition_callback=self._on_transition,
            terminal_callback=self._on_terminal,
            event_logger=event_logger,
            verbose=verbose
        )

        self.event_bus.subscribe(PromptFired, self._on_prompt_fired)

        self.running = False
        self.last_attempts: List[NotificationAttempt] = []
        self.last_window: Optional[PitchWindow] = None

        # Stats
        self.windows_opened = 0
        self.suppressed_count = 0
        self.delivery_failures = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, now: Optional[float] = None) -> float:
        """
        Start prompting: resume the stored schedule or arm a new one.

        Returns:
            next_fire_at
        """
        self.running = True
        next_fire_at = self.scheduler.resume(now)
        self._log(f"Started for {self.user_id}, active hours {self.policy.describe()}")
        return next_fire_at

    def stop(self):
        """Stop prompting. A window in flight keeps its deadline timers."""
        self.scheduler.cancel()
        self.running = False
        self._log("Stopped")

    def shutdown(self):
        """Stop and unhook from the bus."""
        self.stop()
        self.event_bus.unsubscribe(PromptFired, self._on_prompt_fired)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def check_overdue(self, now: Optional[float] = None) -> bool:
        """
        Reconcile after a suspension or on the periodic foreground check.

        Window deadlines are applied first so an expired window releases
        the guard before an overdue prompt tries to open the next one.

        Returns:
            True if anything was applied or fired
        """
        now = self.clock.now() if now is None else now
        applied = self.machine.check_deadlines(now)
        fired = self.scheduler.check_overdue(now)
        return applied or fired

    def trigger_now(self) -> Optional[PitchWindow]:
        """
        Fire a prompt immediately (debug panel).

        Returns:
            The window opened, or None if suppressed or undelivered
        """
        opened = self.windows_opened
        self.scheduler.fire_now()
        return self.machine.window if self.windows_opened > opened else None

    def start_recording(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        """
        Raises:
            CaptureUnavailableError: device busy or denied
        """
        return self.machine.start_recording(now)

    def stop_recording(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        return self.machine.stop_recording(now)

    def retake(self, now: Optional[float] = None) -> Optional[WindowTransition]:
        return self.machine.retake(now)

    def submit(self, now: Optional[float] = None, caption: Optional[str] = None) -> Optional[WindowTransition]:
        return self.machine.submit(now, caption=caption)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_prompt_fired(self, event: PromptFired):
        if event.user_id != self.user_id:
            return

        if not self.dedup_guard.try_admit(self.user_id):
            self.suppressed_count += 1
            self._log("Prompt suppressed, window already in flight")
            if self.event_logger:
                self.event_logger.log_suppressed(
                    self.user_id,
                    f"Window in flight, {event.source} firing dropped",
                    ErrorKind.DUPLICATE_FIRING.value
                )
            return

        opened = False
        try:
            opened = self._deliver_and_open(event)
        finally:
            # The marker only outlives this call when a window holds it
            if not opened:
                self.dedup_guard.release(self.user_id)

        if opened:
            self.event_bus.publish(WindowArmed(user_id=self.user_id, window=self.machine.window))

    def _deliver_and_open(self, event: PromptFired) -> bool:
        """Notify the user and open the window. Returns True if one was opened."""
        attempts = self.router.notify(self.user_id, event.fired_at)
        delivered = DeliveryRouter.delivered_any(attempts)
        self.last_attempts = attempts

        self.event_bus.publish(DeliveryCompleted(
            user_id=self.user_id,
            fired_at=event.fired_at,
            attempts=attempts,
            delivered=delivered
        ))

        if not delivered:
            self.delivery_failures += 1
            self._log("No channel delivered, prompt dropped")
            if self.event_logger:
                self.event_logger.log_delivery_failed(
                    self.user_id, event.fired_at, [a.channel.value for a in attempts]
                )
            return False

        transition = self.machine.notified(self.user_id, self.clock.now())
        if transition is None:
            # Machine still holds a window the guard did not know about
            self.suppressed_count += 1
            return False

        self.windows_opened += 1
        return True

    def _on_transition(self, transition: WindowTransition):
        if self.event_logger:
            self.event_logger.log_transition(transition.to_dict())
        self.event_bus.publish(transition)

    def _on_terminal(self, window: PitchWindow):
        self.store.upsert_window(window)
        if self.event_logger:
            self.event_logger.log_outcome(window.to_dict())

        self.last_window = window
        self.dedup_guard.release(window.user_id)

        if window.state == WindowState.SUBMITTED:
            self._log(f"Window submitted (late={window.is_late}, retakes={window.retake_count})")
        else:
            self._log("Window expired")

        self.event_bus.publish(WindowClosed(user_id=window.user_id, window=window))
        self.machine.reset()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Get engine status for the UI.

        Returns:
            Dictionary with window, schedule and delivery state
        """
        now = self.clock.now() if now is None else now
        next_fire_at = self.scheduler.next_fire_at

        return {
            "user_id": self.user_id,
            "running": self.running,
            "window": self.machine.get_state_summary(now),
            "next_fire_at": next_fire_at,
            "next_fire_in_sec": max(0.0, next_fire_at - now) if next_fire_at else None,
            "active_hours": self.policy.describe(),
            "in_active_hours": self.policy.is_eligible(now),
            "in_flight": self.dedup_guard.is_active(self.user_id),
            "last_attempts": [a.to_dict() for a in self.last_attempts],
            "fire_count": self.scheduler.fire_count,
            "windows_opened": self.windows_opened,
            "suppressed_count": self.suppressed_count,
            "delivery_failures": self.delivery_failures
        }

    def get_history_summary(self, limit: int = 100) -> Dict[str, Any]:
        """
        Summarize recent terminal windows.

        Returns:
            Counts, late rate among submissions and mean retakes
        """
        windows = self.store.list_windows(self.user_id, limit)
        submitted = [w for w in windows if w.state == WindowState.SUBMITTED]
        expired = [w for w in windows if w.state == WindowState.EXPIRED]
        late = [w for w in submitted if w.is_late]

        return {
            "total": len(windows),
            "submitted": len(submitted),
            "expired": len(expired),
            "late": len(late),
            "late_rate": len(late) / len(submitted) if submitted else 0.0,
            "mean_retakes": (
                sum(w.retake_count for w in submitted) / len(submitted) if submitted else 0.0
            )
        }

    def _log(self, message: str):
        if self.verbose:
            print(f"  [ENGINE] {message}")
