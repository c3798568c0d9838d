"""
Prompt scheduler: picks the next random prompt instant and owns its timer.

Exactly one outstanding timer per scheduler. Every arm() cancels the
previous timer and bumps a generation counter, so a callback that was
already queued when it got cancelled is recognised as stale and dropped.
"""

from typing import Optional, Callable

from .active_hours import ActiveHoursPolicy
from .clock import Clock
from .engine_config import SchedulerConfig
from .event_logger import EventLogger
from .events import EventBus, PromptFired
from .randomness import RandomSource, NumpyRandomSource
from .storage import Store, PromptSchedule


class Scheduler:
    """
    Random prompt scheduler for one user.

    Fires once at next_fire_at, publishes PromptFired, then re-arms from
    the firing time (not the target time) so lateness never accumulates.
    """

    def __init__(
        self,
        user_id: str,
        clock: Clock,
        policy: Optional[ActiveHoursPolicy] = None,
        config: Optional[SchedulerConfig] = None,
        random_source: Optional[RandomSource] = None,
        store: Optional[Store] = None,
        event_bus: Optional[EventBus] = None,
        on_fire: Optional[Callable[[PromptFired], None]] = None,
        event_logger: Optional[EventLogger] = None,
        verbose: bool = False
    ):
        """
        Initialize scheduler.

        Args:
            user_id: User this scheduler prompts
            clock: Clock for now() and the timer
            policy: Active hours policy (default [8, 22))
            config: Delay bounds (default 30 min - 3 h)
            random_source: Source for the delay draw
            store: Persists each new PromptSchedule
            event_bus: Receives PromptFired events
            on_fire: Direct callback, called after the bus publish
            event_logger: Logger for schedule/fire events
            verbose: Print scheduling decisions
        """
        self.user_id = user_id
        self.clock = clock
        self.random_source = random_source or NumpyRandomSource()
        self.policy = policy or ActiveHoursPolicy(random_source=self.random_source)
        self.config = config or SchedulerConfig()
        self.store = store
        self.event_bus = event_bus
        self.on_fire = on_fire
        self.event_logger = event_logger
        self.verbose = verbose

        # Pending schedule and its timer
        self.schedule: Optional[PromptSchedule] = None
        self._token: Optional[int] = None
        self._generation = 0

        # Stats
        self.fire_count = 0
        self.last_fired_at: Optional[float] = None

    @property
    def next_fire_at(self) -> Optional[float]:
        return self.schedule.next_fire_at if self.schedule else None

    def arm(self, now: Optional[float] = None) -> float:
        """
        Pick and schedule the next prompt.

        Cancels any outstanding timer first.

        Args:
            now: Reference instant (default clock.now())

        Returns:
            next_fire_at
        """
        now = self.clock.now() if now is None else now
        self._invalidate_timer()

        delay = self.random_source.uniform(self.config.min_delay_sec, self.config.max_delay_sec)
        next_fire_at = self.policy.next_eligible(now + delay)

        self._install(PromptSchedule(
            user_id=self.user_id,
            next_fire_at=next_fire_at,
            min_interval_sec=self.config.min_delay_sec,
            active_hours=(self.policy.start_hour, self.policy.end_hour),
            armed_at=now
        ))

        if self.store:
            self.store.upsert_schedule(self.schedule)
        if self.event_logger:
            self.event_logger.log_schedule(self.user_id, next_fire_at, now)

        self._log(f"Next prompt in {(next_fire_at - now)/60:.1f}m")
        return next_fire_at

    def resume(self, now: Optional[float] = None) -> float:
        """
        Restore the persisted schedule, or arm a new one.

        A restored schedule that is already due fires at once. One armed
        under different active hours, or whose instant the current policy
        no longer allows, is replaced by a fresh arm().

        Returns:
            next_fire_at
        """
        now = self.clock.now() if now is None else now
        stored = self.store.load_schedule(self.user_id) if self.store else None

        if stored is None:
            return self.arm(now)

        hours = (self.policy.start_hour, self.policy.end_hour)
        if tuple(stored.active_hours) != hours or not self.policy.is_eligible(stored.next_fire_at):
            self._log(f"Stored prompt was armed for {stored.active_hours}, re-arming for {hours}")
            return self.arm(now)

        self._invalidate_timer()
        self._install(stored)
        self._log(f"Restored prompt due in {(stored.next_fire_at - now)/60:.1f}m")
        self.check_overdue(now)
        return self.schedule.next_fire_at

    def check_overdue(self, now: Optional[float] = None) -> bool:
        """
        Fire now if the pending prompt is overdue.

        Recovery entry point for hosts that can't run timers while
        suspended. Idempotent: after firing the schedule is re-armed into
        the future, so repeated calls return False.

        Returns:
            True if the overdue prompt was fired
        """
        now = self.clock.now() if now is None else now
        if self.schedule is None or now < self.schedule.next_fire_at:
            return False

        self._log(f"Prompt overdue by {now - self.schedule.next_fire_at:.0f}s, firing now")
        self._fire(now, "overdue")
        return True

    def fire_now(self) -> float:
        """
        Fire immediately (manual trigger) and re-arm.

        Returns:
            next_fire_at after re-arming
        """
        self._fire(self.clock.now(), "manual")
        return self.schedule.next_fire_at

    def cancel(self):
        """Drop the pending prompt and its timer."""
        self._invalidate_timer()
        self.schedule = None

    def _install(self, schedule: PromptSchedule):
        self.schedule = schedule
        generation = self._generation
        self._token = self.clock.schedule_at(
            schedule.next_fire_at,
            lambda generation=generation: self._on_timer(generation)
        )

    def _invalidate_timer(self):
        self.clock.cancel(self._token)
        self._token = None
        self._generation += 1

    def _on_timer(self, generation: int):
        """Timer callback."""
        if generation != self._generation:
            return  # stale
        self._token = None
        self._fire(self.clock.now(), "timer")

    def _fire(self, fired_at: float, source: str):
        scheduled_for = self.schedule.next_fire_at if self.schedule else None
        self._invalidate_timer()
        self.schedule = None

        self.fire_count += 1
        self.last_fired_at = fired_at

        if self.event_logger:
            self.event_logger.log_fired(self.user_id, fired_at, scheduled_for, source)
        self._log(f"Prompt fired ({source})")

        event = PromptFired(
            user_id=self.user_id,
            fired_at=fired_at,
            scheduled_for=scheduled_for,
            source=source
        )
        try:
            if self.event_bus:
                self.event_bus.publish(event)
            if self.on_fire:
                self.on_fire(event)
        finally:
            # Re-arm from the firing time even if a consumer failed
            self.arm(fired_at)

    def _log(self, message: str):
        if self.verbose:
            print(f"  [SCHEDULER] {self.user_id}: {message}")
