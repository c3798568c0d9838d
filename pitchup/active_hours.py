"""
Active hours policy: when a prompt may fire.

Pure functions of (instant, random source). Outside the active window the
next eligible instant is the next start hour plus a random jitter, so users
sharing a timezone don't all get prompted at exactly 08:00.
"""

from datetime import datetime, time as dtime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from .engine_config import ActiveHoursConfig
from .randomness import RandomSource, NumpyRandomSource


class ActiveHoursPolicy:
    """
    Eligibility of instants against the daily [start_hour, end_hour) window.
    """

    def __init__(
        self,
        config: Optional[ActiveHoursConfig] = None,
        random_source: Optional[RandomSource] = None
    ):
        """
        Initialize policy.

        Args:
            config: Active hours configuration (default [8, 22) host local time)
            random_source: Source for the morning jitter
        """
        self.config = config or ActiveHoursConfig()
        self.random_source = random_source or NumpyRandomSource()
        self.tz: Optional[tzinfo] = ZoneInfo(self.config.timezone) if self.config.timezone else None

    @property
    def start_hour(self) -> int:
        return self.config.start_hour

    @property
    def end_hour(self) -> int:
        return self.config.end_hour

    def _local(self, instant: float) -> datetime:
        return datetime.fromtimestamp(instant, tz=self.tz)

    def is_eligible(self, instant: float) -> bool:
        """Check if instant falls inside the active window (local time)."""
        hour = self._local(instant).hour
        return self.config.start_hour <= hour < self.config.end_hour

    def next_eligible(self, instant: float) -> float:
        """
        Get the first eligible instant at or after instant.

        Returns instant itself if eligible, otherwise the next start hour
        (same day if before it, next day if after end_hour) plus jitter.
        """
        if self.is_eligible(instant):
            return instant

        local = self._local(instant)
        day = local.date()
        if local.hour >= self.config.end_hour:
            day = day + timedelta(days=1)

        next_start = datetime.combine(day, dtime(hour=self.config.start_hour), tzinfo=self.tz)

        # Jitter must not push the prompt past end_hour
        window_sec = (self.config.end_hour - self.config.start_hour) * 3600.0
        jitter_cap = max(0.0, min(self.config.jitter_max_sec, window_sec - 1.0))
        jitter = self.random_source.uniform(0.0, jitter_cap) if jitter_cap > 0 else 0.0

        return max(instant, next_start.timestamp() + jitter)

    def describe(self) -> str:
        """Human-readable window, e.g. '08:00-22:00 local'."""
        zone = self.config.timezone or "local"
        return f"{self.config.start_hour:02d}:00-{self.config.end_hour:02d}:00 {zone}"
