"""
Engine configuration: active hours, scheduling delays, window timing, delivery.

All durations in seconds. Persisted by ConfigManager.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any

from .errors import ConfigError


@dataclass
class ActiveHoursConfig:
    """
    Daily local-time interval [start_hour, end_hour) in which prompts may fire.
    """
    start_hour: int = 8
    end_hour: int = 22
    jitter_max_sec: float = 7200.0  # 0-2h spread after the morning start
    timezone: Optional[str] = None  # IANA name, None = host local time

    def __post_init__(self):
        """Validate hours."""
        if not (0 <= self.start_hour < self.end_hour <= 24):
            raise ConfigError(
                f"active hours must satisfy 0 <= start < end <= 24, got [{self.start_hour}, {self.end_hour})"
            )
        if self.jitter_max_sec < 0:
            raise ConfigError("jitter_max_sec must be >= 0")


@dataclass
class SchedulerConfig:
    """Random delay between prompts."""
    min_delay_sec: float = 1800.0  # 30 min
    max_delay_sec: float = 10800.0  # 3 h

    def __post_init__(self):
        if self.min_delay_sec < 0:
            raise ConfigError("min_delay_sec must be >= 0")
        if self.min_delay_sec > self.max_delay_sec:
            raise ConfigError("min_delay_sec must be <= max_delay_sec")


@dataclass
class WindowConfig:
    """
    Timing of one pitch window.

    window_sec: notification to mandatory submission/expiry
    recording_sec: cap on a single recording
    late_threshold_sec: submission with less than this remaining is late
    """
    window_sec: float = 120.0
    recording_sec: float = 60.0
    late_threshold_sec: float = 60.0

    def __post_init__(self):
        if self.window_sec <= 0 or self.recording_sec <= 0:
            raise ConfigError("window_sec and recording_sec must be > 0")
        if not (0 <= self.late_threshold_sec <= self.window_sec):
            raise ConfigError("late_threshold_sec must be within [0, window_sec]")


@dataclass
class DeliveryConfig:
    """Notification channel settings."""
    app_url: str = "https://pitch-up.vercel.app"
    title: str = "Time to Pitch Up!"
    body: str = "2 minutes to record your audio pitch"
    tag: str = "pitch-up-notification"

    # Email (Resend HTTP API)
    email_from: str = "Pitch Up <notifications@pitch-up.com>"
    email_subject: str = "Time to Pitch Up!"
    email_api_url: str = "https://api.resend.com/emails"
    http_timeout_sec: float = 10.0

    # Ask for push permission once when a prompt fires and it is still undetermined
    request_permission_on_fire: bool = True

    @property
    def record_url(self) -> str:
        """Deep link to the recording page."""
        return f"{self.app_url.rstrip('/')}/record"


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    active_hours: ActiveHoursConfig = field(default_factory=ActiveHoursConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    # Runner settings
    check_interval_sec: float = 60.0  # periodic overdue check while in foreground

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """
        Create from dictionary. Unknown keys are ignored, missing keys use defaults.

        Raises:
            ConfigError: if a section holds invalid values
        """
        def section(config_cls, key):
            values = data.get(key) or {}
            known = {k: v for k, v in values.items() if k in config_cls.__dataclass_fields__}
            return config_cls(**known)

        return cls(
            active_hours=section(ActiveHoursConfig, "active_hours"),
            scheduler=section(SchedulerConfig, "scheduler"),
            window=section(WindowConfig, "window"),
            delivery=section(DeliveryConfig, "delivery"),
            check_interval_sec=float(data.get("check_interval_sec", 60.0))
        )
