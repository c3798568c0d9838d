"""
Pitch Up Engine
Random audio pitch prompts with bounded recording windows.
"""

from .errors import ErrorKind, PitchUpError, CaptureUnavailableError, TransportError, ConfigError
from .engine_config import (
    ActiveHoursConfig,
    SchedulerConfig,
    WindowConfig,
    DeliveryConfig,
    EngineConfig
)
from .config_manager import ConfigManager, get_storage_root
from .clock import Clock, ManualClock, ThreadedClock
from .randomness import RandomSource, NumpyRandomSource
from .active_hours import ActiveHoursPolicy
from .events import (
    EventBus,
    PromptFired,
    DeliveryCompleted,
    WindowArmed,
    WindowTransition,
    WindowClosed
)
from .event_logger import EventLogger
from .capture import CaptureDevice, SimulatedCaptureDevice
from .session import SessionStateMachine, PitchWindow, WindowState
from .dedup import DedupGuard, get_dedup_guard
from .storage import Store, InMemoryStore, SQLiteStore, PromptSchedule, UserNotificationPreference
from .scheduler import Scheduler
from .permissions import PushPermission, PermissionProbe, StaticPermissionProbe, TerminalNotifierProbe
from .delivery import Channel, NotificationPayload, NotificationAttempt, Transport, DeliveryRouter
from .transports import TerminalNotifierTransport, ResendEmailTransport, InAppBannerTransport
from .engine import PitchEngine
from .status_bus import StatusBus, EngineStatusSnapshot, create_snapshot_from_engine, read_status
from .control import ControlChannel, apply_command

__all__ = [
    "ErrorKind",
    "PitchUpError",
    "CaptureUnavailableError",
    "TransportError",
    "ConfigError",
    "ActiveHoursConfig",
    "SchedulerConfig",
    "WindowConfig",
    "DeliveryConfig",
    "EngineConfig",
    "ConfigManager",
    "get_storage_root",
    "Clock",
    "ManualClock",
    "ThreadedClock",
    "RandomSource",
    "NumpyRandomSource",
    "ActiveHoursPolicy",
    "EventBus",
    "PromptFired",
    "DeliveryCompleted",
    "WindowArmed",
    "WindowTransition",
    "WindowClosed",
    "EventLogger",
    "CaptureDevice",
    "SimulatedCaptureDevice",
    "SessionStateMachine",
    "PitchWindow",
    "WindowState",
    "DedupGuard",
    "get_dedup_guard",
    "Store",
    "InMemoryStore",
    "SQLiteStore",
    "PromptSchedule",
    "UserNotificationPreference",
    "Scheduler",
    "PushPermission",
    "PermissionProbe",
    "StaticPermissionProbe",
    "TerminalNotifierProbe",
    "Channel",
    "NotificationPayload",
    "NotificationAttempt",
    "Transport",
    "DeliveryRouter",
    "TerminalNotifierTransport",
    "ResendEmailTransport",
    "InAppBannerTransport",
    "PitchEngine",
    "StatusBus",
    "EngineStatusSnapshot",
    "create_snapshot_from_engine",
    "read_status",
    "ControlChannel",
    "apply_command"
]
