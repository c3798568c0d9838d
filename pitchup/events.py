"""
Engine events and the bus that carries them.

Scheduler -> PromptFired -> engine/DeliveryRouter -> DeliveryCompleted,
WindowArmed -> UI. Window state changes are published as WindowTransition
and the final record as WindowClosed.
"""

from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Type


@dataclass
class PromptFired:
    """Scheduler timer (or overdue check / manual trigger) fired."""
    user_id: str
    fired_at: float
    scheduled_for: Optional[float]
    source: str  # "timer", "overdue", "manual"


@dataclass
class DeliveryCompleted:
    """All channel attempts for one firing are done."""
    user_id: str
    fired_at: float
    attempts: List[Any]  # List[NotificationAttempt]
    delivered: bool


@dataclass
class WindowArmed:
    """A pitch window was opened for the user."""
    user_id: str
    window: Any  # PitchWindow


@dataclass
class WindowTransition:
    """
    Event emitted when a window changes state.

    Contains all relevant information about the transition for logging
    and UI purposes.
    """
    timestamp: str  # ISO format
    window_id: str
    user_id: str
    from_state: str
    to_state: str
    reason: str
    time_in_previous_state: float  # seconds

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class WindowClosed:
    """A window reached SUBMITTED or EXPIRED."""
    user_id: str
    window: Any  # PitchWindow


class EventBus:
    """
    Synchronous publish/subscribe by event type.

    Handlers run in subscription order on the publishing thread, which is
    the engine's clock thread.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Callable[[Any], None]]] = {}
        self.published_count = 0

    def subscribe(self, event_type: Type, handler: Callable[[Any], None]):
        """Register handler for events of event_type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type, handler: Callable[[Any], None]):
        """Remove a previously registered handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Any):
        """Deliver event to every handler subscribed to its type."""
        self.published_count += 1
        for handler in list(self._handlers.get(type(event), [])):
            handler(event)
