"""
Delivery router: reach the user through push, email, then in-app.

Channel priority:
1. Native push, if enabled, platform-capable and permission granted
2. Email, if opted in and push did not get through
3. In-app banner, always attempted (needs the app open, no OS permission)

Each attempt is independent: a failing channel never blocks the next one.
Every attempt is recorded and logged.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, List, Any

from .engine_config import DeliveryConfig
from .errors import ErrorKind, PitchUpError
from .event_logger import EventLogger
from .permissions import PermissionProbe, PushPermission, StaticPermissionProbe
from .storage import Store, UserNotificationPreference


class Channel(Enum):
    """Delivery channels, in priority order."""
    PUSH = "push"
    EMAIL = "email"
    IN_APP = "in_app"


@dataclass
class NotificationPayload:
    """What a transport sends: a display string and a deep link."""
    title: str
    body: str
    url: str
    tag: str
    fired_at: float
    recipient: Optional[str] = None  # email address for the email channel

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass(frozen=True)
class NotificationAttempt:
    """Outcome of one channel attempt for one firing."""
    channel: Channel
    fired_at: float
    delivered: bool
    error: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "channel": self.channel.value,
            "fired_at": self.fired_at,
            "delivered": self.delivered,
            "error": self.error.value if self.error else None
        }


class Transport:
    """Transport interface, one per channel."""

    def send(self, channel: Channel, user_id: str, payload: NotificationPayload) -> Optional[ErrorKind]:
        """
        Send payload.

        Returns:
            None on success, otherwise the ErrorKind
        """
        raise NotImplementedError


class DeliveryRouter:
    """
    Routes one firing across channels with fallback.
    """

    def __init__(
        self,
        transports: Dict[Channel, Transport],
        store: Store,
        probe: Optional[PermissionProbe] = None,
        config: Optional[DeliveryConfig] = None,
        event_logger: Optional[EventLogger] = None,
        verbose: bool = False
    ):
        """
        Initialize delivery router.

        Args:
            transports: Transport per channel (missing channel = unavailable)
            store: Source of user notification preferences
            probe: Push capability/permission probe
            config: Payload text, deep link, permission request policy
            event_logger: Logger for attempts
            verbose: Print attempts
        """
        self.transports = transports
        self.store = store
        self.probe = probe or StaticPermissionProbe(capable=False, permission=PushPermission.DENIED)
        self.config = config or DeliveryConfig()
        self.event_logger = event_logger
        self.verbose = verbose

        self.last_attempts: List[NotificationAttempt] = []

    def build_payload(self, fired_at: float) -> NotificationPayload:
        """Build the prompt payload for a firing."""
        return NotificationPayload(
            title=self.config.title,
            body=self.config.body,
            url=self.config.record_url,
            tag=self.config.tag,
            fired_at=fired_at
        )

    def notify(
        self,
        user_id: str,
        fired_at: float,
        payload: Optional[NotificationPayload] = None
    ) -> List[NotificationAttempt]:
        """
        Try to reach the user for one firing.

        Args:
            user_id: User to notify
            fired_at: Firing instant
            payload: Payload override (default build_payload(fired_at))

        Returns:
            Attempts in channel priority order
        """
        payload = payload or self.build_payload(fired_at)
        preference = self.store.load_user_preference(user_id)
        attempts: List[NotificationAttempt] = []

        # 1. Native push
        push_attempt = self._try_push(user_id, preference, payload)
        if push_attempt:
            attempts.append(push_attempt)
        push_delivered = bool(push_attempt and push_attempt.delivered)

        # 2. Email, only if push did not get through
        if not push_delivered and preference.email_enabled and preference.email_address:
            email_payload = NotificationPayload(**{**payload.to_dict(), "recipient": preference.email_address})
            attempts.append(self._send(Channel.EMAIL, user_id, email_payload))

        # 3. In-app banner, always
        attempts.append(self._send(Channel.IN_APP, user_id, payload))

        self.last_attempts = attempts
        return attempts

    @staticmethod
    def delivered_any(attempts: List[NotificationAttempt]) -> bool:
        return any(attempt.delivered for attempt in attempts)

    def _try_push(
        self,
        user_id: str,
        preference: UserNotificationPreference,
        payload: NotificationPayload
    ) -> Optional[NotificationAttempt]:
        """Push attempt, or None when push doesn't apply (disabled/incapable)."""
        if not preference.push_enabled or not self.probe.push_capable():
            return None

        permission = self.probe.push_permission()
        if permission == PushPermission.UNDETERMINED and self.config.request_permission_on_fire:
            granted = self.probe.request_push_permission()
            permission = PushPermission.GRANTED if granted else PushPermission.DENIED

        if permission != PushPermission.GRANTED:
            return self._record(NotificationAttempt(
                channel=Channel.PUSH,
                fired_at=payload.fired_at,
                delivered=False,
                error=ErrorKind.PERMISSION_DENIED
            ), user_id)

        return self._send(Channel.PUSH, user_id, payload)

    def _send(self, channel: Channel, user_id: str, payload: NotificationPayload) -> NotificationAttempt:
        transport = self.transports.get(channel)
        error: Optional[ErrorKind]

        if transport is None:
            error = ErrorKind.TRANSPORT_FAILURE
        else:
            try:
                error = transport.send(channel, user_id, payload)
            except PitchUpError as e:
                error = e.kind
            except Exception as e:
                # One broken channel must not block the others
                print(f"  [DELIVERY] Error: {channel.value} transport raised {e!r}")
                error = ErrorKind.TRANSPORT_FAILURE

        return self._record(NotificationAttempt(
            channel=channel,
            fired_at=payload.fired_at,
            delivered=error is None,
            error=error
        ), user_id)

    def _record(self, attempt: NotificationAttempt, user_id: str) -> NotificationAttempt:
        if self.event_logger:
            self.event_logger.log_delivery_attempt(
                user_id=user_id,
                channel=attempt.channel.value,
                delivered=attempt.delivered,
                error=attempt.error.value if attempt.error else None
            )
        if self.verbose:
            status = "✅ delivered" if attempt.delivered else f"❌ {attempt.error.value}"
            print(f"  [DELIVERY] {attempt.channel.value}: {status}")
        return attempt
