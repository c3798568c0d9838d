"""
Push permission probes.

The router never inspects the host platform itself; it asks a probe.
"""

from enum import Enum

from .platform import has_terminal_notifier


class PushPermission(Enum):
    """Push notification permission state."""
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class PermissionProbe:
    """Permission probe interface."""

    def push_capable(self) -> bool:
        """Whether the platform can show native push notifications at all."""
        raise NotImplementedError

    def push_permission(self) -> PushPermission:
        raise NotImplementedError

    def request_push_permission(self) -> bool:
        """
        Ask the user for push permission.

        Returns:
            True if granted
        """
        raise NotImplementedError


class StaticPermissionProbe(PermissionProbe):
    """
    Probe with fixed answers (tests, headless hosts).

    request_push_permission() resolves an UNDETERMINED permission to
    grant_on_request.
    """

    def __init__(
        self,
        capable: bool = True,
        permission: PushPermission = PushPermission.GRANTED,
        grant_on_request: bool = True
    ):
        self.capable = capable
        self.permission = permission
        self.grant_on_request = grant_on_request
        self.request_count = 0

    def push_capable(self) -> bool:
        return self.capable

    def push_permission(self) -> PushPermission:
        return self.permission

    def request_push_permission(self) -> bool:
        self.request_count += 1
        if self.permission == PushPermission.UNDETERMINED:
            self.permission = PushPermission.GRANTED if self.grant_on_request else PushPermission.DENIED
        return self.permission == PushPermission.GRANTED


class TerminalNotifierProbe(PermissionProbe):
    """
    macOS probe for terminal-notifier delivery.

    terminal-notifier has no permission API; notification permission is
    managed in System Settings, so an installed notifier counts as granted.
    """

    def push_capable(self) -> bool:
        return has_terminal_notifier()

    def push_permission(self) -> PushPermission:
        return PushPermission.GRANTED if has_terminal_notifier() else PushPermission.DENIED

    def request_push_permission(self) -> bool:
        return has_terminal_notifier()
