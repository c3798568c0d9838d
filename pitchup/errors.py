"""
Error kinds and exceptions for the pitch window engine.

Most failures are recovered locally (channel fallthrough, deadline
reconciliation) and only recorded as an ErrorKind. Exceptions are raised
only where the caller has to act, e.g. asking for microphone permission.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure categories recorded by the engine."""
    PERMISSION_DENIED = "permission_denied"  # push permission not granted
    TRANSPORT_FAILURE = "transport_failure"  # channel send failed
    CAPTURE_UNAVAILABLE = "capture_unavailable"  # device busy/denied
    CLOCK_SKEW = "clock_skew"  # deadline already past on resume
    DUPLICATE_FIRING = "duplicate_firing"  # dropped by DedupGuard


class PitchUpError(Exception):
    """Base exception carrying an ErrorKind."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or kind.value)


class CaptureUnavailableError(PitchUpError):
    """Raised when the capture device cannot start recording."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorKind.CAPTURE_UNAVAILABLE, message)


class TransportError(PitchUpError):
    """Raised by transports that prefer exceptions over return codes."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorKind.TRANSPORT_FAILURE, message)


class ConfigError(ValueError):
    """Invalid engine configuration."""
