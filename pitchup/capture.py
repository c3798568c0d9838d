"""
Audio capture device boundary.

The engine only starts and stops captures; the device owns the audio.
"""

import itertools
import uuid
from typing import Dict, Optional

from .errors import CaptureUnavailableError


class CaptureDevice:
    """Capture device interface."""

    def start_capture(self) -> str:
        """
        Start recording.

        Returns:
            Capture handle

        Raises:
            CaptureUnavailableError: device busy or permission denied
        """
        raise NotImplementedError

    def stop_capture(self, handle: str) -> Optional[str]:
        """
        Stop recording.

        Returns:
            Opaque artifact reference for the stored recording
        """
        raise NotImplementedError

    def discard(self, handle: str):
        """Stop recording and drop the result."""
        self.stop_capture(handle)


class SimulatedCaptureDevice(CaptureDevice):
    """
    In-memory capture device for the runner and tests.

    Produces artifact refs like '<user_id>/<uuid>.webm' without touching
    any audio hardware.
    """

    def __init__(self, user_id: str = "local", available: bool = True):
        self.user_id = user_id
        self.available = available
        self.active: Dict[str, str] = {}  # handle -> artifact ref
        self.discarded: Dict[str, str] = {}
        self._counter = itertools.count(1)

    def start_capture(self) -> str:
        if not self.available:
            raise CaptureUnavailableError("Microphone unavailable, allow microphone access to record your pitch")
        if self.active:
            raise CaptureUnavailableError("Capture already in progress")

        handle = f"capture-{next(self._counter)}"
        self.active[handle] = f"{self.user_id}/{uuid.uuid4().hex}.webm"
        return handle

    def stop_capture(self, handle: str) -> Optional[str]:
        return self.active.pop(handle, None)

    def discard(self, handle: str):
        """Drop an in-progress capture without keeping its artifact."""
        artifact_ref = self.active.pop(handle, None)
        if artifact_ref:
            self.discarded[handle] = artifact_ref
