"""
De-duplication guard: at most one live pitch window per user.

Several sources can try to open a window for the same user: the foreground
scheduler timer, the periodic overdue check after a resume, a manual
trigger. Every one of them goes through try_admit(), which is the single
check that serializes them.
"""

import threading
import time
from typing import Dict, List, Optional


class DedupGuard:
    """
    Process-wide in-flight markers keyed by user id.

    Thread-safe: concurrent try_admit() calls for one user never both win.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Dict[str, float] = {}  # user_id -> admitted_at
        self.rejected_count = 0

    def try_admit(self, user_id: str) -> bool:
        """
        Claim the user's single window slot.

        Returns:
            True if admitted (marker recorded), False if a window is in flight
        """
        with self._lock:
            if user_id in self._in_flight:
                self.rejected_count += 1
                return False
            self._in_flight[user_id] = time.time()
            return True

    def release(self, user_id: str) -> bool:
        """
        Clear the marker once the window is terminal (or delivery failed).

        Returns:
            True if a marker was held
        """
        with self._lock:
            return self._in_flight.pop(user_id, None) is not None

    def is_active(self, user_id: str) -> bool:
        """Check if the user has a window in flight."""
        with self._lock:
            return user_id in self._in_flight

    def admitted_at(self, user_id: str) -> Optional[float]:
        """When the current marker was recorded, None if not active."""
        with self._lock:
            return self._in_flight.get(user_id)

    def active_users(self) -> List[str]:
        """Users with a window in flight."""
        with self._lock:
            return sorted(self._in_flight)

    def reset(self):
        """Drop all markers."""
        with self._lock:
            self._in_flight.clear()
            self.rejected_count = 0


# Global instance
_dedup_guard = None
_dedup_guard_lock = threading.Lock()


def get_dedup_guard() -> DedupGuard:
    """Get the process-wide DedupGuard instance."""
    global _dedup_guard
    with _dedup_guard_lock:
        if _dedup_guard is None:
            _dedup_guard = DedupGuard()
        return _dedup_guard
