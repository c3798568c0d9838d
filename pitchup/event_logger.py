"""
Event logger for engine decisions.

Logs firings, delivery attempts, suppressions, window transitions and
outcomes as JSONL (one JSON object per line).
"""

import json
import threading
import time
from pathlib import Path
from typing import Dict, Any, Optional, List
from datetime import datetime

from .config_manager import get_storage_root


class EventLogger:
    """
    Logger for engine events.

    Logs to JSONL format (one JSON object per line).
    Never logs audio, only ids and timings.
    """

    def __init__(self, log_path: Optional[str] = None):
        """
        Initialize event logger.

        Args:
            log_path: Path to log file (default: <storage root>/events.jsonl)
        """
        if log_path is None:
            log_path = str(get_storage_root() / "events.jsonl")

        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(
        self,
        event_type: str,
        user_id: str,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Log an engine event.

        Args:
            event_type: Type of event (prompt_fired, delivery_attempt, etc.)
            user_id: User the event belongs to
            reason: Brief reason string
            metadata: Additional metadata (timings, channel, window id, etc.)
        """
        event = {
            "timestamp": datetime.now().isoformat(),
            "unix_time": time.time(),
            "event_type": event_type,
            "user_id": user_id,
            "reason": reason,
            "metadata": metadata or {}
        }

        # Append to JSONL file
        with self._lock:
            with open(self.log_path, "a") as f:
                f.write(json.dumps(event, default=str) + "\n")

    def log_schedule(self, user_id: str, next_fire_at: float, armed_at: float):
        """Log a newly armed prompt schedule."""
        self.log_event(
            event_type="schedule_armed",
            user_id=user_id,
            reason=f"Next prompt in {(next_fire_at - armed_at)/60:.1f}m",
            metadata={"next_fire_at": next_fire_at, "armed_at": armed_at}
        )

    def log_fired(self, user_id: str, fired_at: float, scheduled_for: Optional[float], source: str):
        """Log a prompt firing."""
        metadata = {"fired_at": fired_at, "source": source}
        if scheduled_for is not None:
            metadata["scheduled_for"] = scheduled_for
            metadata["lateness_sec"] = max(0.0, fired_at - scheduled_for)

        self.log_event(
            event_type="prompt_fired",
            user_id=user_id,
            reason=f"Prompt fired ({source})",
            metadata=metadata
        )

    def log_delivery_attempt(
        self,
        user_id: str,
        channel: str,
        delivered: bool,
        error: Optional[str] = None
    ):
        """Log a single channel attempt."""
        self.log_event(
            event_type="delivery_attempt",
            user_id=user_id,
            reason=f"{channel}: {'delivered' if delivered else 'failed'}",
            metadata={"channel": channel, "delivered": delivered, "error": error}
        )

    def log_delivery_failed(self, user_id: str, fired_at: float, channels: List[str]):
        """Log a firing that reached no channel."""
        self.log_event(
            event_type="delivery_failed",
            user_id=user_id,
            reason="All channels failed, prompt dropped",
            metadata={"fired_at": fired_at, "channels": channels}
        )

    def log_suppressed(self, user_id: str, reason: str, suppression_type: str):
        """Log a suppressed firing (duplicate, window in flight)."""
        self.log_event(
            event_type="suppressed",
            user_id=user_id,
            reason=reason,
            metadata={"suppression_type": suppression_type}
        )

    def log_transition(self, transition: Dict[str, Any]):
        """Log a window state transition."""
        self.log_event(
            event_type="window_transition",
            user_id=transition.get("user_id", "unknown"),
            reason=transition.get("reason", ""),
            metadata=transition
        )

    def log_clock_skew(self, user_id: str, window_id: str, deadline: str, overdue_sec: float):
        """Log a deadline found already past when reconciling."""
        self.log_event(
            event_type="clock_skew",
            user_id=user_id,
            reason=f"{deadline} deadline passed {overdue_sec:.1f}s before it was observed",
            metadata={"window_id": window_id, "deadline": deadline, "overdue_sec": overdue_sec}
        )

    def log_outcome(self, window: Dict[str, Any]):
        """Log the terminal record of a window."""
        self.log_event(
            event_type="window_outcome",
            user_id=window.get("user_id", "unknown"),
            reason=f"Window {window.get('state')}",
            metadata=window
        )

    def get_recent_events(self, limit: int = 100) -> list:
        """
        Get recent events from log.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of event dictionaries
        """
        if not self.log_path.exists():
            return []

        events = []
        with open(self.log_path, "r") as f:
            for line in f:
                try:
                    events.append(json.loads(line.strip()))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def purge_logs(self):
        """Delete all logged events."""
        if self.log_path.exists():
            self.log_path.unlink()
