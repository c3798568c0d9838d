"""
Status Bus - IPC bridge for live status updates.

Publishes the current engine status to storage/status.json for UI consumption.
PRIVACY: No audio, only ids, states and timings.
"""

import json
import os
import time
import threading
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, Callable, List
from pathlib import Path

from .config_manager import get_storage_root


@dataclass
class EngineStatusSnapshot:
    """
    Single snapshot of current engine state.
    """
    # Timestamp
    ts_unix: float

    user_id: str
    running: bool

    # Window state machine
    state: str  # "idle", "armed", "recording", "review", "submitted", "expired"
    time_in_state_sec: float
    window_id: Optional[str]
    time_remaining_sec: Optional[float]
    recording_remaining_sec: Optional[float]
    retake_count: int
    awaiting_take: bool  # retake pressed, new take not started yet

    # Scheduler
    next_fire_at: Optional[float]
    next_fire_in_sec: Optional[float]
    active_hours: str
    in_active_hours: bool

    # Delivery
    last_attempts: List[Dict[str, Any]]

    # Counters {fire_count, windows_opened, suppressed_count, delivery_failures}
    stats: Dict[str, int]


def create_snapshot_from_engine(engine) -> Optional[EngineStatusSnapshot]:
    """
    Create EngineStatusSnapshot from a PitchEngine.

    Returns:
        EngineStatusSnapshot or None if the status could not be read
    """
    try:
        status = engine.get_status()
        window = status["window"]

        return EngineStatusSnapshot(
            ts_unix=time.time(),
            user_id=status["user_id"],
            running=status["running"],
            state=window["state"],
            time_in_state_sec=window["time_in_state"],
            window_id=window["window_id"],
            time_remaining_sec=window["time_remaining_sec"],
            recording_remaining_sec=window["recording_remaining_sec"],
            retake_count=window["retake_count"],
            awaiting_take=window["awaiting_take"],
            next_fire_at=status["next_fire_at"],
            next_fire_in_sec=status["next_fire_in_sec"],
            active_hours=status["active_hours"],
            in_active_hours=status["in_active_hours"],
            last_attempts=status["last_attempts"],
            stats={
                "fire_count": status["fire_count"],
                "windows_opened": status["windows_opened"],
                "suppressed_count": status["suppressed_count"],
                "delivery_failures": status["delivery_failures"]
            }
        )
    except Exception as e:
        print(f"[STATUS_BUS] Error creating snapshot: {e}")
        return None


class StatusBus:
    """
    Background publisher that writes status snapshots to JSON file.

    Thread-safe, atomic writes, best-effort delivery.
    """

    def __init__(
        self,
        status_file: Optional[str] = None,
        update_interval_sec: float = 1.0
    ):
        """
        Initialize status bus.

        Args:
            status_file: Path to status JSON file (default: <storage root>/status.json)
            update_interval_sec: How often to publish (default: 1 Hz)
        """
        if status_file is None:
            status_file = str(get_storage_root() / "status.json")

        self.status_file = Path(status_file)
        self.status_file.parent.mkdir(parents=True, exist_ok=True)

        self.update_interval_sec = update_interval_sec

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._snapshot_provider: Optional[Callable[[], Optional[EngineStatusSnapshot]]] = None

        self._error_count = 0
        self._last_error_time = 0.0
        self._backoff_sec = 1.0

    def set_snapshot_provider(self, provider: Callable[[], Optional[EngineStatusSnapshot]]):
        """
        Set the callback that provides status snapshots.

        Args:
            provider: Function that returns current EngineStatusSnapshot or None
        """
        self._snapshot_provider = provider

    def start(self):
        """Start the publisher thread."""
        if self._running:
            return

        if not self._snapshot_provider:
            raise ValueError("Must set snapshot provider before starting")

        self._running = True
        self._thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the publisher thread."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

    def publish_once(self) -> bool:
        """
        Write one snapshot now.

        Returns:
            True if a snapshot was written
        """
        snapshot = self._snapshot_provider() if self._snapshot_provider else None
        if snapshot is None:
            return False
        self._write_snapshot(snapshot)
        return True

    def _publish_loop(self):
        """Main publisher loop (runs in background thread)."""
        while self._running:
            try:
                if self.publish_once():
                    self._error_count = 0
                    self._backoff_sec = 1.0

                time.sleep(self.update_interval_sec)

            except Exception as e:
                # Best-effort: log error but keep running
                self._error_count += 1
                current_time = time.time()

                # Only log errors occasionally
                if current_time - self._last_error_time > 10.0:
                    print(f"[STATUS_BUS] Error publishing status: {e}")
                    self._last_error_time = current_time

                # Exponential backoff on repeated errors
                if self._error_count > 3:
                    self._backoff_sec = min(self._backoff_sec * 2, 30.0)
                    time.sleep(self._backoff_sec)
                else:
                    time.sleep(self.update_interval_sec)

    def _write_snapshot(self, snapshot: EngineStatusSnapshot):
        """
        Write snapshot to file atomically (temp file + os.replace()).
        """
        json_str = json.dumps(asdict(snapshot), indent=2)

        temp_file = self.status_file.with_suffix('.tmp')
        with open(temp_file, 'w') as f:
            f.write(json_str)

        os.replace(temp_file, self.status_file)


def read_status(status_file: Optional[str] = None, max_age_sec: float = 5.0) -> Optional[Dict[str, Any]]:
    """
    Read the last published status.

    Returns:
        Status dict, or None if missing, unreadable or older than max_age_sec
    """
    path = Path(status_file) if status_file else get_storage_root() / "status.json"
    if not path.exists():
        return None

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return None

    if time.time() - data.get("ts_unix", 0.0) > max_age_sec:
        return None
    return data
