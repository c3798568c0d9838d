"""
Persistence for prompt schedules, pitch windows and notification preferences.

SQLite in production (atomic INSERT ... ON CONFLICT upserts, no
read-modify-write), in-memory for tests and simulation.

Only ids, timings and opaque artifact refs are stored, never audio.
"""

import json
import sqlite3
import threading
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from .config_manager import get_storage_root
from .session import PitchWindow


@dataclass
class PromptSchedule:
    """Next prompt instant for a user. Replaced on every arm."""
    user_id: str
    next_fire_at: float  # unix seconds, always inside active hours
    min_interval_sec: float
    active_hours: Tuple[int, int]  # [start_hour, end_hour)
    armed_at: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["active_hours"] = list(self.active_hours)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PromptSchedule':
        """Create from dictionary."""
        values = dict(data)
        values["active_hours"] = tuple(values["active_hours"])
        return cls(**values)


@dataclass
class UserNotificationPreference:
    """Channel opt-ins, owned by the user profile."""
    user_id: str
    push_enabled: bool = True
    email_enabled: bool = False
    email_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserNotificationPreference':
        """Create from dictionary."""
        return cls(**data)


class Store:
    """Store interface."""

    def upsert_window(self, window: PitchWindow) -> bool:
        raise NotImplementedError

    def upsert_schedule(self, schedule: PromptSchedule) -> bool:
        raise NotImplementedError

    def load_user_preference(self, user_id: str) -> UserNotificationPreference:
        """Load preference, defaults (push only) if none saved."""
        raise NotImplementedError

    def save_user_preference(self, preference: UserNotificationPreference) -> bool:
        raise NotImplementedError

    def get_window(self, window_id: str) -> Optional[PitchWindow]:
        raise NotImplementedError

    def list_windows(self, user_id: Optional[str] = None, limit: int = 100) -> List[PitchWindow]:
        """Most recent first."""
        raise NotImplementedError

    def load_schedule(self, user_id: str) -> Optional[PromptSchedule]:
        raise NotImplementedError


class InMemoryStore(Store):
    """Dictionary-backed store for tests and simulation."""

    def __init__(self):
        self._lock = threading.Lock()
        self.windows: Dict[str, Dict[str, Any]] = {}
        self.schedules: Dict[str, Dict[str, Any]] = {}
        self.preferences: Dict[str, Dict[str, Any]] = {}
        self.upsert_count = 0

    def upsert_window(self, window: PitchWindow) -> bool:
        with self._lock:
            self.windows[window.id] = window.to_dict()
            self.upsert_count += 1
        return True

    def upsert_schedule(self, schedule: PromptSchedule) -> bool:
        with self._lock:
            self.schedules[schedule.user_id] = schedule.to_dict()
            self.upsert_count += 1
        return True

    def load_user_preference(self, user_id: str) -> UserNotificationPreference:
        with self._lock:
            data = self.preferences.get(user_id)
        return UserNotificationPreference.from_dict(data) if data else UserNotificationPreference(user_id=user_id)

    def save_user_preference(self, preference: UserNotificationPreference) -> bool:
        with self._lock:
            self.preferences[preference.user_id] = preference.to_dict()
        return True

    def get_window(self, window_id: str) -> Optional[PitchWindow]:
        with self._lock:
            data = self.windows.get(window_id)
        return PitchWindow.from_dict(data) if data else None

    def list_windows(self, user_id: Optional[str] = None, limit: int = 100) -> List[PitchWindow]:
        with self._lock:
            rows = [w for w in self.windows.values() if user_id is None or w["user_id"] == user_id]
        rows.sort(key=lambda w: w["armed_at"], reverse=True)
        return [PitchWindow.from_dict(w) for w in rows[:limit]]

    def load_schedule(self, user_id: str) -> Optional[PromptSchedule]:
        with self._lock:
            data = self.schedules.get(user_id)
        return PromptSchedule.from_dict(data) if data else None


class SQLiteStore(Store):
    """
    SQLite-backed store.

    Storage location: <storage root>/pitchup.db
    Every write is a single upsert statement, so concurrent writers never
    lose each other's updates.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS windows (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        state TEXT NOT NULL,
        armed_at REAL NOT NULL,
        data TEXT NOT NULL,
        updated_at REAL NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_windows_user ON windows (user_id, armed_at);
    CREATE TABLE IF NOT EXISTS schedules (
        user_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at REAL NOT NULL
    );
    CREATE TABLE IF NOT EXISTS preferences (
        user_id TEXT PRIMARY KEY,
        push_enabled INTEGER NOT NULL,
        email_enabled INTEGER NOT NULL,
        email_address TEXT,
        updated_at REAL NOT NULL
    );
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize SQLite store.

        Args:
            db_path: Database file (default: <storage root>/pitchup.db)
        """
        if db_path is None:
            db_path = str(get_storage_root() / "pitchup.db")

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(self.SCHEMA)
            self._conn.commit()

    def _write(self, sql: str, params: tuple) -> bool:
        try:
            with self._lock:
                with self._conn:
                    self._conn.execute(sql, params)
            return True
        except sqlite3.Error as e:
            print(f"  [STORE] ERROR: write failed: {e}")
            return False

    def _read(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            print(f"  [STORE] ERROR: read failed: {e}")
            return []

    def upsert_window(self, window: PitchWindow) -> bool:
        return self._write(
            """
            INSERT INTO windows (id, user_id, state, armed_at, data, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                state = excluded.state,
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (window.id, window.user_id, window.state.value, window.armed_at,
             json.dumps(window.to_dict()), time.time())
        )

    def upsert_schedule(self, schedule: PromptSchedule) -> bool:
        return self._write(
            """
            INSERT INTO schedules (user_id, data, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (schedule.user_id, json.dumps(schedule.to_dict()), time.time())
        )

    def load_user_preference(self, user_id: str) -> UserNotificationPreference:
        rows = self._read(
            "SELECT push_enabled, email_enabled, email_address FROM preferences WHERE user_id = ?",
            (user_id,)
        )
        if not rows:
            return UserNotificationPreference(user_id=user_id)

        row = rows[0]
        return UserNotificationPreference(
            user_id=user_id,
            push_enabled=bool(row["push_enabled"]),
            email_enabled=bool(row["email_enabled"]),
            email_address=row["email_address"]
        )

    def save_user_preference(self, preference: UserNotificationPreference) -> bool:
        return self._write(
            """
            INSERT INTO preferences (user_id, push_enabled, email_enabled, email_address, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                push_enabled = excluded.push_enabled,
                email_enabled = excluded.email_enabled,
                email_address = excluded.email_address,
                updated_at = excluded.updated_at
            """,
            (preference.user_id, int(preference.push_enabled), int(preference.email_enabled),
             preference.email_address, time.time())
        )

    def get_window(self, window_id: str) -> Optional[PitchWindow]:
        rows = self._read("SELECT data FROM windows WHERE id = ?", (window_id,))
        return PitchWindow.from_dict(json.loads(rows[0]["data"])) if rows else None

    def list_windows(self, user_id: Optional[str] = None, limit: int = 100) -> List[PitchWindow]:
        if user_id is None:
            rows = self._read("SELECT data FROM windows ORDER BY armed_at DESC LIMIT ?", (limit,))
        else:
            rows = self._read(
                "SELECT data FROM windows WHERE user_id = ? ORDER BY armed_at DESC LIMIT ?",
                (user_id, limit)
            )
        return [PitchWindow.from_dict(json.loads(row["data"])) for row in rows]

    def load_schedule(self, user_id: str) -> Optional[PromptSchedule]:
        rows = self._read("SELECT data FROM schedules WHERE user_id = ?", (user_id,))
        return PromptSchedule.from_dict(json.loads(rows[0]["data"])) if rows else None

    def close(self):
        """Close the database connection."""
        with self._lock:
            self._conn.close()
