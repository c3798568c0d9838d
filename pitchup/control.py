"""
Control channel: UI -> running engine commands.

The dashboard appends JSON lines to storage/commands.jsonl; the runner
drains the file on its clock thread and applies each command to the engine.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any, List

from .config_manager import get_storage_root
from .errors import CaptureUnavailableError


COMMANDS = ("trigger", "start", "stop", "retake", "submit")


class ControlChannel:
    """
    File-backed command queue.
    """

    def __init__(self, commands_file: Optional[str] = None):
        """
        Initialize control channel.

        Args:
            commands_file: Path to queue file (default: <storage root>/commands.jsonl)
        """
        if commands_file is None:
            commands_file = str(get_storage_root() / "commands.jsonl")

        self.commands_file = Path(commands_file)
        self.commands_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def send(self, command: str, **params) -> Dict[str, Any]:
        """
        Queue a command.

        Raises:
            ValueError: unknown command
        """
        if command not in COMMANDS:
            raise ValueError(f"Unknown command: {command} (expected one of {', '.join(COMMANDS)})")

        entry = {"command": command, "sent_at": time.time(), "params": params}
        with self._lock:
            with open(self.commands_file, "a") as f:
                f.write(json.dumps(entry) + "\n")
        return entry

    def drain(self) -> List[Dict[str, Any]]:
        """
        Take all queued commands, oldest first.

        The file is renamed before reading so commands sent meanwhile land
        in a fresh file.
        """
        with self._lock:
            if not self.commands_file.exists():
                return []

            processing = self.commands_file.with_suffix(".processing")
            os.replace(self.commands_file, processing)

            commands = []
            with open(processing, "r") as f:
                for line in f:
                    try:
                        commands.append(json.loads(line.strip()))
                    except json.JSONDecodeError:
                        continue
            processing.unlink()

        return commands


def apply_command(engine, entry: Dict[str, Any]) -> bool:
    """
    Apply one queued command to an engine.

    Returns:
        True if the command changed engine state
    """
    command = entry.get("command")
    params = entry.get("params") or {}

    try:
        if command == "trigger":
            return engine.trigger_now() is not None
        if command == "start":
            return engine.start_recording() is not None
        if command == "stop":
            return engine.stop_recording() is not None
        if command == "retake":
            return engine.retake() is not None
        if command == "submit":
            return engine.submit(caption=params.get("caption")) is not None
    except CaptureUnavailableError as e:
        print(f"  [CONTROL] {command} failed: {e}")
        return False

    print(f"  [CONTROL] Ignoring unknown command: {command}")
    return False
