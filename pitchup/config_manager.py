"""
Configuration manager for persisting engine settings.

Saves/loads EngineConfig to/from JSON under the storage root.
"""

import json
import os
from pathlib import Path
from typing import Optional

from .engine_config import EngineConfig
from .errors import ConfigError


STORAGE_ROOT_ENV = "PITCHUP_STORAGE_ROOT"


def get_storage_root() -> Path:
    """
    Directory for all storage files.

    Defaults to ./storage, overridable with PITCHUP_STORAGE_ROOT.
    """
    root = os.environ.get(STORAGE_ROOT_ENV)
    return Path(root).expanduser() if root else Path("storage")


class ConfigManager:
    """
    Manages persistence of configuration settings.

    Saves to storage/engine_config.json
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config manager.

        Args:
            config_path: Path to config file (default: <storage root>/engine_config.json)
        """
        if config_path is None:
            config_path = str(get_storage_root() / "engine_config.json")

        self.config_path = Path(config_path)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def save_config(self, config: EngineConfig):
        """
        Save configuration to JSON.

        Args:
            config: Engine configuration
        """
        data = {
            "version": "1.0",
            "engine_config": config.to_dict()
        }

        temp_file = self.config_path.with_suffix('.tmp')
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_file, self.config_path)

    def load_config(self) -> EngineConfig:
        """
        Load configuration from JSON.

        Returns:
            EngineConfig (defaults if the file is missing, corrupt or invalid)
        """
        if not self.config_path.exists():
            return EngineConfig()

        try:
            with open(self.config_path, "r") as f:
                data = json.load(f)
            return EngineConfig.from_dict(data.get("engine_config", {}))
        except (json.JSONDecodeError, IOError, ConfigError, TypeError, ValueError) as e:
            print(f"  [CONFIG] Warning: ignoring {self.config_path} ({e}), using defaults")
            return EngineConfig()

    def purge_config(self):
        """Delete configuration file."""
        if self.config_path.exists():
            self.config_path.unlink()
