"""Simple YAML configuration loader for audiochunker."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "recorder": {
        "timeslice_ms": 100000,
        "mode": "mic",
    },
    "audio": {
        "sample_rate": 16000,
        "chunk_size": 1024,
        "channels": 1,
        "device_index": None,
    },
    "file": {
        "path": None,
        "playback_rate": 1.0,
    },
    "transport": {
        "base_url": "http://localhost:3000",
        "upload_path": "/upload-chunk",
        "finalize_path": "/finalize",
        "timeout_seconds": None,
    },
    "storage": {
        "data_directory": "data",
        "checkpoint_slot": "recorder.session.v1",
    },
    "session": {
        "participants": {},
        "method_type": "GENERAL",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/audiochunker.log",
        "console_output": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class AudioChunkerConfig:
    """audiochunker configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults
                        are used and relative paths resolve against the
                        current directory.
        """
        if config_path is None:
            self.config_file = None
            logger.info("No configuration file given, using defaults")
            self.config = copy.deepcopy(DEFAULT_CONFIG)
            return

        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULT_CONFIG, loaded)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (("storage", "data_directory"),
                             ("logging", "file_path"),
                             ("file", "path")):
            value = config.get(section, {}).get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'recorder.timeslice_ms').

        Args:
            key_path: Dot-separated key path (e.g., 'transport.base_url')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'recorder.mode')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        # Set the final value
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_timeslice_ms(self) -> int:
        """Get segment duration in milliseconds - raises if not a positive integer."""
        timeslice = self.get('recorder.timeslice_ms')
        if isinstance(timeslice, bool) or not isinstance(timeslice, int) or timeslice < 1:
            raise ValueError(f"recorder.timeslice_ms must be a positive integer, got: {timeslice!r}")
        return timeslice

    def get_participants(self) -> Dict[str, str]:
        """Get participant references (role -> id) as strings."""
        participants = self.get('session.participants') or {}
        if not isinstance(participants, dict):
            raise ValueError("session.participants must be a mapping of role to id")
        return {str(role): str(ref) for role, ref in participants.items() if ref is not None}

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())
