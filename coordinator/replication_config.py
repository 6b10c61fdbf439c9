"""Operator-tunable replication settings, re-read on every access."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from common.constants import DEFAULT_MAX_WORK_QUEUE, DEFAULT_WORK_ASSIGNER_THREADS
from common.logging_config import get_logger

logger = get_logger(__name__)


class ReplicationConfig:
    """
    Replication settings backed by an optional JSON file.

    Values in the file override the environment, which overrides the
    built-in defaults. The file is read again on every call so operators can
    change the in-flight ceiling without restarting the coordinator.
    """

    ENV_VARS = {
        "max_work_queue": "REPLICATION_MAX_WORK_QUEUE",
        "work_assigner_threads": "REPLICATION_WORK_ASSIGNER_THREADS",
    }

    DEFAULTS = {
        "max_work_queue": DEFAULT_MAX_WORK_QUEUE,
        "work_assigner_threads": DEFAULT_WORK_ASSIGNER_THREADS,
    }

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to the JSON settings file, None to use only env/defaults
            overrides: Values that win over everything else (tests, embedding)
        """
        self.config_path = Path(config_path) if config_path else None
        self.overrides = dict(overrides or {})

    def _load_file(self) -> Dict[str, Any]:
        if self.config_path is None or not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Could not read replication config {self.config_path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring replication config {self.config_path}: expected a JSON object")
            return {}
        return data

    def reload(self) -> Dict[str, Any]:
        """
        Read the current settings.

        Returns:
            Dictionary with every known setting resolved
        """
        settings = dict(self.DEFAULTS)
        for name, env_var in self.ENV_VARS.items():
            if env_var in os.environ:
                settings[name] = os.environ[env_var]
        settings.update(self._load_file())
        settings.update(self.overrides)
        return settings

    def _get_count(self, name: str, minimum: int) -> int:
        raw = self.reload().get(name)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value {raw!r} for {name}, using default {self.DEFAULTS[name]}")
            return self.DEFAULTS[name]
        if value < minimum:
            logger.warning(f"Value {value} for {name} is below {minimum}, using default {self.DEFAULTS[name]}")
            return self.DEFAULTS[name]
        return value

    def get_max_work_queue(self) -> int:
        """Maximum number of work items allowed in flight."""
        return self._get_count("max_work_queue", 0)

    def get_work_assigner_threads(self) -> int:
        """Read parallelism of the work section scan."""
        return self._get_count("work_assigner_threads", 1)

    def set(self, name: str, value: Any) -> None:
        """Pin a setting for the lifetime of this object."""
        self.overrides[name] = value
