"""Configuration management for SourceSound Restart.

Stores and retrieves settings from a JSON file in
``~/.config/sourcesound-restart``.  The restart threshold is not a
setting; see :mod:`sourcesound_restart.policy`.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any

from sourcesound_restart.platform_utils import get_config_dir

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    # ---- target application ----
    "process_name": "SoundSource",
    "bundle_id": "com.rogueamoeba.soundsource",
    # ---- restart timeouts ----
    "terminate_timeout_seconds": 10,
    "launch_timeout_seconds": 30,
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 1,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the default location."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if not self._path.exists():
            self._data = dict(DEFAULT_CONFIG)
            return
        try:
            with open(self._path, encoding="utf-8") as fh:
                stored = json.load(fh)
            if not isinstance(stored, dict):
                raise ValueError("top-level JSON value is not an object")
            # Merge stored values over defaults so new keys get defaults
            self._data = {**DEFAULT_CONFIG, **_checked(stored)}
            logger.debug("Configuration loaded from %s", self._path)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning("Could not read config (%s); using defaults.", exc)
            self._data = dict(DEFAULT_CONFIG)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved to %s", self._path)
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- target application ----

    @property
    def process_name(self) -> str:
        """Return the executable name the probe matches against."""
        return str(self._data.get("process_name") or DEFAULT_CONFIG["process_name"])

    @property
    def bundle_id(self) -> str:
        """Return the bundle identifier used to relaunch the app ('' = by name)."""
        return str(self._data.get("bundle_id") or "")

    # ---- restart timeouts ----

    @property
    def terminate_timeout(self) -> float:
        """Return seconds to wait for the app to exit after each signal."""
        return max(1.0, float(self._data.get("terminate_timeout_seconds", 10)))

    @property
    def launch_timeout(self) -> float:
        """Return seconds to wait for ``open`` to return."""
        return max(1.0, float(self._data.get("launch_timeout_seconds", 30)))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return str(self._data.get("log_level", "INFO"))

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value.upper()

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return max(1, int(self._data.get("max_log_size_mb", 1)))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return max(0, int(self._data.get("log_backup_count", 3)))


def _checked(stored: dict[str, Any]) -> dict[str, Any]:
    """Drop stored values whose type does not match the default's."""
    checked = {}
    for key, value in stored.items():
        default = DEFAULT_CONFIG.get(key)
        if default is None:
            checked[key] = value
            continue
        if isinstance(default, str):
            ok = isinstance(value, str)
        else:
            ok = (
                isinstance(value, (int, float))
                and not isinstance(value, bool)
                and math.isfinite(value)
            )
        if ok:
            checked[key] = value
        else:
            logger.warning(
                "Ignoring config %s=%r (expected %s); using %r.",
                key,
                value,
                type(default).__name__,
                default,
            )
    return checked
