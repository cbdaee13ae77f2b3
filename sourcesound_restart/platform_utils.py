"""
Platform helpers for SourceSound Restart.

Centralises OS detection and the on-disk layout so the other modules
never build paths or check ``sys.platform`` on their own.

Layout:
  - ``~/.config/sourcesound-restart/``      config, logs, pass lock
  - ``~/Library/LaunchAgents/<label>.plist`` launchd service descriptor
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_MACOS: bool = sys.platform == "darwin"

APP_NAME = "sourcesound-restart"
PACKAGE_NAME = "sourcesound_restart"
LAUNCHD_LABEL = f"com.user.{APP_NAME}"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """Return ``~/.config/sourcesound-restart`` (not created here)."""
    return Path.home() / ".config" / APP_NAME


def ensure_config_dir() -> Path:
    """Return the config directory, creating it if needed."""
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path of the rotating application log."""
    return get_config_dir() / f"{APP_NAME}.log"


def get_launchd_log_path() -> Path:
    """Return the path launchd redirects the job's stdout/stderr to."""
    return get_config_dir() / f"{APP_NAME}.launchd.log"


def get_lock_path() -> Path:
    return get_config_dir() / "run.lock"


def get_launch_agents_dir() -> Path:
    return Path.home() / "Library" / "LaunchAgents"


# ---- entry point -------------------------------------------------------


def default_entry_point() -> Path | None:
    """
    Return the absolute path of the ``sourcesound-restart`` executable.

    Looks up the console script on ``PATH`` (Homebrew links it from
    ``<prefix>/bin``); returns None when it is not installed there.
    Symlinks are left unresolved: resolving them would land inside the
    versioned Cellar.
    """
    found = shutil.which(APP_NAME)
    if found:
        return Path(os.path.abspath(found))
    return None
