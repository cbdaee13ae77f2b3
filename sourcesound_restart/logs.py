"""Logging setup for SourceSound Restart.

Every component logs through the standard ``logging`` module; this
module wires the root logger to a size-rotated file in the config
directory.
"""

import logging
import logging.handlers
import sys
from pathlib import Path

from sourcesound_restart.config import Config
from sourcesound_restart.platform_utils import get_log_path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Marks handlers installed here so repeated setup does not stack them.
_HANDLER_TAG = "_sourcesound_restart"


def setup_logging(
    config: Config,
    log_path: Path | None = None,
    stream: bool | None = None,
) -> Path:
    """
    Configure a rotating file log and, on a terminal, a stderr handler.

    The log directory is created if it does not exist yet.  *stream*
    defaults to whether stderr is a TTY: under launchd stderr is
    redirected to a file that should only ever contain crashes.

    Returns the path of the log file.
    """
    log_path = log_path or get_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT)

    # Rotating file handler
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=config.max_log_size_mb * 1024 * 1024,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    setattr(fh, _HANDLER_TAG, True)
    root_logger.addHandler(fh)

    if stream is None:
        stream = sys.stderr.isatty()
    if stream:
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(fmt)
        setattr(sh, _HANDLER_TAG, True)
        root_logger.addHandler(sh)

    return log_path
