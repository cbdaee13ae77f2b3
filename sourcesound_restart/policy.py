"""Restart decision logic.

Pure functions only: given what the probe observed, decide whether the
target application must be restarted now.

SoundSource's trial starts overlaying noise after 20 minutes of
continuous runtime.  Passes run every ``PROBE_INTERVAL``, so an app can
sit just under the threshold for one whole interval before the next
pass sees it; the threshold leaves room for that plus a margin for the
restart itself.
"""

from __future__ import annotations

import enum
from datetime import timedelta

TRIAL_NOISE_AFTER = timedelta(minutes=20)
PROBE_INTERVAL = timedelta(seconds=60)
SAFETY_MARGIN = timedelta(seconds=60)
RESTART_THRESHOLD = TRIAL_NOISE_AFTER - PROBE_INTERVAL - SAFETY_MARGIN

assert RESTART_THRESHOLD + PROBE_INTERVAL < TRIAL_NOISE_AFTER


class Action(enum.Enum):
    NOOP = "noop"
    RESTART_NOW = "restart-now"


def decide(
    running: bool,
    uptime: timedelta | None,
    threshold: timedelta = RESTART_THRESHOLD,
) -> Action:
    """Return the action for an app observed as *running* for *uptime*.

    An app that is not running is never launched: the watchdog only
    restarts what the user has opened.  An unknown uptime is treated the
    same way, since killing on a guess could cut off live audio.
    """
    if threshold <= timedelta(0):
        raise ValueError(f"threshold must be positive, got {threshold}")
    if not running or uptime is None:
        return Action.NOOP
    if uptime < threshold:
        return Action.NOOP
    return Action.RESTART_NOW
