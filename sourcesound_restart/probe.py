"""Process-table probe for the target application."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

import psutil

from sourcesound_restart.errors import ProbeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """What one look at the process table found."""
    running: bool
    pid: int | None = None
    started_at: float | None = None  # epoch seconds
    uptime: timedelta | None = None


NOT_RUNNING = ProbeResult(running=False)


class ProcessProbe:
    """Finds the target application in the process table.

    Read-only.  When the OS query itself fails the probe reports the app
    as not running, which makes the caller fall back to doing nothing.
    """

    def __init__(
        self,
        process_name: str = "SoundSource",
        clock: Callable[[], float] = time.time,
    ):
        self.process_name = process_name
        self._clock = clock

    def snapshot(self) -> ProbeResult:
        """Return the current state of the target, never raising."""
        try:
            return self._query()
        except ProbeError as exc:
            logger.warning("Process probe failed (%s); treating as not running.", exc)
            return NOT_RUNNING

    def is_running(self) -> bool:
        return self.snapshot().running

    def uptime(self) -> timedelta | None:
        """Return how long the target has been running, or None if it is not."""
        return self.snapshot().uptime

    def _query(self) -> ProbeResult:
        oldest: tuple[float, int] | None = None
        try:
            for proc in psutil.process_iter(["name", "create_time"]):
                info = proc.info
                if info.get("name") != self.process_name:
                    continue
                created = info.get("create_time")
                if created is None:
                    # Access denied on create_time; still counts as running
                    created = self._clock()
                if oldest is None or created < oldest[0]:
                    oldest = (created, proc.pid)
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"cannot list processes: {exc}") from exc

        if oldest is None:
            logger.debug("%s is not running.", self.process_name)
            return NOT_RUNNING

        started_at, pid = oldest
        uptime = timedelta(seconds=max(0.0, self._clock() - started_at))
        logger.debug("%s running (pid=%d, uptime=%s)", self.process_name, pid, uptime)
        return ProbeResult(running=True, pid=pid, started_at=started_at, uptime=uptime)
