"""
The watchdog pass: probe → decide → act → log.

launchd runs ``sourcesound-restart run`` every ``PROBE_INTERVAL``; each
invocation performs exactly one pass and exits.  The resident ``watch``
mode loops over the same pass with a sleep in between.

Two passes never act at once: each pass holds an exclusive ``flock`` on
the lock file in the config directory, and a pass that cannot take it
returns without touching the target.
"""

from __future__ import annotations

import fcntl
import logging
import os
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import IO

from sourcesound_restart.config import Config
from sourcesound_restart.controller import AppController
from sourcesound_restart.errors import RestartError, SourceSoundError
from sourcesound_restart.platform_utils import get_lock_path
from sourcesound_restart.policy import PROBE_INTERVAL, RESTART_THRESHOLD, Action, decide
from sourcesound_restart.probe import ProbeResult, ProcessProbe

logger = logging.getLogger(__name__)


@dataclass
class WatchState:
    """Last-known state of the target within one watchdog lifetime."""
    running: bool = False
    started_at: float | None = None  # epoch seconds; only moves forward

    def observe(self, result: ProbeResult) -> None:
        self.running = result.running
        if result.running and result.started_at is not None:
            if self.started_at is None or result.started_at > self.started_at:
                self.started_at = result.started_at

    def mark_restarted(self, now: float) -> None:
        self.running = True
        if self.started_at is None or now > self.started_at:
            self.started_at = now

    def uptime(self, now: float) -> timedelta | None:
        if not self.running or self.started_at is None:
            return None
        return timedelta(seconds=max(0.0, now - self.started_at))


class PassLock:
    """Non-blocking exclusive lock held for the duration of one pass."""

    def __init__(self, path: Path):
        self.path = path
        self._fh: IO[str] | None = None

    def acquire(self) -> bool:
        """Return True if the lock was taken, False if another pass holds it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.close()
            return False
        except OSError:
            fh.close()
            raise
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._fh = fh
        return True

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class Watchdog:
    """Runs watchdog passes against one target application."""

    def __init__(
        self,
        probe: ProcessProbe,
        controller: AppController,
        lock: PassLock,
        threshold: timedelta = RESTART_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.probe = probe
        self.controller = controller
        self.lock = lock
        self.threshold = threshold
        self.state = WatchState()
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config) -> "Watchdog":
        return cls(
            probe=ProcessProbe(config.process_name),
            controller=AppController(
                process_name=config.process_name,
                bundle_id=config.bundle_id,
                terminate_timeout=config.terminate_timeout,
                launch_timeout=config.launch_timeout,
            ),
            lock=PassLock(get_lock_path()),
        )

    def run_pass(self) -> Action | None:
        """Perform one pass.  Never raises.

        Returns the action decided, or None when the pass was skipped
        (lock busy) or aborted by an error.
        """
        try:
            with self.lock as acquired:
                if not acquired:
                    logger.info("Another pass is running; skipping.")
                    return None
                return self._pass()
        except SourceSoundError as exc:
            logger.error("Pass aborted: %s", exc)
        except Exception:
            logger.exception("Unexpected error during pass.")
        return None

    def _pass(self) -> Action:
        name = self.probe.process_name
        result = self.probe.snapshot()
        self.state.observe(result)
        action = decide(result.running, result.uptime, self.threshold)

        if action is Action.NOOP:
            if not result.running:
                logger.info("Skip: %s is not running.", name)
            else:
                logger.info(
                    "Skip: %s uptime %s (tracked %s) is under the %s threshold.",
                    name,
                    _fmt(result.uptime),
                    _fmt(self.state.uptime(self._clock())),
                    _fmt(self.threshold),
                )
            return action

        if result.pid is None:
            logger.warning("Skip: %s is running but its pid is unknown.", name)
            return Action.NOOP
        logger.info(
            "%s uptime %s reached the %s threshold; restarting.",
            name,
            _fmt(result.uptime),
            _fmt(self.threshold),
        )
        try:
            self.controller.restart(result.pid, result.started_at)
        except RestartError as exc:
            # Retried by the next scheduled pass.
            logger.error("Restart of %s failed: %s", name, exc)
            return action
        now = self._clock()
        self.state.mark_restarted(now)
        logger.info("%s tracked uptime reset to %s.", name, _fmt(self.state.uptime(now)))
        return action

    def watch(self, interval: timedelta = PROBE_INTERVAL) -> None:
        """Run passes until SIGINT/SIGTERM."""
        stop = threading.Event()

        def _handler(sig, frame):
            logger.info("Received signal %d; stopping.", sig)
            stop.set()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

        logger.info(
            "Watching %s every %s (threshold %s).",
            self.probe.process_name,
            _fmt(interval),
            _fmt(self.threshold),
        )
        while not stop.is_set():
            self.run_pass()
            stop.wait(timeout=interval.total_seconds())
        logger.info("Watch loop stopped.")


def _fmt(delta: timedelta | None) -> str:
    if delta is None:
        return "unknown"
    total = int(delta.total_seconds())
    minutes, seconds = divmod(total, 60)
    return f"{minutes}m{seconds:02d}s"
