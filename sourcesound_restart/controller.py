"""
Terminate-and-relaunch actions for the target application.

Termination is graceful first (SIGTERM) so audio routed through the app
is torn down cleanly, and escalates to SIGKILL exactly once when the app
does not exit in time.  Relaunching goes through ``open(1)``, the same
path LaunchServices uses when the user starts the app from Finder.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from typing import Any

import psutil

from sourcesound_restart.errors import RestartError, RestartErrorKind

logger = logging.getLogger(__name__)

# psutil reports create_time rounded to the clock tick
_START_TIME_SLACK = 1.0  # seconds


class AppController:
    """Restarts the target application with bounded waits."""

    def __init__(
        self,
        process_name: str = "SoundSource",
        bundle_id: str = "",
        terminate_timeout: float = 10.0,
        launch_timeout: float = 30.0,
        process_factory: Callable[[int], Any] | None = None,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
    ):
        self.process_name = process_name
        self.bundle_id = bundle_id
        self.terminate_timeout = terminate_timeout
        self.launch_timeout = launch_timeout
        self._process_factory = process_factory or psutil.Process
        self._run = runner or subprocess.run

    def restart(self, pid: int, started_at: float | None = None) -> None:
        """Terminate *pid* and launch the app again.

        *started_at* is the process start time the probe saw; a pid that
        now belongs to another process is left alone.

        Raises RestartError; the app may be left stopped if the launch
        step fails.
        """
        logger.info("Restarting %s (pid=%d).", self.process_name, pid)
        self.terminate(pid, started_at)
        self.launch()
        logger.info("%s restarted.", self.process_name)

    def terminate(self, pid: int, started_at: float | None = None) -> None:
        """Stop *pid*: SIGTERM, wait, then SIGKILL once, wait again."""
        try:
            proc = self._process_factory(pid)
            if not self._is_target(proc, started_at):
                logger.info(
                    "pid %d is no longer %s; treating it as exited.",
                    pid,
                    self.process_name,
                )
                return
            proc.terminate()
        except psutil.NoSuchProcess:
            logger.info("%s (pid=%d) already exited.", self.process_name, pid)
            return
        except psutil.Error as exc:
            raise RestartError(
                RestartErrorKind.TERMINATE_TIMEOUT,
                f"cannot signal pid {pid}: {exc}",
            ) from exc

        try:
            proc.wait(timeout=self.terminate_timeout)
            logger.info("%s exited after SIGTERM.", self.process_name)
            return
        except psutil.TimeoutExpired:
            logger.warning(
                "%s did not exit within %.0fs; sending SIGKILL.",
                self.process_name,
                self.terminate_timeout,
            )
        except psutil.NoSuchProcess:
            return

        try:
            proc.kill()
            proc.wait(timeout=self.terminate_timeout)
        except psutil.NoSuchProcess:
            pass
        except psutil.TimeoutExpired as exc:
            raise RestartError(
                RestartErrorKind.TERMINATE_TIMEOUT,
                f"pid {pid} survived SIGKILL for {self.terminate_timeout:.0f}s",
            ) from exc
        except psutil.Error as exc:
            raise RestartError(
                RestartErrorKind.TERMINATE_TIMEOUT,
                f"cannot kill pid {pid}: {exc}",
            ) from exc
        logger.info("%s killed.", self.process_name)

    def _is_target(self, proc: Any, started_at: float | None) -> bool:
        """Return True if *proc* is still the instance the probe found."""
        if proc.name() != self.process_name:
            return False
        if started_at is None:
            return True
        return abs(proc.create_time() - started_at) < _START_TIME_SLACK

    def launch(self) -> None:
        """Start the app through LaunchServices."""
        if self.bundle_id:
            cmd = ["open", "-b", self.bundle_id]
        else:
            cmd = ["open", "-a", self.process_name]
        try:
            result = self._run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.launch_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise RestartError(
                RestartErrorKind.LAUNCH_FAILED,
                f"{' '.join(cmd)} timed out after {self.launch_timeout:.0f}s",
            ) from exc
        except OSError as exc:
            raise RestartError(
                RestartErrorKind.LAUNCH_FAILED, f"cannot run {cmd[0]}: {exc}"
            ) from exc

        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"exit status {result.returncode}"
            raise RestartError(
                RestartErrorKind.LAUNCH_FAILED, f"{' '.join(cmd)} failed: {detail}"
            )
