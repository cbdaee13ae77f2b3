"""
launchd LaunchAgent registration for SourceSound Restart.

The agent is described by ``~/Library/LaunchAgents/<label>.plist`` and
registered in the user's GUI domain:

    sourcesound-restart install     write plist + launchctl bootstrap
    sourcesound-restart uninstall   launchctl bootout + delete plist
    sourcesound-restart status      not installed / installed / running
    sourcesound-restart reload      bootout + bootstrap with the stable path

The program path written into the plist must survive ``brew upgrade``.
Homebrew deletes ``<prefix>/Cellar/<formula>/<version>`` on every
upgrade, so Cellar paths are rewritten to the ``<prefix>/opt/<formula>``
symlink, which always points at the current version.  A plist naming a
Cellar path keeps loading fine and then silently runs nothing after the
next upgrade.

All ``launchctl`` calls go through :class:`Launchctl`.
"""

from __future__ import annotations

import enum
import logging
import os
import plistlib
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from sourcesound_restart.errors import (
    InstallError,
    ReloadError,
    ServiceError,
    UninstallError,
)
from sourcesound_restart.platform_utils import (
    LAUNCHD_LABEL,
    PACKAGE_NAME,
    default_entry_point,
    get_config_dir,
    get_launch_agents_dir,
    get_launchd_log_path,
)
from sourcesound_restart.policy import PROBE_INTERVAL

logger = logging.getLogger(__name__)

_LAUNCHCTL_TIMEOUT = 10  # seconds

_CELLAR_RE = re.compile(
    r"^(?P<prefix>.*?)/Cellar/(?P<formula>[^/]+)/(?P<version>[^/]+)(?P<rest>/.*)?$"
)
_PID_RE = re.compile(r'"PID"\s*=\s*(\d+);')
_STATUS_RE = re.compile(r'"LastExitStatus"\s*=\s*(-?\d+);')


# ======================================================================
# Stable path
# ======================================================================

def is_versioned_path(path: str | os.PathLike[str]) -> bool:
    """Return True if *path* points inside a versioned Homebrew Cellar."""
    return "/Cellar/" in os.fspath(path) + "/"


def stable_path(path: str | os.PathLike[str]) -> Path:
    """
    Return the upgrade-proof form of *path*.

    ``<prefix>/Cellar/<formula>/<version>/<rest>`` becomes
    ``<prefix>/opt/<formula>/<rest>``.  The path is made absolute but
    symlinks are never resolved.
    """
    raw = os.path.abspath(os.fspath(path))
    m = _CELLAR_RE.match(raw)
    if m:
        raw = f"{m['prefix']}/opt/{m['formula']}{m['rest'] or ''}"
    if is_versioned_path(raw):
        raise InstallError(f"refusing to register versioned path: {raw}")
    return Path(raw)


# ======================================================================
# Service descriptor
# ======================================================================

@dataclass(frozen=True)
class ServiceDescriptor:
    """The contents of the LaunchAgent plist."""
    label: str
    program: Path
    log_path: Path
    resident: bool = False
    start_interval: int = int(PROBE_INTERVAL.total_seconds())
    module: str | None = None  # set when program is a Python interpreter

    @property
    def arguments(self) -> list[str]:
        args = [str(self.program)]
        if self.module:
            args += ["-m", self.module]
        return args + ["watch" if self.resident else "run"]

    def to_plist(self) -> dict:
        data: dict = {
            "Label": self.label,
            "ProgramArguments": self.arguments,
            "RunAtLoad": True,
            "ProcessType": "Background",
            "StandardOutPath": str(self.log_path),
            "StandardErrorPath": str(self.log_path),
        }
        if self.resident:
            data["KeepAlive"] = True
        else:
            data["StartInterval"] = self.start_interval
        return data

    def to_bytes(self) -> bytes:
        return plistlib.dumps(self.to_plist(), fmt=plistlib.FMT_XML)

    @classmethod
    def from_plist(cls, data: dict) -> "ServiceDescriptor":
        """Parse a plist dict written by :meth:`to_plist`.

        Raises ValueError when required keys are missing or malformed.
        """
        try:
            args = data["ProgramArguments"]
            label = data["Label"]
            log_path = data["StandardOutPath"]
        except (KeyError, TypeError) as exc:
            raise ValueError(f"missing key {exc}") from exc
        if not isinstance(args, list) or not args:
            raise ValueError("ProgramArguments is empty")
        module = None
        if len(args) > 2 and args[1] == "-m":
            module = str(args[2])
            verbs = args[3:]
        else:
            verbs = args[1:]
        return cls(
            label=str(label),
            program=Path(args[0]),
            log_path=Path(log_path),
            resident=bool(verbs) and verbs[0] == "watch",
            module=module,
            start_interval=int(
                data.get("StartInterval", PROBE_INTERVAL.total_seconds())
            ),
        )


class ServiceState(enum.Enum):
    NOT_INSTALLED = "not installed"
    INSTALLED = "installed"
    RUNNING = "running"


@dataclass(frozen=True)
class JobInfo:
    """What launchd reports for a loaded job."""
    pid: int | None = None
    last_exit_status: int | None = None


@dataclass(frozen=True)
class ServiceStatus:
    state: ServiceState
    plist_path: Path
    descriptor: ServiceDescriptor | None = None
    job: JobInfo | None = None

    @property
    def loaded(self) -> bool:
        return self.job is not None


# ======================================================================
# launchctl
# ======================================================================

class Launchctl:
    """Thin wrapper over ``launchctl`` in the current user's GUI domain."""

    def __init__(self, uid: int | None = None):
        self.domain = f"gui/{os.getuid() if uid is None else uid}"

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        cmd = ["launchctl", *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd, capture_output=True, text=True, timeout=_LAUNCHCTL_TIMEOUT
            )
        except subprocess.TimeoutExpired as exc:
            raise ServiceError(f"{' '.join(cmd)} timed out") from exc
        except OSError as exc:
            raise ServiceError(f"cannot run launchctl: {exc}") from exc

    def query(self, label: str) -> JobInfo | None:
        """Return job info, or None if *label* is not loaded."""
        result = self._run("list", label)
        if result.returncode != 0:
            return None
        pid = _PID_RE.search(result.stdout)
        status = _STATUS_RE.search(result.stdout)
        return JobInfo(
            pid=int(pid.group(1)) if pid else None,
            last_exit_status=int(status.group(1)) if status else None,
        )

    def bootstrap(self, plist_path: Path) -> None:
        result = self._run("bootstrap", self.domain, str(plist_path))
        if result.returncode != 0:
            raise ServiceError(
                f"launchctl bootstrap failed ({result.returncode}): "
                f"{(result.stderr or result.stdout).strip()}"
            )

    def bootout(self, label: str) -> None:
        result = self._run("bootout", f"{self.domain}/{label}")
        if result.returncode != 0:
            raise ServiceError(
                f"launchctl bootout failed ({result.returncode}): "
                f"{(result.stderr or result.stdout).strip()}"
            )


# ======================================================================
# Registrar
# ======================================================================

class ServiceRegistrar:
    """Installs, removes and inspects the LaunchAgent."""

    def __init__(
        self,
        launchctl: Launchctl | None = None,
        label: str = LAUNCHD_LABEL,
        agents_dir: Path | None = None,
    ):
        self.launchctl = launchctl or Launchctl()
        self.label = label
        self.agents_dir = agents_dir or get_launch_agents_dir()

    @property
    def plist_path(self) -> Path:
        return self.agents_dir / f"{self.label}.plist"

    # ---- operations ----

    def install(
        self,
        target: str | os.PathLike[str] | None = None,
        resident: bool = False,
    ) -> bool:
        """
        Write the plist and load it.  Idempotent.

        Without *target* the console script on PATH is registered, or,
        when there is none, ``<python> -m sourcesound_restart``.

        Returns False when an identical, loaded agent was already in
        place and nothing was done.  Raises InstallError; a plist that
        launchd refused to load is removed so a later install retries.
        """
        module = None
        if target is None:
            target = default_entry_point()
            if target is None:
                target, module = sys.executable, PACKAGE_NAME
        program = stable_path(target)
        if not program.exists():
            raise InstallError(f"entry point does not exist: {program}")
        if not os.access(program, os.X_OK):
            raise InstallError(f"entry point is not executable: {program}")

        wanted = self._descriptor_for(program, resident, module)
        existing = self._load_descriptor()
        try:
            loaded = self.launchctl.query(self.label) is not None
            if existing == wanted and loaded:
                logger.info("Agent %s already installed; nothing to do.", self.label)
                return False
            if existing != wanted:
                if loaded:
                    self.launchctl.bootout(self.label)
                self._write_descriptor(wanted)
            try:
                self.launchctl.bootstrap(self.plist_path)
            except ServiceError:
                self.plist_path.unlink(missing_ok=True)
                logger.warning("launchd rejected %s; removed it.", self.plist_path)
                raise
        except ServiceError as exc:
            raise InstallError(str(exc)) from exc
        except OSError as exc:
            raise InstallError(f"cannot write {self.plist_path}: {exc}") from exc
        logger.info("Installed agent %s -> %s", self.label, program)
        return True

    def uninstall(self, purge: bool = False) -> bool:
        """
        Unload the agent and delete its plist.  Idempotent.

        With *purge*, the config/log directory is removed as well.
        Returns False when there was nothing to remove.
        """
        removed = False
        try:
            if self.launchctl.query(self.label) is not None:
                self.launchctl.bootout(self.label)
                removed = True
            if self.plist_path.exists():
                self.plist_path.unlink()
                removed = True
            config_dir = get_config_dir()
            if purge and config_dir.exists():
                shutil.rmtree(config_dir)
                removed = True
        except ServiceError as exc:
            raise UninstallError(str(exc)) from exc
        except OSError as exc:
            raise UninstallError(f"cannot remove files: {exc}") from exc
        if removed:
            logger.info("Uninstalled agent %s (purge=%s).", self.label, purge)
        return removed

    def status(self) -> ServiceStatus:
        if not self.plist_path.exists():
            return ServiceStatus(ServiceState.NOT_INSTALLED, self.plist_path)
        descriptor = self._load_descriptor()
        job = self.launchctl.query(self.label)
        if job is not None and job.pid is not None:
            state = ServiceState.RUNNING
        else:
            state = ServiceState.INSTALLED
        return ServiceStatus(state, self.plist_path, descriptor, job)

    def reload(self) -> None:
        """Unload and load the agent again, re-deriving the stable path."""
        if not self.plist_path.exists():
            raise ReloadError("agent is not installed; run 'install' first")
        existing = self._load_descriptor()
        if existing is None:
            raise ReloadError(f"cannot parse {self.plist_path}; run 'install' again")
        try:
            wanted = self._descriptor_for(
                stable_path(existing.program), existing.resident, existing.module
            )
        except InstallError as exc:
            raise ReloadError(str(exc)) from exc
        try:
            if self.launchctl.query(self.label) is not None:
                self.launchctl.bootout(self.label)
            if wanted != existing:
                self._write_descriptor(wanted)
            self.launchctl.bootstrap(self.plist_path)
        except ServiceError as exc:
            raise ReloadError(str(exc)) from exc
        except OSError as exc:
            raise ReloadError(f"cannot write {self.plist_path}: {exc}") from exc
        logger.info("Reloaded agent %s -> %s", self.label, wanted.program)

    # ---- plist I/O ----

    def _descriptor_for(
        self, program: Path, resident: bool, module: str | None = None
    ) -> ServiceDescriptor:
        return ServiceDescriptor(
            label=self.label,
            program=program,
            log_path=get_launchd_log_path(),
            resident=resident,
            module=module,
        )

    def _load_descriptor(self) -> ServiceDescriptor | None:
        try:
            with open(self.plist_path, "rb") as fh:
                return ServiceDescriptor.from_plist(plistlib.load(fh))
        except FileNotFoundError:
            return None
        except (plistlib.InvalidFileException, ValueError, OSError) as exc:
            logger.warning("Unreadable plist %s: %s", self.plist_path, exc)
            return None

    def _write_descriptor(self, descriptor: ServiceDescriptor) -> None:
        # launchd opens StandardOutPath itself and fails if the directory is missing
        descriptor.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.plist_path.with_suffix(".plist.tmp")
        tmp.write_bytes(descriptor.to_bytes())
        os.chmod(tmp, 0o644)
        os.replace(tmp, self.plist_path)
        logger.info("Wrote %s", self.plist_path)
