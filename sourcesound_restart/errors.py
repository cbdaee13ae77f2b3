"""Exception hierarchy for SourceSound Restart.

Errors raised inside a watchdog pass (``ProbeError``, ``RestartError``)
are logged and swallowed at the pass boundary.  Errors raised by the
lifecycle verbs (``ServiceError`` and friends) reach the operator as a
message and a non-zero exit code.
"""

from __future__ import annotations

import enum


class SourceSoundError(Exception):
    """Base class for all errors raised by this package."""


class ProbeError(SourceSoundError):
    """The OS process table could not be queried."""


class RestartErrorKind(enum.Enum):
    TERMINATE_TIMEOUT = "terminate-timeout"
    LAUNCH_FAILED = "launch-failed"


class RestartError(SourceSoundError):
    """Terminating or relaunching the target application failed."""

    def __init__(self, kind: RestartErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]}"


class ServiceError(SourceSoundError):
    """A launchd registration operation failed."""


class InstallError(ServiceError):
    pass


class UninstallError(ServiceError):
    pass


class ReloadError(ServiceError):
    pass


class UnsupportedPlatformError(ServiceError):
    """Service verbs were invoked on a platform without launchd."""
