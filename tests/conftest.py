"""Shared fixtures: an isolated home directory and a fake launchctl."""

import logging
import plistlib
import subprocess

import pytest

from sourcesound_restart.errors import ServiceError
from sourcesound_restart.logs import _HANDLER_TAG
from sourcesound_restart.service import JobInfo


class FakeLaunchctl:
    """In-memory stand-in for the launchd GUI domain."""

    def __init__(self):
        self.jobs: dict[str, JobInfo] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_bootstrap = False

    def query(self, label):
        self.calls.append(("query", label))
        return self.jobs.get(label)

    def bootstrap(self, plist_path):
        self.calls.append(("bootstrap", str(plist_path)))
        if self.fail_bootstrap:
            raise ServiceError("launchctl bootstrap failed (5): Input/output error")
        with open(plist_path, "rb") as fh:
            label = plistlib.load(fh)["Label"]
        if label in self.jobs:
            raise ServiceError("launchctl bootstrap failed (5): already loaded")
        self.jobs[label] = JobInfo()

    def bootout(self, label):
        self.calls.append(("bootout", label))
        if label not in self.jobs:
            raise ServiceError("launchctl bootout failed (3): No such process")
        del self.jobs[label]

    def count(self, name):
        return sum(1 for call, _ in self.calls if call == name)


class FakeRunner:
    """Records ``subprocess.run`` calls and returns a canned result."""

    def __init__(self, returncode=0, stderr="", exc=None, events=None):
        self.returncode = returncode
        self.stderr = stderr
        self.exc = exc
        self.events = events if events is not None else []
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        self.events.append("launch")
        if self.exc is not None:
            raise self.exc
        return subprocess.CompletedProcess(cmd, self.returncode, "", self.stderr)


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point ``Path.home()`` at a temporary directory."""
    home = tmp_path.resolve()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def launchctl():
    return FakeLaunchctl()


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def entry_point(home):
    """A fake Homebrew prefix with a versioned Cellar and an opt symlink."""
    cellar = home / "brew" / "Cellar" / "sourcesound-restart" / "1.0.1" / "libexec"
    cellar.mkdir(parents=True)
    script = cellar / "sourcesound-restart"
    script.write_text("#!/bin/sh\n")
    script.chmod(0o755)
    opt = home / "brew" / "opt"
    opt.mkdir()
    (opt / "sourcesound-restart").symlink_to(cellar.parent)
    return opt / "sourcesound-restart" / "libexec" / "sourcesound-restart"
