import subprocess

import psutil
import pytest

from sourcesound_restart.controller import AppController
from sourcesound_restart.errors import RestartError, RestartErrorKind
from tests.conftest import FakeRunner


class FakeProcess:
    """Scripted psutil.Process: *waits* lists the outcome of each wait()."""

    def __init__(self, waits, events, name="SoundSource", create_time=None):
        self._waits = list(waits)
        self.events = events
        self._name = name
        self._create_time = create_time

    def name(self):
        return self._name

    def create_time(self):
        return self._create_time

    def terminate(self):
        self.events.append("terminate")

    def kill(self):
        self.events.append("kill")

    def wait(self, timeout=None):
        self.events.append("wait")
        outcome = self._waits.pop(0)
        if outcome == "timeout":
            raise psutil.TimeoutExpired(timeout)
        if outcome == "gone":
            raise psutil.NoSuchProcess(42)


def _controller(proc, runner):
    return AppController(
        process_name="SoundSource",
        bundle_id="com.rogueamoeba.soundsource",
        terminate_timeout=1,
        launch_timeout=1,
        process_factory=lambda pid: proc,
        runner=runner,
    )


def test_graceful_restart_terminates_then_launches():
    events = []
    runner = FakeRunner(events=events)
    _controller(FakeProcess(["exit"], events), runner).restart(42)
    assert events == ["terminate", "wait", "launch"]
    assert runner.commands == [["open", "-b", "com.rogueamoeba.soundsource"]]


def test_timeout_escalates_to_kill_once():
    events = []
    runner = FakeRunner(events=events)
    _controller(FakeProcess(["timeout", "exit"], events), runner).restart(42)
    assert events == ["terminate", "wait", "kill", "wait", "launch"]
    assert events.count("kill") == 1


def test_survives_kill_raises_terminate_timeout():
    events = []
    runner = FakeRunner(events=events)
    with pytest.raises(RestartError) as err:
        _controller(FakeProcess(["timeout", "timeout"], events), runner).restart(42)
    assert err.value.kind is RestartErrorKind.TERMINATE_TIMEOUT
    assert events.count("kill") == 1
    assert "launch" not in events


def test_process_already_gone_still_launches():
    events = []

    def vanished(pid):
        raise psutil.NoSuchProcess(pid)

    runner = FakeRunner(events=events)
    controller = AppController(process_factory=vanished, runner=runner)
    controller.restart(42)
    assert events == ["launch"]


def test_launch_non_zero_exit_is_launch_failed():
    events = []
    runner = FakeRunner(returncode=1, stderr="Unable to find application", events=events)
    with pytest.raises(RestartError) as err:
        _controller(FakeProcess(["exit"], events), runner).restart(42)
    assert err.value.kind is RestartErrorKind.LAUNCH_FAILED
    assert "Unable to find application" in str(err.value)


def test_launch_timeout_is_launch_failed():
    runner = FakeRunner(exc=subprocess.TimeoutExpired(["open"], 1))
    with pytest.raises(RestartError) as err:
        AppController(runner=runner).launch()
    assert err.value.kind is RestartErrorKind.LAUNCH_FAILED


def test_launch_by_name_without_bundle_id():
    runner = FakeRunner()
    AppController(process_name="SoundSource", bundle_id="", runner=runner).launch()
    assert runner.commands == [["open", "-a", "SoundSource"]]


def test_reused_pid_is_not_signalled():
    events = []
    runner = FakeRunner(events=events)
    _controller(FakeProcess(["exit"], events, name="Safari"), runner).restart(42)
    assert events == ["launch"]


def test_restarted_instance_with_same_pid_is_not_signalled():
    events = []
    runner = FakeRunner(events=events)
    proc = FakeProcess(["exit"], events, create_time=2_000.0)
    _controller(proc, runner).restart(42, started_at=1_000.0)
    assert "terminate" not in events


def test_matching_start_time_is_signalled():
    events = []
    runner = FakeRunner(events=events)
    proc = FakeProcess(["exit"], events, create_time=1_000.0)
    _controller(proc, runner).restart(42, started_at=1_000.0)
    assert events == ["terminate", "wait", "launch"]
