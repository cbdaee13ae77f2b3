import logging
from datetime import timedelta

import pytest

from sourcesound_restart.controller import AppController
from sourcesound_restart.errors import ProbeError
from sourcesound_restart.policy import Action
from sourcesound_restart.probe import NOT_RUNNING, ProbeResult
from sourcesound_restart.watchdog import PassLock, Watchdog, WatchState
from tests.conftest import FakeRunner
from tests.test_controller import FakeProcess

NOW = 1_700_000_000.0
THRESHOLD = timedelta(minutes=120)


class FakeProbe:
    process_name = "SoundSource"

    def __init__(self, result):
        self.result = result

    def snapshot(self):
        return self.result


def running_for(minutes):
    return ProbeResult(
        running=True,
        pid=42,
        started_at=NOW - minutes * 60,
        uptime=timedelta(minutes=minutes),
    )


@pytest.fixture
def events():
    return []


def _watchdog(tmp_path, result, events, waits=("exit",), runner=None):
    runner = runner or FakeRunner(events=events)
    controller = AppController(
        terminate_timeout=1,
        launch_timeout=1,
        process_factory=lambda pid: FakeProcess(waits, events, create_time=result.started_at),
        runner=runner,
    )
    return Watchdog(
        probe=FakeProbe(result),
        controller=controller,
        lock=PassLock(tmp_path / "run.lock"),
        threshold=THRESHOLD,
        clock=lambda: NOW,
    )


def test_119_minutes_is_noop(tmp_path, events):
    wd = _watchdog(tmp_path, running_for(119), events)
    assert wd.run_pass() is Action.NOOP
    assert events == []


def test_121_minutes_restarts_and_resets_uptime(tmp_path, events):
    wd = _watchdog(tmp_path, running_for(121), events)
    assert wd.run_pass() is Action.RESTART_NOW
    assert events == ["terminate", "wait", "launch"]
    assert wd.state.uptime(NOW) == timedelta(0)


def test_not_running_logs_skip_without_launch(tmp_path, events, caplog):
    caplog.set_level(logging.INFO)
    wd = _watchdog(tmp_path, NOT_RUNNING, events)
    assert wd.run_pass() is Action.NOOP
    assert events == []
    assert "Skip: SoundSource is not running." in caplog.text


def test_timeout_then_launch_failure_is_logged_not_raised(tmp_path, events, caplog):
    runner = FakeRunner(returncode=1, stderr="LSOpenURLsWithRole() failed", events=events)
    wd = _watchdog(tmp_path, running_for(121), events, waits=("timeout", "exit"), runner=runner)
    assert wd.run_pass() is Action.RESTART_NOW
    assert events.count("kill") == 1
    assert events[-1] == "launch"
    assert "launch-failed" in caplog.text
    assert wd.state.uptime(NOW) == timedelta(minutes=121)


def test_pass_skipped_while_lock_held(tmp_path, events, caplog):
    caplog.set_level(logging.INFO)
    wd = _watchdog(tmp_path, running_for(121), events)
    other = PassLock(tmp_path / "run.lock")
    assert other.acquire()
    try:
        assert wd.run_pass() is None
    finally:
        other.release()
    assert events == []
    assert "Another pass is running" in caplog.text
    assert wd.run_pass() is Action.RESTART_NOW


def test_unexpected_error_is_swallowed(tmp_path, events, caplog):
    class BrokenProbe(FakeProbe):
        def snapshot(self):
            raise ProbeError("sysctl failed")

    wd = _watchdog(tmp_path, NOT_RUNNING, events)
    wd.probe = BrokenProbe(NOT_RUNNING)
    assert wd.run_pass() is None
    assert "Pass aborted: sysctl failed" in caplog.text


def test_lock_released_after_pass(tmp_path, events):
    wd = _watchdog(tmp_path, NOT_RUNNING, events)
    wd.run_pass()
    lock = PassLock(tmp_path / "run.lock")
    assert lock.acquire()
    lock.release()


def test_watch_state_never_moves_backwards():
    state = WatchState()
    state.observe(running_for(10))
    first = state.started_at
    state.observe(running_for(30))  # older start time reported
    assert state.started_at == first
    state.mark_restarted(NOW)
    assert state.started_at == NOW
    assert state.uptime(NOW + 5) == timedelta(seconds=5)
    state.observe(NOT_RUNNING)
    assert state.uptime(NOW + 5) is None


def test_running_without_pid_is_noop(tmp_path, events, caplog):
    result = ProbeResult(running=True, uptime=timedelta(minutes=121))
    wd = _watchdog(tmp_path, result, events)
    assert wd.run_pass() is Action.NOOP
    assert events == []
    assert "pid is unknown" in caplog.text


def test_restart_logs_tracked_uptime(tmp_path, events, caplog):
    caplog.set_level(logging.INFO)
    wd = _watchdog(tmp_path, running_for(121), events)
    wd.run_pass()
    assert "SoundSource tracked uptime reset to 0m00s." in caplog.text
