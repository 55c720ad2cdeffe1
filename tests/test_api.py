"""Tests for the core snapshot and terminate operations."""

import errno
import json
import signal
from unittest.mock import patch

import pytest

from proc_manager.api import (
    InvalidPid,
    TerminateFailed,
    get_snapshot,
    get_snapshot_async,
    terminate,
)
from proc_manager.collector import ProcfsSource, SnapshotCollector


class TestTerminate:
    """Tests for terminate()."""

    @pytest.mark.parametrize("pid", [-5, 0, -1])
    def test_non_positive_pid_rejected_before_kill(self, pid):
        with patch("proc_manager.api.os.kill") as kill:
            with pytest.raises(InvalidPid):
                terminate(pid)
        kill.assert_not_called()

    @pytest.mark.parametrize("pid", [True, "42", 4.0, None])
    def test_non_integer_pid_rejected(self, pid):
        with patch("proc_manager.api.os.kill") as kill:
            with pytest.raises(InvalidPid):
                terminate(pid)
        kill.assert_not_called()

    def test_sends_sigterm(self):
        with patch("proc_manager.api.os.kill") as kill:
            terminate(1234)
        kill.assert_called_once_with(1234, signal.SIGTERM)

    def test_nonexistent_pid_reports_errno(self):
        """A real kill() of an unused pid surfaces the OS error."""
        with pytest.raises(TerminateFailed) as exc:
            terminate(999999999)
        assert exc.value.errno != 0
        assert exc.value.message

    def test_permission_denied(self):
        with patch(
            "proc_manager.api.os.kill",
            side_effect=PermissionError(errno.EPERM, "Operation not permitted"),
        ):
            with pytest.raises(TerminateFailed) as exc:
                terminate(1)
        assert exc.value.errno == errno.EPERM
        assert exc.value.message == "Operation not permitted"
        assert exc.value.pid == 1

    def test_pid_beyond_pid_t(self):
        with pytest.raises(TerminateFailed) as exc:
            terminate(2**40)
        assert exc.value.errno == errno.ESRCH


def test_get_snapshot(fake_proc, baseline):
    for pid in (20, 10):
        fake_proc.add_process(pid)
    collector = SnapshotCollector([ProcfsSource(fake_proc.root, baseline=baseline)])

    with patch("proc_manager.collector.resolve_current_user", return_value="alice"):
        data = json.loads(get_snapshot(collector))

    assert data["current_user"] == "alice"
    assert data["count"] == 2
    assert [p["pid"] for p in data["processes"]] == [10, 20]


def test_get_snapshot_reports_collected_snapshot(fake_proc, baseline):
    fake_proc.add_process(10)
    collector = SnapshotCollector([ProcfsSource(fake_proc.root, baseline=baseline)])
    seen = []

    with patch("proc_manager.collector.resolve_current_user", return_value="alice"):
        get_snapshot(collector, on_collect=seen.append)

    (snapshot,) = seen
    assert snapshot.source == "procfs"
    assert snapshot.count == 1


@pytest.mark.asyncio
async def test_get_snapshot_async(collector):
    seen = []
    data = json.loads(await get_snapshot_async(collector, on_collect=seen.append))
    assert data["count"] == 4
    assert [s.count for s in seen] == [4]
