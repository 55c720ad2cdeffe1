"""Shared test fixtures for proc-manager."""

from pathlib import Path
from unittest.mock import PropertyMock, patch

import pytest
import pytest_asyncio

from proc_manager.baseline import SystemBaseline
from proc_manager.collector import ProcessRecord, ProcfsSource, Snapshot, SnapshotCollector
from proc_manager.config import Config
from proc_manager.server import ApiServer


def make_stat_line(
    pid: int,
    name: str = "bash",
    state: str = "S",
    utime: int = 0,
    stime: int = 0,
    starttime: int = 0,
) -> str:
    """Build a /proc/<pid>/stat record with realistic field positions.

    Fields 4..22 are filled with zeros except utime (14), stime (15) and
    starttime (22); a few trailing fields follow, as on a real kernel.
    """
    fields = [0] * 19  # fields 4..22
    fields[14 - 4] = utime
    fields[15 - 4] = stime
    fields[22 - 4] = starttime
    trailing = "123456 789 18446744073709551615"
    return f"{pid} ({name}) {state} {' '.join(map(str, fields))} {trailing}\n"


def make_status_text(vmsize_kb: int | None = 1000, vmrss_kb: int | None = 500, uid: int | None = 0):
    lines = ["Name:\tbash", "State:\tS (sleeping)"]
    if uid is not None:
        lines.append(f"Uid:\t{uid}\t{uid}\t{uid}\t{uid}")
    if vmsize_kb is not None:
        lines.append(f"VmSize:\t{vmsize_kb:>8} kB")
    if vmrss_kb is not None:
        lines.append(f"VmRSS:\t{vmrss_kb:>8} kB")
    return "\n".join(lines) + "\n"


class FakeProc:
    """A process-table root on disk, shaped like /proc."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def set_meminfo(self, total_kb: int) -> None:
        (self.root / "meminfo").write_text(
            f"MemTotal:       {total_kb} kB\nMemFree:         1024 kB\n"
        )

    def set_uptime(self, seconds: float) -> None:
        (self.root / "uptime").write_text(f"{seconds:.2f} 12345.67\n")

    def add_process(
        self,
        pid: int,
        name: str = "bash",
        *,
        state: str = "S",
        utime: int = 0,
        stime: int = 0,
        starttime: int = 0,
        vmsize_kb: int | None = 1000,
        vmrss_kb: int | None = 500,
        uid: int | None = 0,
        stat: str | bytes | None = None,
        status: str | None = None,
    ) -> Path:
        """Create <root>/<pid>/{stat,status}. Raw stat overrides the generated one."""
        pid_dir = self.root / str(pid)
        pid_dir.mkdir()
        if stat is None:
            stat = make_stat_line(pid, name, state, utime, stime, starttime)
        if isinstance(stat, bytes):
            (pid_dir / "stat").write_bytes(stat)
        else:
            (pid_dir / "stat").write_text(stat)
        if status is None:
            status = make_status_text(vmsize_kb, vmrss_kb, uid)
        (pid_dir / "status").write_text(status)
        return pid_dir


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    """Empty fake process-table root with 8 GiB of memory and 1000s uptime."""
    proc = FakeProc(tmp_path / "proc")
    proc.set_meminfo(8 * 1024 * 1024)
    proc.set_uptime(1000.0)
    return proc


@pytest.fixture
def baseline() -> SystemBaseline:
    """Fixed baseline: 1 GiB, 1000s uptime, 100 ticks/s, 1 CPU."""
    return SystemBaseline(
        mem_total_kb=1024 * 1024,
        uptime_seconds=1000.0,
        ticks_per_second=100,
        cpu_count=1,
    )


def make_record(
    pid: int = 1,
    name: str = "init",
    owner: str = "root",
    state: str = "S",
    vmsize_kb: int = 1000,
    vmrss_kb: int = 500,
    cpu_percent: float = 0.0,
    mem_percent: float = 0.0,
) -> ProcessRecord:
    """Create a ProcessRecord for testing."""
    return ProcessRecord(
        pid=pid,
        name=name,
        owner=owner,
        state=state,
        vmsize_kb=vmsize_kb,
        vmrss_kb=vmrss_kb,
        cpu_percent=cpu_percent,
        mem_percent=mem_percent,
    )


def make_snapshot(*records: ProcessRecord, user: str = "alice", source: str = "procfs"):
    return Snapshot(requesting_user=user, processes=tuple(records), source=source)


@pytest.fixture
def config(tmp_path: Path):
    """Config bound to an ephemeral localhost port, with paths under tmp_path."""
    with (
        patch.object(Config, "runtime_dir", new_callable=PropertyMock, return_value=tmp_path / "run"),
        patch.object(Config, "state_dir", new_callable=PropertyMock, return_value=tmp_path / "state"),
    ):
        cfg = Config()
        cfg.server.host = "127.0.0.1"
        cfg.server.port = 0
        yield cfg


@pytest.fixture
def collector(fake_proc: FakeProc, baseline: SystemBaseline):
    """Collector over four fake processes, requested by "alice"."""
    for pid in (42, 7, 1000, 3):
        fake_proc.add_process(pid, f"proc{pid}")
    with patch("proc_manager.collector.resolve_current_user", return_value="alice"):
        yield SnapshotCollector([ProcfsSource(fake_proc.root, baseline=baseline)])


@pytest_asyncio.fixture
async def server(config: Config, collector: SnapshotCollector):
    """Running ApiServer; its port is server.port."""
    srv = ApiServer(config, collector)
    await srv.start()
    try:
        yield srv
    finally:
        await srv.stop()
