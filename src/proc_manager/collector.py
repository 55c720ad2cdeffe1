"""Process snapshot collection.

Two interchangeable sources produce the same ProcessRecord shape:

- ProcfsSource reads /proc directly and derives CPU% and MEM% itself.
- PsSource parses the output of an external `ps` listing.

SnapshotCollector tries its sources in order and falls back only when a
source fails as a whole (SourceUnavailable). Per-process problems never fail
a source.
"""

import asyncio
import math
import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from proc_manager.baseline import (
    DEFAULT_CPU_COUNT,
    DEFAULT_TICKS_PER_SECOND,
    SystemBaseline,
    read_baseline,
)
from proc_manager.config import Config
from proc_manager.identity import UNKNOWN_USER, resolve_current_user, resolve_owner_name
from proc_manager.procfs import NAME_MAX_LEN, is_pid_entry, read_stat, read_status

log = structlog.get_logger()


class SourceUnavailable(Exception):
    """A snapshot source cannot produce any data (root missing, tool missing)."""


class SnapshotError(Exception):
    """Every snapshot source failed."""


@dataclass(frozen=True)
class ProcessRecord:
    """One process at snapshot time."""

    pid: int
    name: str
    owner: str
    state: str  # 'R', 'S', 'D', 'Z', 'T', 'I', ...
    vmsize_kb: int
    vmrss_kb: int
    cpu_percent: float  # Lifetime average, normalized by CPU count
    mem_percent: float


@dataclass(frozen=True)
class Snapshot:
    """All processes at one point in time, ordered by pid."""

    requesting_user: str
    processes: tuple[ProcessRecord, ...]
    source: str = ""

    @property
    def count(self) -> int:
        return len(self.processes)


def _finite(value: float) -> float:
    return value if math.isfinite(value) and value >= 0 else 0.0


def compute_cpu_percent(cpu_ticks: int, start_ticks: int, baseline: SystemBaseline) -> float:
    """Average CPU% over the process lifetime, normalized by CPU count.

    Returns 0.0 when the process age is not positive (start time at or after
    the current uptime, e.g. clock skew or an unreadable uptime).
    """
    tps = baseline.ticks_per_second
    elapsed = baseline.uptime_seconds - (start_ticks / tps)
    if elapsed <= 0:
        return 0.0
    cpu_seconds = cpu_ticks / tps
    return _finite(cpu_seconds / elapsed * 100.0 / baseline.cpu_count)


def compute_mem_percent(vmrss_kb: int, baseline: SystemBaseline) -> float:
    """Resident size as a percentage of installed memory."""
    if baseline.mem_total_kb <= 0:
        return 0.0
    return _finite(vmrss_kb * 100.0 / baseline.mem_total_kb)


class SnapshotSource(ABC):
    """A way of listing every process."""

    name: str = "source"

    @abstractmethod
    def collect(self) -> list[ProcessRecord]:
        """Return all processes, in any order.

        Raises:
            SourceUnavailable: If the source cannot be used at all.
        """


class ProcfsSource(SnapshotSource):
    """Reads /proc/<pid>/stat and /proc/<pid>/status for every process."""

    name = "procfs"

    def __init__(
        self,
        proc_root: Path,
        *,
        default_ticks_per_second: int = DEFAULT_TICKS_PER_SECOND,
        default_cpu_count: int = DEFAULT_CPU_COUNT,
        baseline: SystemBaseline | None = None,
    ) -> None:
        """
        Args:
            proc_root: Process-table root, normally /proc
            default_ticks_per_second: Used if SC_CLK_TCK cannot be read
            default_cpu_count: Used if the CPU count cannot be read
            baseline: Fixed baseline instead of reading one per pass (tests)
        """
        self.proc_root = proc_root
        self.default_ticks_per_second = default_ticks_per_second
        self.default_cpu_count = default_cpu_count
        self._baseline = baseline

    def _read_baseline(self) -> SystemBaseline:
        if self._baseline is not None:
            return self._baseline
        return read_baseline(
            self.proc_root,
            default_ticks_per_second=self.default_ticks_per_second,
            default_cpu_count=self.default_cpu_count,
        )

    def collect(self) -> list[ProcessRecord]:
        try:
            entries = os.scandir(self.proc_root)
        except OSError as e:
            raise SourceUnavailable(f"cannot open {self.proc_root}: {e}") from e

        baseline = self._read_baseline()
        owners: dict[int, str] = {}
        records: list[ProcessRecord] = []
        skipped = 0

        with entries:
            for entry in entries:
                if not is_pid_entry(entry.name):
                    continue
                record = self._read_process(Path(entry.path), int(entry.name), baseline, owners)
                if record is None:
                    skipped += 1
                    continue
                records.append(record)

        log.debug(
            "procfs_collected",
            count=len(records),
            skipped=skipped,
            mem_total_kb=baseline.mem_total_kb,
            uptime=baseline.uptime_seconds,
        )
        return records

    def _read_process(
        self,
        pid_dir: Path,
        pid: int,
        baseline: SystemBaseline,
        owners: dict[int, str],
    ) -> ProcessRecord | None:
        if pid <= 0:
            return None
        stat = read_stat(pid_dir)
        if stat is None:
            return None  # Exited since enumeration, or malformed

        status = read_status(pid_dir)
        if status.uid is None:
            owner = UNKNOWN_USER
        else:
            owner = resolve_owner_name(status.uid, owners)

        return ProcessRecord(
            pid=pid,
            name=stat.name,
            owner=owner,
            state=stat.state,
            vmsize_kb=status.vmsize_kb,
            vmrss_kb=status.vmrss_kb,
            cpu_percent=compute_cpu_percent(stat.cpu_ticks, stat.start_ticks, baseline),
            mem_percent=compute_mem_percent(status.vmrss_kb, baseline),
        )


def parse_ps_line(line: str) -> ProcessRecord | None:
    """Parse one `user pid comm state rss vsz pcpu pmem` line.

    The first four fields must be present and pid must be positive. Later
    fields are read in order until one is malformed; the rest stay zero.
    A command name with spaces shifts the columns and is not recovered.
    """
    parts = line.split()
    if len(parts) < 4:
        return None
    try:
        pid = int(parts[1])
    except ValueError:
        return None
    if pid <= 0:
        return None

    numbers: list[float] = []
    for token, kind in zip(parts[4:8], (int, int, float, float)):
        try:
            numbers.append(kind(token))
        except ValueError:
            break
    rss, vsz, pcpu, pmem = numbers + [0] * (4 - len(numbers))

    return ProcessRecord(
        pid=pid,
        name=parts[2][:NAME_MAX_LEN],
        owner=parts[0],
        state=parts[3][0],
        vmsize_kb=max(0, int(vsz)),
        vmrss_kb=max(0, int(rss)),
        cpu_percent=_finite(float(pcpu)),
        mem_percent=_finite(float(pmem)),
    )


class PsSource(SnapshotSource):
    """Parses an external process listing. Lower fidelity than procfs."""

    name = "ps"

    def __init__(self, command: Sequence[str], timeout: float | None = None) -> None:
        self.command = list(command)
        self.timeout = timeout

    def collect(self) -> list[ProcessRecord]:
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                errors="surrogateescape",
                timeout=self.timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SourceUnavailable(f"cannot run {self.command[0]}: {e}") from e

        records: list[ProcessRecord] = []
        for line in result.stdout.splitlines():
            record = parse_ps_line(line)
            if record is not None:
                records.append(record)
        return records


class SnapshotCollector:
    """Builds Snapshots from the first source that works."""

    def __init__(self, sources: Sequence[SnapshotSource]) -> None:
        if not sources:
            raise ValueError("SnapshotCollector needs at least one source")
        self.sources = list(sources)

    @classmethod
    def from_config(cls, config: Config) -> "SnapshotCollector":
        """Standard source order: procfs, then ps."""
        c = config.collector
        return cls(
            [
                ProcfsSource(
                    config.proc_root,
                    default_ticks_per_second=c.default_ticks_per_second,
                    default_cpu_count=c.default_cpu_count,
                ),
                PsSource(c.ps_command, timeout=c.ps_timeout),
            ]
        )

    def collect(self) -> Snapshot:
        """Collect a fresh snapshot.

        Raises:
            SnapshotError: If every source is unavailable.
        """
        failures: list[str] = []
        for source in self.sources:
            try:
                records = source.collect()
            except SourceUnavailable as e:
                log.warning("snapshot_source_unavailable", source=source.name, error=str(e))
                failures.append(f"{source.name}: {e}")
                continue

            records.sort(key=lambda r: r.pid)
            return Snapshot(
                requesting_user=resolve_current_user(),
                processes=tuple(records),
                source=source.name,
            )

        raise SnapshotError("; ".join(failures))

    async def collect_async(self) -> Snapshot:
        """Run collection in executor (file and subprocess I/O are blocking)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.collect)
