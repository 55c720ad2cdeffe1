"""System-wide baselines for normalizing per-process counters.

Every reader is best-effort: a missing or malformed source yields the
documented default instead of raising. Zero memory and zero uptime are
handled downstream (percentages become 0.0).
"""

import math
import os
from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger()

DEFAULT_TICKS_PER_SECOND = 100
DEFAULT_CPU_COUNT = 1


@dataclass(frozen=True)
class SystemBaseline:
    """Scalars read once per collection pass."""

    mem_total_kb: int = 0
    uptime_seconds: float = 0.0
    ticks_per_second: int = DEFAULT_TICKS_PER_SECOND
    cpu_count: int = DEFAULT_CPU_COUNT


def read_mem_total_kb(proc_root: Path) -> int:
    """Return MemTotal from <proc_root>/meminfo in kB, or 0."""
    try:
        with open(proc_root / "meminfo", encoding="utf-8", errors="replace") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    parts = line[len("MemTotal:") :].split()
                    return max(0, int(parts[0])) if parts else 0
    except (OSError, ValueError) as e:
        log.debug("meminfo_unreadable", error=str(e))
    return 0


def read_uptime_seconds(proc_root: Path) -> float:
    """Return seconds since boot from <proc_root>/uptime, or 0.0."""
    try:
        text = (proc_root / "uptime").read_text(encoding="utf-8", errors="replace")
        uptime = float(text.split()[0])
    except (OSError, ValueError, IndexError) as e:
        log.debug("uptime_unreadable", error=str(e))
        return 0.0
    if not math.isfinite(uptime) or uptime < 0:
        return 0.0
    return uptime


def get_ticks_per_second(default: int = DEFAULT_TICKS_PER_SECOND) -> int:
    """Return the kernel clock tick rate (SC_CLK_TCK)."""
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError):
        return default
    return ticks if ticks > 0 else default


def get_cpu_count(default: int = DEFAULT_CPU_COUNT) -> int:
    """Return the number of logical CPUs."""
    count = psutil.cpu_count(logical=True)
    return count if count and count > 0 else default


def read_baseline(
    proc_root: Path,
    *,
    default_ticks_per_second: int = DEFAULT_TICKS_PER_SECOND,
    default_cpu_count: int = DEFAULT_CPU_COUNT,
) -> SystemBaseline:
    """Read all baselines fresh."""
    return SystemBaseline(
        mem_total_kb=read_mem_total_kb(proc_root),
        uptime_seconds=read_uptime_seconds(proc_root),
        ticks_per_second=get_ticks_per_second(default_ticks_per_second),
        cpu_count=get_cpu_count(default_cpu_count),
    )
