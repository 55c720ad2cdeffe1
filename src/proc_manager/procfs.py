"""Parsers for per-process procfs records.

/proc/<pid>/stat is positional: pid, a parenthesized command name, a state
character, then numeric fields in a fixed kernel order. The name may itself
contain spaces and parentheses, so it is delimited by the first "(" and the
LAST ")" in the record. See proc(5) for the field numbering used here.

/proc/<pid>/status is "Key:<whitespace>value" lines and is parsed leniently.
"""

from dataclasses import dataclass
from pathlib import Path

# Kernel comm is 16 bytes, but names are stored up to this bound.
NAME_MAX_LEN = 255

UNKNOWN_STATE = "?"

# 1-based field numbers from proc(5)
FIELD_PPID = 4  # first field after the state character
FIELD_UTIME = 14
FIELD_STIME = 15
FIELD_STARTTIME = 22


@dataclass(frozen=True)
class StatRecord:
    """Fields of /proc/<pid>/stat needed for a snapshot."""

    name: str
    state: str
    cpu_ticks: int  # utime + stime
    start_ticks: int  # clock ticks after boot


@dataclass(frozen=True)
class StatusRecord:
    """Fields of /proc/<pid>/status needed for a snapshot."""

    vmsize_kb: int = 0
    vmrss_kb: int = 0
    uid: int | None = None


def is_pid_entry(name: str) -> bool:
    """Return True if a process-table entry name is a pid (all decimal digits)."""
    return name.isascii() and name.isdigit()


def parse_stat(text: str) -> StatRecord | None:
    """Parse a stat record.

    Returns None when the name delimiters are missing or out of order; the
    caller must then exclude the process. Numeric fields are scanned from
    FIELD_PPID onwards and scanning stops after FIELD_STARTTIME. A malformed
    token stops the scan, leaving unreached fields at zero.
    """
    lpar = text.find("(")
    rpar = text.rfind(")")
    if lpar == -1 or rpar == -1 or rpar < lpar:
        return None

    name = text[lpar + 1 : rpar][:NAME_MAX_LEN]

    state_pos = rpar + 2
    state = text[state_pos] if state_pos < len(text) else UNKNOWN_STATE
    if state.isspace():
        state = UNKNOWN_STATE

    utime = 0
    stime = 0
    starttime = 0

    field = FIELD_PPID
    for token in text[state_pos + 1 :].split():
        try:
            value = int(token)
        except ValueError:
            break
        if field == FIELD_UTIME:
            utime = value
        elif field == FIELD_STIME:
            stime = value
        elif field == FIELD_STARTTIME:
            starttime = value
            break
        field += 1

    return StatRecord(
        name=name,
        state=state,
        cpu_ticks=utime + stime,
        start_ticks=starttime,
    )


def _first_int(value: str) -> int | None:
    parts = value.split()
    if not parts:
        return None
    try:
        return int(parts[0])
    except ValueError:
        return None


def parse_status(text: str) -> StatusRecord:
    """Parse a status record. Never fails; missing keys keep their defaults."""
    vmsize_kb = 0
    vmrss_kb = 0
    uid: int | None = None

    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        if key == "VmSize":
            vmsize_kb = _first_int(value) or vmsize_kb
        elif key == "VmRSS":
            vmrss_kb = _first_int(value) or vmrss_kb
        elif key == "Uid":
            parsed = _first_int(value)
            if parsed is not None:
                uid = parsed

    return StatusRecord(vmsize_kb=vmsize_kb, vmrss_kb=vmrss_kb, uid=uid)


def _read_text(path: Path) -> str:
    # surrogateescape keeps undecodable name bytes intact for the serializer
    return path.read_text(encoding="utf-8", errors="surrogateescape")


def read_stat(pid_dir: Path) -> StatRecord | None:
    """Read and parse <pid_dir>/stat. None if unreadable or unparseable."""
    try:
        text = _read_text(pid_dir / "stat")
    except OSError:
        return None
    return parse_stat(text.rstrip("\n"))


def read_status(pid_dir: Path) -> StatusRecord:
    """Read and parse <pid_dir>/status. Defaults if unreadable."""
    try:
        text = _read_text(pid_dir / "status")
    except OSError:
        return StatusRecord()
    return parse_status(text)
