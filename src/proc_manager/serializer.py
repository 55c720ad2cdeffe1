"""Snapshot payload rendering.

The payload is JSON-shaped text with a fixed layout:

    {"current_user":"alice","count":2,"processes":[{"pid":1,...},...]}

String escaping is deliberately minimal: quote and backslash get a leading
backslash, newline becomes the two characters \\n, every other byte passes
through unchanged. Percentages always carry two decimals.
"""

import json

from proc_manager.buffer import GrowableBuffer
from proc_manager.collector import ProcessRecord, Snapshot

_ESCAPES = str.maketrans({'"': '\\"', "\\": "\\\\", "\n": "\\n"})

INITIAL_CAPACITY = 8192


def escape_string(value: str) -> str:
    """Escape a string value for the payload."""
    return value.translate(_ESCAPES)


def _append_process(buf: GrowableBuffer, p: ProcessRecord) -> None:
    buf.append(f'{{"pid":{p.pid},"name":"')
    buf.append(escape_string(p.name))
    buf.append('","user":"')
    buf.append(escape_string(p.owner))
    buf.append(
        f'","state":"{escape_string(p.state)}","vmsize_kb":{p.vmsize_kb},'
        f'"vmrss_kb":{p.vmrss_kb},"cpu_percent":{p.cpu_percent:.2f},'
        f'"mem_percent":{p.mem_percent:.2f}}}'
    )


def serialize_snapshot(snapshot: Snapshot) -> bytes:
    """Render a snapshot, processes in ascending pid order."""
    processes = sorted(snapshot.processes, key=lambda p: p.pid)

    buf = GrowableBuffer(INITIAL_CAPACITY)
    buf.append('{"current_user":"')
    buf.append(escape_string(snapshot.requesting_user))
    buf.append(f'","count":{len(processes)},"processes":[')
    for i, proc in enumerate(processes):
        if i > 0:
            buf.append(",")
        _append_process(buf, proc)
    buf.append("]}")
    return buf.getvalue()


def error_payload(error: str, /, **extra: object) -> bytes:
    """Render a {"error": ...} body."""
    return json.dumps({"error": error, **extra}).encode()


def terminated_payload(pid: int) -> bytes:
    """Render the body for a successful termination."""
    return json.dumps({"status": "terminated", "pid": pid}).encode()
