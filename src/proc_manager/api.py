"""Core operations exposed to the transport layer."""

import errno
import os
import signal
from collections.abc import Callable

import structlog

from proc_manager.collector import Snapshot, SnapshotCollector
from proc_manager.serializer import serialize_snapshot

log = structlog.get_logger()


class InvalidPid(ValueError):
    """Rejected before any signal was sent."""

    def __init__(self, pid: object) -> None:
        super().__init__(f"Invalid PID: {pid!r}")
        self.pid = pid


class TerminateFailed(Exception):
    """The OS refused or could not deliver the signal."""

    def __init__(self, pid: int, code: int, message: str) -> None:
        super().__init__(f"kill({pid}) failed: [Errno {code}] {message}")
        self.pid = pid
        self.errno = code
        self.message = message


def _render(snapshot: Snapshot, on_collect: Callable[[Snapshot], None] | None) -> bytes:
    log.info("snapshot_collected", count=snapshot.count, source=snapshot.source)
    if on_collect is not None:
        on_collect(snapshot)
    return serialize_snapshot(snapshot)


def get_snapshot(
    collector: SnapshotCollector,
    on_collect: Callable[[Snapshot], None] | None = None,
) -> bytes:
    """Collect and serialize a snapshot of every process.

    Args:
        collector: Sources to try, in order
        on_collect: Called with the Snapshot before it is serialized

    Raises:
        SnapshotError: If every collection source failed.
    """
    return _render(collector.collect(), on_collect)


async def get_snapshot_async(
    collector: SnapshotCollector,
    on_collect: Callable[[Snapshot], None] | None = None,
) -> bytes:
    """get_snapshot() with collection off the event loop."""
    return _render(await collector.collect_async(), on_collect)


def terminate(pid: int, sig: signal.Signals = signal.SIGTERM) -> None:
    """Send a termination signal to pid.

    Raises:
        InvalidPid: If pid is not a positive integer. No OS call is made.
        TerminateFailed: With the OS errno and description if kill() fails.
    """
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise InvalidPid(pid)

    try:
        os.kill(pid, sig)
    except OverflowError as e:
        # pid does not fit in pid_t, so no such process can exist
        raise TerminateFailed(pid, errno.ESRCH, os.strerror(errno.ESRCH)) from e
    except OSError as e:
        code = e.errno or 0
        message = e.strerror or os.strerror(code)
        log.warning("terminate_failed", pid=pid, errno=code, message=message)
        raise TerminateFailed(pid, code, message) from e

    log.info("process_signalled", pid=pid, signal=sig.name)
