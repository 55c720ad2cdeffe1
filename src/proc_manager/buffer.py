"""Growable byte buffer for building response payloads.

Capacity doubles whenever an append does not fit, so appends are amortized
O(1) and each growth event is a single allocation. A failed allocation leaves
the buffer exactly as it was.
"""

import structlog

log = structlog.get_logger()

DEFAULT_CAPACITY = 8192


class GrowableBuffer:
    """Append-only byte buffer with explicit capacity tracking.

    Backed by a pre-sized bytearray; only the first ``len(buffer)`` bytes are
    content. Not thread-safe.
    """

    def __init__(self, initial_capacity: int = DEFAULT_CAPACITY) -> None:
        if initial_capacity < 1:
            raise ValueError(f"initial_capacity must be >= 1, got {initial_capacity}")
        self._data = bytearray(initial_capacity)
        self._length = 0

    def __len__(self) -> int:
        """Return number of content bytes."""
        return self._length

    @property
    def capacity(self) -> int:
        """Return bytes currently allocated."""
        return len(self._data)

    def append(self, data: bytes | str) -> bool:
        """Append data, growing capacity if needed.

        Strings are encoded as UTF-8 with surrogateescape, so text decoded
        from raw procfs bytes round-trips byte for byte.

        Returns:
            True if appended, False if growth failed (content unchanged).
        """
        if isinstance(data, str):
            data = data.encode("utf-8", "surrogateescape")
        needed = self._length + len(data)
        if needed > len(self._data) and not self._grow(needed):
            return False
        self._data[self._length : needed] = data
        self._length = needed
        return True

    def getvalue(self) -> bytes:
        """Return a copy of all appended content."""
        return bytes(self._data[: self._length])

    def text(self) -> str:
        """Return content decoded the same way str appends were encoded."""
        return self.getvalue().decode("utf-8", "surrogateescape")

    def clear(self) -> None:
        """Drop content, keeping the allocated capacity."""
        self._length = 0

    def _grow(self, needed: int) -> bool:
        new_capacity = max(len(self._data) * 2, needed)
        try:
            self._data.extend(bytes(new_capacity - len(self._data)))
        except MemoryError:
            log.warning("buffer_grow_failed", capacity=len(self._data), needed=needed)
            return False
        return True
