"""Bounded, append-only output capture with per-stream read cursors."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from procagent.config import DEFAULT_OUTPUT_CAPACITY
from procagent.schemas import StreamName


@dataclass
class ReadResult:
    """Delta returned by a buffer read."""

    delta: str
    cursor: int
    gap: int = 0


class _StreamState:
    """Retained text for one stream.

    Offsets are absolute: ``start`` is the offset of the first retained
    character and ``start + len(data)`` is the total number ever appended.
    """

    __slots__ = ("data", "start", "cursor")

    def __init__(self) -> None:
        self.data = ""
        self.start = 0
        self.cursor = 0

    @property
    def length(self) -> int:
        return self.start + len(self.data)


class OutputBuffer:
    """Append-only capture of stdout/stderr with a hard capacity.

    Once a stream holds more than ``capacity`` characters the oldest text is
    dropped and ``truncated`` is set for good. Appends and reads are serialized
    by one lock, so a reader only ever sees whole appended chunks.
    """

    def __init__(self, capacity: int = DEFAULT_OUTPUT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._streams = {stream: _StreamState() for stream in StreamName}
        self._truncated = False

    @property
    def truncated(self) -> bool:
        with self._lock:
            return self._truncated

    def append(self, stream: StreamName, chunk: str) -> None:
        """Append a chunk to a stream, dropping the oldest text on overflow."""
        if not chunk:
            return
        with self._lock:
            state = self._streams[StreamName(stream)]
            state.data += chunk
            overflow = len(state.data) - self.capacity
            if overflow > 0:
                state.data = state.data[overflow:]
                state.start += overflow
                self._truncated = True

    def read_since(self, stream: StreamName, cursor: int) -> ReadResult:
        """Return everything appended after ``cursor`` without moving any cursor.

        A cursor that points into dropped text is clamped to the oldest
        retained offset and the number of skipped characters is reported as
        ``gap``.
        """
        if cursor < 0:
            raise ValueError("cursor must be >= 0")
        with self._lock:
            return self._read_locked(self._streams[StreamName(stream)], cursor)

    def read_new(self, stream: StreamName) -> ReadResult:
        """Return text appended since the last ``read_new`` and advance the cursor."""
        with self._lock:
            state = self._streams[StreamName(stream)]
            result = self._read_locked(state, state.cursor)
            state.cursor = result.cursor
            return result

    def cursor(self, stream: StreamName) -> int:
        with self._lock:
            return self._streams[StreamName(stream)].cursor

    def length(self, stream: StreamName) -> int:
        """Total characters ever appended to the stream (retained or not)."""
        with self._lock:
            return self._streams[StreamName(stream)].length

    def getvalue(self, stream: StreamName) -> str:
        """Retained text of a stream."""
        with self._lock:
            return self._streams[StreamName(stream)].data

    @staticmethod
    def _read_locked(state: _StreamState, cursor: int) -> ReadResult:
        end = state.length
        cursor = min(cursor, end)
        gap = 0
        if cursor < state.start:
            gap = state.start - cursor
            cursor = state.start
        delta = state.data[cursor - state.start:]
        return ReadResult(delta=delta, cursor=end, gap=gap)
