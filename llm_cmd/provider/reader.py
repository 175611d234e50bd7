"""Byte stream over an iterator of text deltas."""

import io
from typing import Callable, Iterable, Optional


class DeltaReader(io.RawIOBase):
    """Expose streamed text deltas as a readable binary file.

    A delta may be longer than the caller's buffer; the unread tail is
    kept for the next read. Empty deltas (keep-alives, non-text events)
    are skipped, so a zero-length read always means end of stream.

    on_close releases the underlying connection. It runs once, either when
    the deltas are exhausted or when the reader is closed.
    """

    def __init__(self, deltas: Iterable[str], on_close: Optional[Callable[[], None]] = None):
        super().__init__()
        self._deltas = iter(deltas)
        self._tail = b""
        self._on_close = on_close

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed DeltaReader")
        if not self._tail:
            self._tail = self._next_delta()
            if not self._tail:
                self._release()
                return 0
        n = min(len(buffer), len(self._tail))
        buffer[:n] = self._tail[:n]
        self._tail = self._tail[n:]
        return n

    def _next_delta(self) -> bytes:
        for delta in self._deltas:
            if delta:
                return delta.encode("utf-8")
        return b""

    def _release(self) -> None:
        on_close, self._on_close = self._on_close, None
        if on_close is not None:
            on_close()

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._release()
        finally:
            super().close()
