"""Write-side fan-out, like tee(1) for file objects.

MultiWriter duplicates every write to a list of downstream sinks in
order and closes them together, leaving standard output open.
FlushingWriter is the terminal sink: it flushes after every write so
streamed text shows up as it arrives.
"""
import logging
import sys
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# How many .stream wrappers is_stdout() looks through
_MAX_WRAP_DEPTH = 4


class ShortWriteError(OSError):
    """A downstream accepted fewer bytes than it was given."""

    def __init__(self, written: int, expected: int):
        self.written = written
        self.expected = expected
        super().__init__(f"short write: {written} of {expected} bytes")


def is_stdout(stream: Any) -> bool:
    """True for the process stdout, its binary buffer, or a wrapper of either."""
    candidates = [sys.stdout, sys.__stdout__]
    candidates += [getattr(s, "buffer", None) for s in (sys.stdout, sys.__stdout__)]
    for _ in range(_MAX_WRAP_DEPTH):
        if stream is None:
            break
        if any(stream is c for c in candidates if c is not None):
            return True
        stream = getattr(stream, "stream", None)
    return False


class FlushingWriter:
    """Write to a stream and flush immediately.

    close() flushes, and closes the stream only when close_stream is set
    and it is not stdout.
    """

    def __init__(self, stream, close_stream: bool = True):
        self.stream = stream
        self.close_stream = close_stream

    def write(self, data: bytes) -> int:
        n = self.stream.write(data)
        self.stream.flush()
        return len(data) if n is None else n

    def flush(self) -> None:
        self.stream.flush()

    def close(self) -> None:
        self.stream.flush()
        if self.close_stream and not is_stdout(self.stream):
            self.stream.close()


class MultiWriter:
    """Duplicate writes to all downstream writers, one at a time.

    If a downstream raises, or reports a short write, the overall write
    stops there and the error propagates; the remaining downstreams do
    not get that write.

    Nested MultiWriters are flattened at construction.
    """

    def __init__(self, *writers):
        self.writers: List[Any] = []
        for w in writers:
            if isinstance(w, MultiWriter):
                self.writers.extend(w.writers)
            else:
                self.writers.append(w)

    def write(self, data: bytes) -> int:
        expected = len(data)
        for w in self.writers:
            n = w.write(data)
            if n is not None and n != expected:
                raise ShortWriteError(n, expected)
        return expected

    def flush(self) -> None:
        for w in self.writers:
            flush = getattr(w, "flush", None)
            if flush is not None:
                flush()

    def close(self) -> None:
        """Close every closable downstream except stdout.

        All downstreams are attempted; the first error is re-raised.
        """
        first_error: Optional[BaseException] = None
        for w in self.writers:
            if is_stdout(w):
                continue
            close = getattr(w, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.debug(f"Closing {w!r} failed: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
