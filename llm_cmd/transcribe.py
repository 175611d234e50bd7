"""
Batch transcription with a fixed pool of worker threads.

A producer thread queues (index, path) pairs, K workers transcribe them
and a collector puts each result back at its index, so the output order
matches the input order however long each file takes.

Rate-limited requests are retried after the delay the service asks for.
Any other failure stops the batch.
"""

import logging
import queue
import re
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import click

from .config import Config, get_settings, read_config
from .console import ConsoleHelper, make_console, setup_logging
from .errors import CmdError, RateLimitError, TranscriptionError
from .paths import DEFAULT_CACHE_PATH
from .provider import AudioFile, AudioSegment, CacheProvider, Provider, new_provider

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 2
DEFAULT_PATTERN = "*.mp3"

# Wait used when a rate limit error does not say how long to wait
DEFAULT_RETRY_DELAY = 60.0

RETRY_AFTER_PATTERN = re.compile(r"Please try again in (\d+)m(\d+\.\d+)s\.")

_STOP = object()


def parse_retry_after(message: str) -> Optional[float]:
    """Seconds to wait, from a rate limit message.

    Examples:
        >>> parse_retry_after("Rate limit reached. Please try again in 6m6.125s.")
        366.125
        >>> parse_retry_after("internal error") is None
        True
    """
    match = RETRY_AFTER_PATTERN.search(message)
    if match is None:
        return None
    return int(match.group(1)) * 60 + float(match.group(2))


def retry_delay(error: BaseException) -> Optional[float]:
    """Delay before retrying after an error, or None if it is not retryable."""
    delay = parse_retry_after(str(error))
    if delay is not None:
        return delay
    if isinstance(error, RateLimitError):
        return DEFAULT_RETRY_DELAY
    return None


class TranscriptionPool:
    """Transcribe many files concurrently, keeping their order.

    Args:
        provider: Provider used for every file (share a CacheProvider to cache)
        config: Generation config passed to transcribe
        workers: Number of worker threads
        cancel: Event that stops the batch when set
    """

    def __init__(
        self,
        provider: Provider,
        config: Config,
        workers: int = DEFAULT_WORKERS,
        cancel: Optional[threading.Event] = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.provider = provider
        self.config = config
        self.workers = workers
        self.cancel = cancel or threading.Event()

    def run(self, paths: Sequence[Union[str, Path]]) -> List[List[AudioSegment]]:
        """Transcribe all paths.

        Returns:
            Segments per file, in the order of paths

        Raises:
            TranscriptionError: A file failed with a non rate limit error
            CmdError: The batch was cancelled
        """
        paths = [str(p) for p in paths]
        work: queue.Queue = queue.Queue()
        results: queue.Queue = queue.Queue()

        producer = threading.Thread(target=self._produce, args=(paths, work), name="transcribe-producer", daemon=True)
        threads = [producer]
        threads += [
            threading.Thread(target=self._work, args=(work, results), name=f"transcribe-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()

        output: List[Optional[List[AudioSegment]]] = [None] * len(paths)
        failure: Optional[Tuple[str, BaseException]] = None
        for _ in paths:
            index, segments, error = results.get()
            if error is not None and failure is None:
                logger.error(f"Transcription of {paths[index]} failed: {error}")
                failure = (paths[index], error)
                self.cancel.set()
            output[index] = segments

        for t in threads:
            t.join()

        if failure is not None:
            path, error = failure
            raise TranscriptionError(path, error) from error
        if any(segments is None for segments in output):
            raise CmdError("transcription cancelled")
        return output

    def _produce(self, paths: List[str], work: queue.Queue) -> None:
        for item in enumerate(paths):
            work.put(item)
        for _ in range(self.workers):
            work.put(_STOP)

    def _work(self, work: queue.Queue, results: queue.Queue) -> None:
        while True:
            item = work.get()
            if item is _STOP:
                return
            index, path = item
            if self.cancel.is_set():
                results.put((index, None, None))
                continue
            try:
                segments = self._transcribe(path)
            except Exception as e:
                results.put((index, None, e))
            else:
                results.put((index, segments, None))

    def _transcribe(self, path: str) -> Optional[List[AudioSegment]]:
        """Transcribe one file, retrying on rate limits. None if cancelled."""
        logger.info(f"Transcribing {path}")
        while True:
            with open(path, "rb") as f:
                try:
                    return self.provider.transcribe(self.config, AudioFile(path=path, reader=f))
                except Exception as e:
                    delay = retry_delay(e)
                    if delay is None:
                        raise
            logger.info(f"Rate limited on {path}, retrying in {delay:.2f}s")
            if self.cancel.wait(delay):
                return None


def format_segments(segments: Sequence[AudioSegment]) -> str:
    """Segments as '<start> - <end>' / '<text>' line pairs."""
    return "\n".join(f"{seg.start} - {seg.end}\n{seg.text}" for seg in segments)


def interrupt_handler(cancel: threading.Event, provider: CacheProvider):
    """SIGINT handler: stop the batch, flush the cache and exit 1."""

    def _interrupt(signum, frame):
        logger.info("Interrupted, writing transcription cache")
        cancel.set()
        provider.close()
        sys.exit(1)

    return _interrupt


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--workers", "-w", type=click.IntRange(min=1), default=DEFAULT_WORKERS, show_default=True,
              help="Concurrent transcription requests")
@click.option("--pattern", default=DEFAULT_PATTERN, show_default=True, help="Glob for audio files")
@click.option("--cache", "cache_path", type=click.Path(dir_okay=False, path_type=Path),
              default=DEFAULT_CACHE_PATH, show_default=True, help="Transcription cache file")
def main(directory: Path, workers: int, pattern: str, cache_path: Path):
    """Transcribe all audio files in DIRECTORY with the configured provider."""
    settings = get_settings()
    setup_logging(settings.log_level)
    console = make_console()
    err_console = make_console(stderr=True)

    try:
        config = read_config()
        provider = CacheProvider(new_provider(config, settings), cache_path)
    except CmdError as e:
        ConsoleHelper.error(err_console, e.message, e.hint)
        sys.exit(1)

    cancel = threading.Event()
    signal.signal(signal.SIGINT, interrupt_handler(cancel, provider))

    paths = sorted(directory.glob(pattern))
    logger.info(f"Found {len(paths)} files matching {pattern} in {directory}")

    try:
        transcripts = TranscriptionPool(provider, config, workers=workers, cancel=cancel).run(paths)
    except CmdError as e:
        provider.close()
        ConsoleHelper.error(err_console, e.message, e.hint)
        sys.exit(1)

    provider.close()
    for i, segments in enumerate(transcripts):
        ConsoleHelper.plain(console, f"File {i}:")
        ConsoleHelper.plain(console, format_segments(segments))


if __name__ == "__main__":
    main()
