"""Fenced code block parser.

Model output is scanned line by line for ``` fences:
- A line starting with ``` opens a block; the rest of the line is the
  language tag.
- Following lines are kept verbatim (with their newline) until a line that
  is exactly ``` closes the block.
- Everything outside blocks is ignored here, it reaches the terminal
  through the other sinks of the fan-out.

CodeWriter is the streaming form: it is written to like a file while the
model output arrives and yields each block as soon as its closing fence is
seen. extract_code_blocks does the same on a complete string.
"""
import codecs
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

FENCE = "```"

# Max chunks buffered between the writer and the parser thread
DEFAULT_QUEUE_SIZE = 64

# End-of-stream marker for both queues
_EOF = object()


class Language(str, Enum):
    """Languages the executor knows how to handle."""

    UNKNOWN = "unknown"
    BASH = "bash"
    HTML = "html"
    CSS = "css"
    JAVASCRIPT = "javascript"
    GO = "go"
    PYTHON = "python"


_LANGUAGES = {
    "bash": Language.BASH,
    "sh": Language.BASH,
    "shell": Language.BASH,
    "html": Language.HTML,
    "css": Language.CSS,
    "javascript": Language.JAVASCRIPT,
    "js": Language.JAVASCRIPT,
    "go": Language.GO,
    "golang": Language.GO,
    "python": Language.PYTHON,
    "python3": Language.PYTHON,
    "py": Language.PYTHON,
}


def language(tag: str) -> Language:
    """Map a fence language tag to a Language.

    Examples:
        >>> language("python3") is language("python")
        True
        >>> language("brainfuck")
        <Language.UNKNOWN: 'unknown'>
    """
    return _LANGUAGES.get(tag.strip().lower(), Language.UNKNOWN)


@dataclass
class CodeBlock:
    """A complete fenced block: its language and body (fences stripped)."""

    lang: Language
    code: str


class _BlockScanner:
    """Line-at-a-time fence state machine."""

    def __init__(self):
        self._lang: Optional[Language] = None  # None while outside a block
        self._lines: List[str] = []

    @property
    def in_block(self) -> bool:
        return self._lang is not None

    def feed(self, line: str) -> Optional[CodeBlock]:
        """Consume one line (without its newline), return a block if one closed."""
        if line.endswith("\r"):
            line = line[:-1]

        if self._lang is None:
            if line.startswith(FENCE):
                self._lang = language(line[len(FENCE):])
                self._lines = []
            return None

        if line == FENCE:
            block = CodeBlock(lang=self._lang, code="".join(self._lines))
            self._lang = None
            self._lines = []
            return block

        self._lines.append(line + "\n")
        return None


def scan_blocks(lines: Iterable[str]) -> Iterator[CodeBlock]:
    """Yield blocks from an iterable of lines (newlines already removed).

    A block still open when the lines run out is dropped.
    """
    scanner = _BlockScanner()
    for line in lines:
        block = scanner.feed(line)
        if block is not None:
            yield block


def extract_code_blocks(text: str) -> List[CodeBlock]:
    """Extract fenced code blocks from a complete text.

    Examples:
        >>> extract_code_blocks("```python\\nprint('hi')\\n```")
        [CodeBlock(lang=<Language.PYTHON: 'python'>, code="print('hi')\\n")]

        >>> extract_code_blocks("no code here")
        []
    """
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return list(scan_blocks(lines))


class CodeWriter:
    """Writable sink that parses code blocks on a background thread.

    Writes are copied into a bounded queue and consumed by the parser
    thread, which keeps the partial last line between writes and decodes
    UTF-8 incrementally (a character may be split across writes).
    Blocks are published on an unbounded queue, so the parser never
    waits for the block consumer.

    Closing the writer ends the block sequence. Start consuming blocks()
    before writing and always close the writer, otherwise the consumer
    never finishes.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self._data: queue.Queue = queue.Queue(maxsize=maxsize)
        self._blocks: queue.Queue = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._scan, name="code-parser", daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to closed CodeWriter")
        if data:
            # Callers may reuse their buffer after write() returns
            self._data.put(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._data.put(_EOF)

    def blocks(self) -> Iterator[CodeBlock]:
        """Yield blocks in stream order until the writer is closed."""
        while True:
            item = self._blocks.get()
            if item is _EOF:
                # Leave the marker for any later iteration
                self._blocks.put(_EOF)
                return
            yield item

    def __iter__(self) -> Iterator[CodeBlock]:
        return self.blocks()

    def _scan(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        scanner = _BlockScanner()
        pending = ""
        try:
            while True:
                chunk = self._data.get()
                if chunk is _EOF:
                    pending += decoder.decode(b"", final=True)
                    if pending:
                        self._publish(scanner.feed(pending))
                    break

                pending += decoder.decode(chunk)
                *lines, pending = pending.split("\n")
                for line in lines:
                    self._publish(scanner.feed(line))

            if scanner.in_block:
                logger.debug("Stream ended inside a code block, dropping it")
        finally:
            self._blocks.put(_EOF)

    def _publish(self, block: Optional[CodeBlock]) -> None:
        if block is not None:
            logger.debug(f"Parsed {block.lang.value} block ({len(block.code)} chars)")
            self._blocks.put(block)


def open_code_stream(maxsize: int = DEFAULT_QUEUE_SIZE) -> Tuple[CodeWriter, Iterator[CodeBlock]]:
    """Create a parser: the sink to write model output to, and its blocks."""
    writer = CodeWriter(maxsize=maxsize)
    return writer, writer.blocks()
