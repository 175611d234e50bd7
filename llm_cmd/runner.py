"""
Turn runner: streams one model reply through the output fan-out.

The provider's byte stream is copied into a MultiWriter whose sinks
depend on the mode:

    display   terminal, capture
    execute   parser, capture            (blocks run as soon as parsed)
    run       parser, terminal, capture  (blocks run after the reply)

The capture buffer holds the whole reply, which becomes the assistant
message of the conversation.
"""

import io
import logging
import sys
import threading
from enum import Enum
from typing import BinaryIO, Iterable, Iterator, List, Optional

from rich.console import Console

from .config import Config
from .console import ConsoleHelper, make_console
from .errors import BlockExecutionError
from .executor import BlockExecutor
from .parser import CodeBlock, open_code_stream
from .provider import Conversation, ImagePart, Message, Provider, Role, TextPart
from .tee import FlushingWriter, MultiWriter

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 32 * 1024

USER_PROMPT = b"User> "


class Mode(str, Enum):
    """What to do with a reply."""

    DISPLAY = "display"
    EXECUTE = "execute"
    RUN = "run"


def fold_context(context: str, text: str) -> str:
    """Put piped context in front of the user's text.

    Examples:
        >>> fold_context("", "hi")
        'hi'
        >>> fold_context("log line", "explain")
        'log line\\n\\nexplain'
    """
    if not context:
        return text
    return f"{context}\n\n{text}"


def user_message(text: str, image: Optional[str] = None) -> Message:
    """User message, multi-part when an image data URL is attached."""
    if image is None:
        return Message(role=Role.USER, content=text)
    return Message(role=Role.USER, parts=[TextPart(text), ImagePart(image)])


class TurnRunner:
    """Run chat turns against a provider.

    Args:
        provider: Backend to stream replies from
        config: Generation config passed to every request
        mode: Display, execute or run
        terminal: Binary stream for model output and prompts (default: stdout)
        executor: Block executor (default: BlockExecutor())
        cancel: Event that stops streaming and the chat loop when set
        chunk_size: Max bytes read from the provider stream at a time
        console: Console for block failures (default: stderr console)
    """

    def __init__(
        self,
        provider: Provider,
        config: Config,
        mode: Mode = Mode.DISPLAY,
        terminal: Optional[BinaryIO] = None,
        executor: Optional[BlockExecutor] = None,
        cancel: Optional[threading.Event] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        console: Optional[Console] = None,
    ):
        self.provider = provider
        self.config = config
        self.mode = Mode(mode)
        self.terminal = terminal if terminal is not None else sys.stdout.buffer
        self.console = console or make_console(stderr=True)
        self.executor = executor or BlockExecutor(console=self.console)
        self.cancel = cancel or threading.Event()
        self.chunk_size = chunk_size

    def run_turn(self, conversation: Conversation) -> str:
        """Stream the reply to the last message of the conversation.

        Returns:
            The full reply text

        Raises:
            BlockExecutionError: A block failed (run mode: the first
                failure, later blocks are skipped; execute mode: the first
                failure, after all blocks were attempted)
            ProviderError: The request or the stream failed
        """
        capture = io.BytesIO()
        # The terminal belongs to the caller and stays open across turns
        terminal = FlushingWriter(self.terminal, close_stream=False) if self.mode != Mode.EXECUTE else None

        parser = None
        consumer = None
        collected: List[CodeBlock] = []
        failures: List[BaseException] = []

        if self.mode != Mode.DISPLAY:
            parser, blocks = open_code_stream()
            # Started before the first write so the parser always drains
            consumer = threading.Thread(
                target=self._consume,
                args=(blocks, collected, failures),
                name="block-consumer",
                daemon=True,
            )
            consumer.start()

        fanout = MultiWriter(*[w for w in (parser, terminal, capture) if w is not None])

        reader = None
        try:
            reader = self.provider.stream(self.config, conversation)
            self._copy(reader, fanout)
            if terminal is not None:
                terminal.write(b"\n")
        finally:
            reply = capture.getvalue().decode("utf-8", errors="replace")
            try:
                fanout.close()
            finally:
                if reader is not None:
                    reader.close()
                if consumer is not None:
                    consumer.join()

        if failures:
            raise failures[0]

        for block in collected:
            try:
                self.executor.run(block)
            except BlockExecutionError as e:
                ConsoleHelper.error(self.console, e.message, e.hint)
                raise

        return reply

    def run_chat(
        self,
        lines: Iterable[str],
        prompt: str = "",
        context: str = "",
        image: Optional[str] = None,
    ) -> Conversation:
        """Multi-turn session reading user lines until EOF or cancellation.

        The first turn uses 'prompt' when given instead of reading a line,
        and carries the piped context and the image. Blank lines are
        skipped.
        """
        conversation: Conversation = []
        lines = iter(lines)
        first = True

        while not self.cancel.is_set():
            if first and prompt:
                text = prompt
            else:
                text = self._read_line(lines)
                if text is None:
                    break
                if not text.strip():
                    continue

            if first:
                message = user_message(fold_context(context, text), image)
                first = False
            else:
                message = user_message(text)

            conversation.append(message)
            reply = self.run_turn(conversation)
            conversation.append(Message(role=Role.ASSISTANT, content=reply))

        return conversation

    def _read_line(self, lines: Iterator[str]) -> Optional[str]:
        self.terminal.write(USER_PROMPT)
        self.terminal.flush()
        line = next(lines, None)
        if line is None:
            return None
        return line.rstrip("\r\n")

    def _copy(self, reader: BinaryIO, sink: MultiWriter) -> None:
        while not self.cancel.is_set():
            chunk = reader.read(self.chunk_size)
            if not chunk:
                return
            sink.write(chunk)
        logger.info("Reply cancelled")

    def _consume(
        self,
        blocks: Iterator[CodeBlock],
        collected: List[CodeBlock],
        failures: List[BaseException],
    ) -> None:
        try:
            for block in blocks:
                if self.mode == Mode.RUN:
                    collected.append(block)
                    continue
                try:
                    self.executor.run(block)
                except BlockExecutionError as e:
                    logger.warning(f"{block.lang.value} block failed: {e.message}")
                    ConsoleHelper.error(self.console, e.message, e.hint)
                    failures.append(e)
        except Exception as e:
            # Re-raised by run_turn on the calling thread
            failures.append(e)
