"""Console output helpers.

Everything llm-cmd prints that is not model output goes through rich:
errors in yellow, listings and config dumps, and the stderr of spawned
code blocks re-printed in bright red.

The model output itself is plain bytes written to stdout by the
fan-out sink and never passes through rich.
"""

import logging
import threading
from typing import IO, Optional

from rich.console import Console
from rich.logging import RichHandler

# Style applied to stderr of spawned code blocks
CHILD_STDERR_STYLE = "bright_red"


def make_console(stderr: bool = False) -> Console:
    """Create a console without markup highlighting of plain output."""
    return Console(stderr=stderr, highlight=False, emoji=False, soft_wrap=True)


class ConsoleHelper:
    """Consistent console output formatting.

    All methods receive the console to print to, so callers and tests
    decide where output goes.
    """

    @staticmethod
    def error(console: Console, message: str, hint: Optional[str] = None) -> None:
        """Print error message in yellow, with an optional dim hint."""
        console.print(f"error: {message}", style="yellow", markup=False)
        if hint:
            console.print(f"  {hint}", style="dim", markup=False)

    @staticmethod
    def plain(console: Console, message: str = "") -> None:
        """Print text as is (no markup, no highlighting)."""
        console.print(message, markup=False)


def pump_stderr(stream: IO[bytes], console: Console, style: str = CHILD_STDERR_STYLE) -> threading.Thread:
    """Re-print a child's stderr pipe line by line in colour.

    Returns the started thread; join it after the child exits so that
    no output is lost.
    """

    def _pump():
        with stream:
            for raw in iter(stream.readline, b""):
                console.out(raw.decode("utf-8", errors="replace"), style=style, end="", highlight=False)
        console.file.flush()

    thread = threading.Thread(target=_pump, name="stderr-pump", daemon=True)
    thread.start()
    return thread


def setup_logging(level: str = "WARNING") -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[
            RichHandler(
                console=make_console(stderr=True),
                show_time=False,
                show_path=False,
                rich_tracebacks=True,
            )
        ],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
