"""
Execution of generated code blocks.

Each language has its own handler:
- bash: run with `bash -c`
- html: written to index.html and opened with the desktop opener
- css, javascript: written to style.css / script.js next to index.html
- go: written to main.go (package clause added if missing) and `go run`
- python: written to main.py and run with python3
- unknown: ignored

Files go to a per-user temp directory and are overwritten by the next
block of the same language. Children inherit stdout; their stderr is
re-printed in colour.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rich.console import Console

from .console import CHILD_STDERR_STYLE, make_console, pump_stderr
from .errors import BlockExecutionError
from .parser import CodeBlock, Language
from .paths import get_temp_dir

logger = logging.getLogger(__name__)

GO_PACKAGE_PREAMBLE = "package main\n\n"

# File name per language, inside the temp directory
_FILE_NAMES = {
    Language.HTML: "index.html",
    Language.CSS: "style.css",
    Language.JAVASCRIPT: "script.js",
    Language.GO: "main.go",
    Language.PYTHON: "main.py",
}


def html_opener() -> str:
    """Command that opens a URL in the default browser."""
    return "open" if sys.platform == "darwin" else "xdg-open"


def go_source(code: str) -> str:
    """Add a `package main` clause unless the code starts with one.

    Examples:
        >>> go_source('func main() {}\\n')
        'package main\\n\\nfunc main() {}\\n'
        >>> go_source('package foo\\n')
        'package foo\\n'
    """
    if code.startswith("package"):
        return code
    return GO_PACKAGE_PREAMBLE + code


class BlockExecutor:
    """Run code blocks with local interpreters.

    Args:
        temp_dir: Where block files are written (default: per-user temp dir)
        console: Console for the children's stderr (default: stderr console)
    """

    def __init__(self, temp_dir: Optional[Path] = None, console: Optional[Console] = None):
        self._temp_dir = temp_dir
        self.console = console or make_console(stderr=True)
        self._handlers: Dict[Language, Callable[[CodeBlock], None]] = {
            Language.BASH: self._run_bash,
            Language.HTML: self._run_html,
            Language.CSS: self._write_only,
            Language.JAVASCRIPT: self._write_only,
            Language.GO: self._run_go,
            Language.PYTHON: self._run_python,
        }

    @property
    def temp_dir(self) -> Path:
        if self._temp_dir is None:
            try:
                self._temp_dir = get_temp_dir()
            except OSError as e:
                raise BlockExecutionError(f"failed to create temp directory: {e}") from e
        return self._temp_dir

    def run(self, block: CodeBlock) -> None:
        """Execute one block, blocking until it finishes.

        Raises:
            BlockExecutionError: The child exited non-zero or could not start
        """
        handler = self._handlers.get(block.lang)
        if handler is None:
            logger.debug(f"Skipping block with language {block.lang.value}")
            return
        handler(block)

    def _run_bash(self, block: CodeBlock) -> None:
        self._spawn(["bash", "-c", block.code])

    def _run_html(self, block: CodeBlock) -> None:
        path = self._write(block.lang, block.code)
        self._spawn([html_opener(), path.as_uri()])

    def _write_only(self, block: CodeBlock) -> None:
        # Picked up by index.html
        self._write(block.lang, block.code)

    def _run_go(self, block: CodeBlock) -> None:
        path = self._write(block.lang, go_source(block.code))
        self._spawn(["go", "run", str(path)])

    def _run_python(self, block: CodeBlock) -> None:
        path = self._write(block.lang, block.code)
        self._spawn(["python3", str(path)])

    def _write(self, lang: Language, code: str) -> Path:
        path = self.temp_dir / _FILE_NAMES[lang]
        try:
            path.write_text(code, encoding="utf-8")
        except OSError as e:
            raise BlockExecutionError(f"failed to write {path}: {e}") from e
        logger.debug(f"Wrote {lang.value} block to {path}")
        return path

    def _spawn(self, argv: List[str]) -> None:
        """Run a child with inherited stdout and coloured stderr."""
        logger.debug(f"Executing: {argv}")
        try:
            proc = subprocess.Popen(argv, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise BlockExecutionError(
                f"{argv[0]} not found",
                hint=f"Install {argv[0]} or make sure it is on PATH",
            ) from e
        except OSError as e:
            raise BlockExecutionError(f"failed to start {argv[0]}: {e}") from e

        pump = pump_stderr(proc.stderr, self.console, CHILD_STDERR_STYLE)
        exit_code = proc.wait()
        pump.join()

        if exit_code != 0:
            raise BlockExecutionError(f"{argv[0]} exited with status {exit_code}", exit_code=exit_code)
