"""Command-line interface for llm-cmd.

This module provides:
- main: the `llm-cmd` click command
- apply_settings: config edits from setting options
- load_attachment: image/audio handling for --file

Config and provider are built here and passed down as plain values.
"""

import base64
import io
import logging
import mimetypes
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Optional, TextIO, Tuple

import click
from rich.console import Console

from .config import Config, Settings, get_settings, model_type, read_config, write_config
from .console import ConsoleHelper, make_console, setup_logging
from .errors import BlockExecutionError, CmdError, ConfigurationError
from .provider import AudioFile, CacheProvider, new_provider
from .runner import Mode, TurnRunner, fold_context, user_message
from .transcribe import format_segments

logger = logging.getLogger(__name__)

TTY_PATH = "/dev/tty"

EXIT_INTERRUPTED = 130

IMAGE_MIME_PREFIX = "image/"
AUDIO_MIME_PREFIX = "audio/"


class CmdCommand(click.Command):
    """Command whose usage errors exit with status 1."""

    def parse_args(self, ctx: click.Context, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise


def _show_help(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help())
    ctx.exit(1)


def _usage_error(message: str) -> click.UsageError:
    error = click.UsageError(message, click.get_current_context(silent=True))
    error.exit_code = 1
    return error


def print_config(console: Console, cfg: Config) -> None:
    ConsoleHelper.plain(console, "Current config:")
    ConsoleHelper.plain(console, cfg.dumps())


def apply_settings(cfg: Config, **options: Any) -> bool:
    """Apply setting options to the config.

    'model' is stored under its inferred capability tag, 'connectors'
    replaces the list, the sampling options overwrite their field. Options
    that are None (or an empty connector tuple) are not given.

    Returns:
        True if anything changed
    """
    dirty = False
    for name, value in options.items():
        if value is None or value == ():
            continue
        dirty = True
        if name == "model":
            cfg.model[model_type(value)] = value
        elif name == "connectors":
            cfg.connectors = list(value)
        else:
            setattr(cfg, name, value)
    return dirty


def read_piped_stdin(stdin: TextIO) -> str:
    """Read stdin fully when it is not a terminal."""
    if stdin.isatty():
        return ""
    return stdin.read()


def data_url(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def load_attachment(path: Path) -> Tuple[str, bytes]:
    """Read an attachment and classify it by MIME type.

    Returns:
        (mime, data) for image/* and audio/* files

    Raises:
        ConfigurationError: Unknown or unsupported file type
    """
    mime, _ = mimetypes.guess_type(str(path))
    if not mime or not mime.startswith((IMAGE_MIME_PREFIX, AUDIO_MIME_PREFIX)):
        raise ConfigurationError(
            f"unsupported file type: {mime or 'unknown'} ({path})",
            hint="Attach an image or an audio file",
        )
    try:
        return mime, path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"failed to read file {path}: {e}") from e


@click.command(cls=CmdCommand, add_help_option=False)
@click.argument('prompt', nargs=-1)
@click.option('-i', '--interactive', is_flag=True,
              help='Start a chat session (prompts are read from the terminal)')
@click.option('-e', '--execute', is_flag=True,
              help='Execute code blocks from the reply without showing it')
@click.option('-r', '--run', 'run_', is_flag=True,
              help='Show the reply, then run its code blocks')
@click.option('-f', '--file', 'file_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Image to send with the prompt, or audio file to transcribe')
@click.option('-c', '--config', 'show_config', is_flag=True,
              help='Show the current config')
@click.option('--list-models', is_flag=True,
              help='List models offered by the provider')
@click.option('--list-connectors', is_flag=True,
              help='List connectors offered by the provider')
@click.option('--model',
              help='Select a model (stored under its type: chat, chat-image, speech-to-text)')
@click.option('--connector', 'connectors', multiple=True,
              help='Select a connector (can be used multiple times)')
@click.option('-t', '--temperature', type=float, help='Set sampling temperature')
@click.option('-p', '--top-p', type=float, help='Set nucleus sampling probability')
@click.option('-k', '--top-k', type=int, help='Set top-k sampling')
@click.option('--freq', 'frequency_penalty', type=float, help='Set frequency penalty')
@click.option('--pres', 'presence_penalty', type=float, help='Set presence penalty')
@click.option('-h', '--help', is_flag=True, expose_value=False, is_eager=True, callback=_show_help,
              help='Show this message and exit')
def main(
    prompt: Tuple[str, ...],
    interactive: bool,
    execute: bool,
    run_: bool,
    file_path: Optional[Path],
    show_config: bool,
    list_models: bool,
    list_connectors: bool,
    model: Optional[str],
    connectors: Tuple[str, ...],
    temperature: Optional[float],
    top_p: Optional[float],
    top_k: Optional[int],
    frequency_penalty: Optional[float],
    presence_penalty: Optional[float],
):
    """Ask an LLM from the command line, optionally running the code it writes."""
    settings = get_settings()
    setup_logging(settings.log_level)
    console = make_console()
    err_console = make_console(stderr=True)

    if execute and run_:
        raise _usage_error("--execute and --run are mutually exclusive")

    cancel = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())

    try:
        cfg = read_config()

        if show_config:
            print_config(console, cfg)
            return

        if list_models or list_connectors:
            _print_listings(console, cfg, settings, list_models, list_connectors)
            return

        if apply_settings(
            cfg,
            model=model,
            connectors=connectors,
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty,
        ):
            write_config(cfg)
            print_config(console, cfg)
            return

        mode = Mode.EXECUTE if execute else Mode.RUN if run_ else Mode.DISPLAY
        _chat(console, cfg, settings, mode, " ".join(prompt), interactive, file_path, cancel)

    except KeyboardInterrupt:
        cancel.set()
        logger.debug("Interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except BlockExecutionError as e:
        # Already reported by the runner
        sys.exit(e.exit_code if e.exit_code and e.exit_code > 0 else 1)
    except CmdError as e:
        ConsoleHelper.error(err_console, e.message, e.hint)
        sys.exit(1)


def _print_listings(
    console: Console,
    cfg: Config,
    settings: Settings,
    list_models: bool,
    list_connectors: bool,
) -> None:
    provider = new_provider(cfg, settings)
    try:
        if list_models:
            ConsoleHelper.plain(console, "Available models:")
            for name in provider.list_models():
                ConsoleHelper.plain(console, name)
            ConsoleHelper.plain(console)
            for tag, name in cfg.model.items():
                ConsoleHelper.plain(console, f"Currently selected model for {tag}: {name}")
        if list_connectors:
            ConsoleHelper.plain(console, "Available connectors:")
            for connector in provider.list_connectors():
                ConsoleHelper.plain(console, connector)
            ConsoleHelper.plain(console)
            ConsoleHelper.plain(console, f"Currently selected connectors: {cfg.connectors}")
    finally:
        provider.close()


def _chat(
    console: Console,
    cfg: Config,
    settings: Settings,
    mode: Mode,
    prompt: str,
    interactive: bool,
    file_path: Optional[Path],
    cancel: threading.Event,
) -> None:
    context = read_piped_stdin(sys.stdin)
    if not prompt and not context and not interactive and file_path is None:
        raise _usage_error("what's your command?")

    provider = new_provider(cfg, settings)
    if cfg.record:
        provider = CacheProvider(provider)

    try:
        image = None
        if file_path is not None:
            mime, data = load_attachment(file_path)
            if mime.startswith(AUDIO_MIME_PREFIX):
                segments = provider.transcribe(cfg, AudioFile(path=str(file_path), reader=io.BytesIO(data)))
                ConsoleHelper.plain(console, format_segments(segments))
                return
            image = data_url(mime, data)

        runner = TurnRunner(provider, cfg, mode=mode, cancel=cancel)
        if interactive:
            try:
                tty = open(TTY_PATH, encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"failed to open {TTY_PATH}: {e}") from e
            with tty:
                runner.run_chat(tty, prompt=prompt, context=context, image=image)
        else:
            runner.run_turn([user_message(fold_context(context, prompt), image)])
    finally:
        provider.close()


if __name__ == "__main__":
    main()
