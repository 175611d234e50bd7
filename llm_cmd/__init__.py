"""llm-cmd - Ask an LLM from the command line and run the code it writes.

This package provides:
- TurnRunner, Mode: Stream replies through the output fan-out (runner module)
- open_code_stream, extract_code_blocks: Fenced code block parsing (parser module)
- MultiWriter, FlushingWriter: Write fan-out (tee module)
- Providers for Groq (OpenAI-compatible) and Cohere, transcription cache (provider package)
- TranscriptionPool: Concurrent batch transcription (transcribe module)
- Config, read_config, write_config: Persisted settings (config module)
- Error classes (errors module)
"""

from .parser import CodeBlock, Language, extract_code_blocks, language, open_code_stream
from .tee import FlushingWriter, MultiWriter, ShortWriteError
from .config import Config, Settings, get_settings, model_type, read_config, write_config
from .errors import (
    AuthenticationError,
    BlockExecutionError,
    CmdError,
    ConfigurationError,
    ModelClassificationError,
    ProviderError,
    RateLimitError,
    TranscriptionError,
    UnsupportedCapabilityError,
)
from .runner import Mode, TurnRunner, fold_context, user_message
from .transcribe import TranscriptionPool, parse_retry_after

__version__ = "0.1.0"

__all__ = [
    # Parser
    "CodeBlock",
    "Language",
    "extract_code_blocks",
    "language",
    "open_code_stream",
    # Fan-out
    "FlushingWriter",
    "MultiWriter",
    "ShortWriteError",
    # Config
    "Config",
    "Settings",
    "get_settings",
    "model_type",
    "read_config",
    "write_config",
    # Errors
    "AuthenticationError",
    "BlockExecutionError",
    "CmdError",
    "ConfigurationError",
    "ModelClassificationError",
    "ProviderError",
    "RateLimitError",
    "TranscriptionError",
    "UnsupportedCapabilityError",
    # Runner
    "Mode",
    "TurnRunner",
    "fold_context",
    "user_message",
    # Transcription
    "TranscriptionPool",
    "parse_retry_after",
]
