"""Error hierarchy for llm-cmd.

All errors raised on purpose by llm-cmd inherit from CmdError, which
carries an optional hint shown to the user under the message:
- ConfigurationError: bad config file, unknown provider, unknown model
- AuthenticationError: missing API key
- ProviderError: remote service failures (RateLimitError for 429s)
- UnsupportedCapabilityError: provider cannot do what was asked
- BlockExecutionError: a generated code block failed to run
- TranscriptionError: a file in a batch transcription failed
"""

from typing import Optional


class CmdError(Exception):
    """Base exception for llm-cmd errors.

    Attributes:
        message: Human-readable error description
        hint: Optional pointer on how to fix the problem
    """

    def __init__(self, message: str, *, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.hint:
            return f"{self.message}\n  Hint: {self.hint}"
        return self.message


class ConfigurationError(CmdError):
    """Raised for a malformed config file, unknown provider or bad option."""


class ModelClassificationError(ConfigurationError):
    """Raised when a model id cannot be mapped to a capability tag."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(
            f"unknown model: {model}",
            hint="Model ids are classified by name (e.g. 'llama', 'whisper', 'llava')",
        )


class AuthenticationError(CmdError):
    """Raised when the API key for the selected provider is missing."""

    def __init__(self, env_var: str, provider: str, url: str):
        self.env_var = env_var
        super().__init__(
            f"Set {env_var} env variable to your {provider} API key",
            hint=f"Get one at {url}",
        )


class ProviderError(CmdError):
    """Raised when the remote LLM service returns an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class RateLimitError(ProviderError):
    """Raised when the remote service rejects a request with a rate limit.

    The message is kept verbatim since it usually says how long to wait
    ("Please try again in 6m6.125s.").
    """

    def __init__(self, message: str):
        super().__init__(message, status_code=429)


class UnsupportedCapabilityError(CmdError):
    """Raised when a provider is asked for an operation it does not offer."""


class BlockExecutionError(CmdError):
    """Raised when a generated code block fails to run.

    exit_code is the child's exit status, or None when the process could
    not be started at all.
    """

    def __init__(self, message: str, *, exit_code: Optional[int] = None, **kwargs):
        self.exit_code = exit_code
        super().__init__(message, **kwargs)


class TranscriptionError(CmdError):
    """Raised when a file in a batch transcription fails for good."""

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"failed to transcribe {path}: {cause}")
