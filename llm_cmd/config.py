"""
Configuration for llm-cmd.

Two layers:
- Config: the persisted JSON file (~/.cmd/config.json) holding provider,
  model selection, connectors and sampling parameters. Edited by the CLI.
- Settings: environment, via pydantic-settings. Holds the API keys
  (GROQ_API_KEY, COHERE_API_KEY) and the log level.
"""

import logging
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError, ModelClassificationError
from .paths import get_config_path

logger = logging.getLogger(__name__)

PROVIDER_GROQ = "groq"
PROVIDER_COHERE = "cohere"
PROVIDERS = (PROVIDER_GROQ, PROVIDER_COHERE)

# Capability tags, used as keys of Config.model
MODEL_TYPE_CHAT = "chat"
MODEL_TYPE_CHAT_IMAGE = "chat-image"
MODEL_TYPE_SPEECH_TO_TEXT = "speech-to-text"

# Substring -> capability tag. Order matters: vision markers must be
# checked before chat families ("llama-3.2-11b-vision" is an image model).
KNOWN_MODEL_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("llava", MODEL_TYPE_CHAT_IMAGE),
    ("vision", MODEL_TYPE_CHAT_IMAGE),
    ("whisper", MODEL_TYPE_SPEECH_TO_TEXT),
    ("command", MODEL_TYPE_CHAT),
    ("gemma", MODEL_TYPE_CHAT),
    ("llama", MODEL_TYPE_CHAT),
    ("mixtral", MODEL_TYPE_CHAT),
    ("mistral", MODEL_TYPE_CHAT),
    ("gpt", MODEL_TYPE_CHAT),
    ("qwen", MODEL_TYPE_CHAT),
    ("deepseek", MODEL_TYPE_CHAT),
)


def model_type(model: str) -> str:
    """Infer the capability tag of a model id.

    Examples:
        >>> model_type("whisper-large-v3")
        'speech-to-text'
        >>> model_type("llama-3.2-11b-vision-preview")
        'chat-image'
        >>> model_type("command-r-plus")
        'chat'
    """
    lowered = model.lower()
    for marker, tag in KNOWN_MODEL_MARKERS:
        if marker in lowered:
            return tag
    raise ModelClassificationError(model)


class Config(BaseModel):
    """Persisted configuration, also the generation config of a request.

    Sampling parameters left as None are not sent, so the provider
    default applies.
    """

    model_config = ConfigDict(extra="ignore")

    provider: str = PROVIDER_GROQ
    record: bool = True
    model: Dict[str, str] = Field(default_factory=dict)
    connectors: List[str] = Field(default_factory=list)

    # Sampling parameters
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    def model_for(self, tag: str, default: Optional[str] = None) -> Optional[str]:
        """Model selected for a capability tag, or the given default."""
        return self.model.get(tag) or default

    def dumps(self) -> str:
        """Indented JSON as written to disk."""
        return self.model_dump_json(indent=2, exclude_none=True)


def read_config(path: Optional[Path] = None) -> Config:
    """Read the config file, returning defaults when it does not exist."""
    path = path or get_config_path()
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"No config at {path}, using defaults")
        return Config()
    except OSError as e:
        raise ConfigurationError(f"failed to read config {path}: {e}") from e

    try:
        return Config.model_validate_json(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"malformed config {path}: {e}",
            hint="Fix or delete the file to start from defaults",
        ) from e


def write_config(cfg: Config, path: Optional[Path] = None) -> Path:
    """Write the config file atomically (temp file, then rename)."""
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(cfg.dumps())
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug(f"Wrote config to {path}")
    return path


class Settings(BaseSettings):
    """Environment settings.

    Loaded from (in order of priority):
    1. Environment variables (GROQ_API_KEY, COHERE_API_KEY, LLM_CMD_LOG_LEVEL)
    2. .env file in the working directory
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    groq_api_key: Optional[str] = Field(
        default=None,
        validation_alias="GROQ_API_KEY",
        description="API key for the Groq (OpenAI-compatible) provider",
    )
    cohere_api_key: Optional[str] = Field(
        default=None,
        validation_alias="COHERE_API_KEY",
        description="API key for the Cohere provider",
    )

    log_level: str = Field(
        default="WARNING",
        validation_alias="LLM_CMD_LOG_LEVEL",
        description="Logging level",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
