"""LLM providers: chat streaming, transcription and listings."""

from ..config import PROVIDER_COHERE, PROVIDER_GROQ, PROVIDERS, Config, Settings
from ..errors import AuthenticationError, ConfigurationError
from .base import (
    AudioFile,
    AudioSegment,
    Conversation,
    ImagePart,
    Message,
    MessagePart,
    Provider,
    Role,
    TextPart,
)
from .cache import CacheIndex, CacheProvider, cache_key
from .chat_completions import GROQ_API_KEY, GROQ_KEYS_URL, ChatCompletionsProvider
from .cohere_chat import COHERE_API_KEY, COHERE_KEYS_URL, CohereProvider
from .reader import DeltaReader

__all__ = [
    "AudioFile",
    "AudioSegment",
    "CacheIndex",
    "CacheProvider",
    "ChatCompletionsProvider",
    "CohereProvider",
    "Conversation",
    "DeltaReader",
    "ImagePart",
    "Message",
    "MessagePart",
    "Provider",
    "Role",
    "TextPart",
    "cache_key",
    "new_provider",
]


def new_provider(config: Config, settings: Settings) -> Provider:
    """Build the provider named by config.provider.

    Raises:
        ConfigurationError: Unknown provider name
        AuthenticationError: API key for the provider is not set
    """
    if config.provider == PROVIDER_GROQ:
        if not settings.groq_api_key:
            raise AuthenticationError(GROQ_API_KEY, "Groq", GROQ_KEYS_URL)
        return ChatCompletionsProvider(api_key=settings.groq_api_key)

    if config.provider == PROVIDER_COHERE:
        if not settings.cohere_api_key:
            raise AuthenticationError(COHERE_API_KEY, "Cohere", COHERE_KEYS_URL)
        return CohereProvider(api_key=settings.cohere_api_key)

    raise ConfigurationError(
        f"unknown provider: {config.provider}",
        hint=f"Set 'provider' in the config to one of: {', '.join(PROVIDERS)}",
    )
