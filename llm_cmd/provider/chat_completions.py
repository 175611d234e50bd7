"""
Provider for OpenAI-compatible chat completions APIs.

Used for Groq, which implements the OpenAI API at its own base URL.
Text-only messages are sent with 'content' as a string; messages with an
image are sent in the array form with the image as a data URL.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import openai

from ..config import (
    Config,
    MODEL_TYPE_CHAT,
    MODEL_TYPE_CHAT_IMAGE,
    MODEL_TYPE_SPEECH_TO_TEXT,
)
from ..errors import ProviderError, RateLimitError
from .base import AudioFile, AudioSegment, ImagePart, Message, Role, TextPart
from .reader import DeltaReader

logger = logging.getLogger(__name__)

GROQ_API_KEY = "GROQ_API_KEY"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GROQ_KEYS_URL = "https://console.groq.com/keys"

DEFAULT_AUDIO_MODEL = "whisper-large-v3"
DEFAULT_CHAT_MODEL = "llama-3.1-8b-instant"
DEFAULT_CHAT_IMAGE_MODEL = "llava-v1.5-7b-4096-preview"

_ROLES = {
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
}

# Config field -> request field. top_k has no equivalent in this dialect.
_SAMPLING_FIELDS = (
    ("temperature", "temperature"),
    ("top_p", "top_p"),
    ("frequency_penalty", "frequency_penalty"),
    ("presence_penalty", "presence_penalty"),
)


def _provider_error(e: openai.APIError) -> ProviderError:
    if isinstance(e, openai.RateLimitError):
        return RateLimitError(str(e))
    return ProviderError(str(e), status_code=getattr(e, "status_code", None))


def _wire_message(msg: Message) -> Dict[str, Any]:
    role = _ROLES[msg.role]
    if msg.parts is None:
        return {"role": role, "content": msg.content}

    content = []
    for part in msg.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            content.append({"type": "image_url", "image_url": {"url": part.data}})
        else:
            raise TypeError(f"Unknown message part: {part!r}")
    return {"role": role, "content": content}


class ChatCompletionsProvider:
    """Chat streaming and transcription over the OpenAI SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = GROQ_BASE_URL,
        client: Optional[openai.OpenAI] = None,
    ):
        self.client = client or openai.OpenAI(api_key=api_key, base_url=base_url)

    def build_request(self, config: Config, conversation: Sequence[Message]) -> Dict[str, Any]:
        """Build the chat completion request for a conversation."""
        model = config.model_for(MODEL_TYPE_CHAT, DEFAULT_CHAT_MODEL)
        if conversation and conversation[-1].has_image:
            model = config.model_for(MODEL_TYPE_CHAT_IMAGE, DEFAULT_CHAT_IMAGE_MODEL)

        request: Dict[str, Any] = {
            "model": model,
            "messages": [_wire_message(msg) for msg in conversation],
            "stream": True,
        }
        for field, wire_field in _SAMPLING_FIELDS:
            value = getattr(config, field)
            if value is not None:
                request[wire_field] = value
        return request

    def stream(self, config: Config, conversation: Sequence[Message]) -> DeltaReader:
        request = self.build_request(config, conversation)
        logger.debug(f"Chat completion: model={request['model']} messages={len(conversation)}")
        try:
            response = self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise _provider_error(e) from e
        return DeltaReader(self._deltas(response), on_close=response.close)

    def _deltas(self, response) -> Iterator[str]:
        try:
            for chunk in response:
                if chunk.choices:
                    yield chunk.choices[0].delta.content or ""
        except openai.APIError as e:
            raise _provider_error(e) from e
        finally:
            response.close()

    def transcribe(self, config: Config, audio: AudioFile) -> List[AudioSegment]:
        model = config.model_for(MODEL_TYPE_SPEECH_TO_TEXT, DEFAULT_AUDIO_MODEL)
        data = audio.reader.read()
        logger.debug(f"Transcription: model={model} file={audio.path} bytes={len(data)}")
        try:
            response = self.client.audio.transcriptions.create(
                model=model,
                file=(Path(audio.path).name, data),
                response_format="verbose_json",
            )
        except openai.APIError as e:
            raise _provider_error(e) from e

        segments = getattr(response, "segments", None) or []
        return [
            AudioSegment.model_validate(seg if isinstance(seg, dict) else seg.model_dump())
            for seg in segments
        ]

    def list_models(self) -> List[str]:
        try:
            return [model.id for model in self.client.models.list()]
        except openai.APIError as e:
            raise _provider_error(e) from e

    def list_connectors(self) -> List[str]:
        # Connectors are a Cohere concept
        return []

    def close(self) -> None:
        self.client.close()
