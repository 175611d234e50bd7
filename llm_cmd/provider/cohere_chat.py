"""
Provider for the Cohere chat API (v1), over httpx.

The last message is sent as 'message' and earlier ones as 'chat_history'
with Cohere's USER/CHATBOT roles. The streamed response is newline
delimited JSON; only 'text-generation' events carry text.
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from ..config import Config, MODEL_TYPE_CHAT
from ..errors import ProviderError, RateLimitError, UnsupportedCapabilityError
from .base import AudioFile, AudioSegment, Message, Role
from .reader import DeltaReader

logger = logging.getLogger(__name__)

COHERE_API_KEY = "COHERE_API_KEY"
COHERE_BASE_URL = "https://api.cohere.com"
COHERE_KEYS_URL = "https://dashboard.cohere.com/api-keys"

# Connect/write timeout; reads are unbounded while the model generates
DEFAULT_TIMEOUT = 30.0

TEXT_GENERATION_EVENT = "text-generation"

_ROLES = {
    Role.USER: "USER",
    Role.ASSISTANT: "CHATBOT",
}

# Config field -> request field
_SAMPLING_FIELDS = (
    ("temperature", "temperature"),
    ("top_p", "p"),
    ("top_k", "k"),
    ("frequency_penalty", "frequency_penalty"),
    ("presence_penalty", "presence_penalty"),
)


def _message_text(msg: Message) -> str:
    if msg.has_image:
        raise UnsupportedCapabilityError("image input is not supported by Cohere")
    return msg.text


class CohereProvider:
    """Chat streaming, model and connector listing for Cohere."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = COHERE_BASE_URL,
        client: Optional[httpx.Client] = None,
    ):
        self.client = client or httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(DEFAULT_TIMEOUT, read=None),
        )

    def build_request(self, config: Config, conversation: Sequence[Message]) -> Dict[str, Any]:
        """Build the chat request body for a conversation."""
        if not conversation:
            raise ValueError("Conversation is empty")

        *history, last = conversation
        body: Dict[str, Any] = {
            "message": _message_text(last),
            "chat_history": [
                {"role": _ROLES[msg.role], "message": _message_text(msg)}
                for msg in history
            ],
            "stream": True,
        }

        # Without a model the service picks its default
        model = config.model_for(MODEL_TYPE_CHAT)
        if model:
            body["model"] = model

        for field, wire_field in _SAMPLING_FIELDS:
            value = getattr(config, field)
            if value is not None:
                body[wire_field] = value

        if config.connectors:
            body["connectors"] = [{"id": connector} for connector in config.connectors]
        return body

    def stream(self, config: Config, conversation: Sequence[Message]) -> DeltaReader:
        body = self.build_request(config, conversation)
        logger.debug(f"Cohere chat: model={body.get('model', 'default')} messages={len(conversation)}")

        request = self.client.build_request("POST", "/v1/chat", json=body)
        try:
            response = self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ProviderError(f"Cohere request failed: {e}") from e
        self._raise_for_status(response)
        return DeltaReader(self._deltas(response), on_close=response.close)

    def _deltas(self, response: httpx.Response) -> Iterator[str]:
        try:
            for line in response.iter_lines():
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError as e:
                    raise ProviderError(f"malformed Cohere stream event: {line!r}") from e
                if event.get("event_type") == TEXT_GENERATION_EVENT:
                    yield event.get("text") or ""
        except httpx.HTTPError as e:
            raise ProviderError(f"Cohere stream failed: {e}") from e
        finally:
            response.close()

    def transcribe(self, config: Config, audio: AudioFile) -> List[AudioSegment]:
        raise UnsupportedCapabilityError("transcription is not supported by Cohere")

    def list_models(self) -> List[str]:
        data = self._get("/v1/models", params={"endpoint": "chat"})
        return [model["name"] for model in data.get("models", [])]

    def list_connectors(self) -> List[str]:
        data = self._get("/v1/connectors")
        return [connector["id"] for connector in data.get("connectors", [])]

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = self.client.get(path, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"Cohere request failed: {e}") from e
        self._raise_for_status(response)
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        response.read()
        detail = response.text
        response.close()
        if response.status_code == 429:
            raise RateLimitError(detail)
        raise ProviderError(
            f"Cohere returned HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )
