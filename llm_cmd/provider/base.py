"""
Provider data types and capability interface.

A provider turns a conversation into a byte stream of generated text and
an audio file into timed transcript segments. The message types are
backend-agnostic; each provider maps them to its own wire dialect.
"""

from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, List, Optional, Protocol, Sequence, Union, runtime_checkable

from pydantic import BaseModel

from ..config import Config


class Role(str, Enum):
    """Conversation roles."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class TextPart:
    text: str


@dataclass
class ImagePart:
    """Inline image as a data URL (data:<mime>;base64,<payload>)."""

    data: str


MessagePart = Union[TextPart, ImagePart]


@dataclass
class Message:
    """A single conversational turn.

    Exactly one of 'content' (plain text) and 'parts' (multi-part body) is
    set. A multi-part body starts with a TextPart so that the question can
    be replaced while the attachments are kept.
    """

    role: Role
    content: Optional[str] = None
    parts: Optional[List[MessagePart]] = None

    def __post_init__(self):
        if (self.content is None) == (self.parts is None):
            raise ValueError("Message needs exactly one of 'content' or 'parts'")
        if self.parts is not None and (not self.parts or not isinstance(self.parts[0], TextPart)):
            raise ValueError("First part of a multi-part message must be text")

    @property
    def has_image(self) -> bool:
        return any(isinstance(part, ImagePart) for part in self.parts or ())

    @property
    def text(self) -> str:
        """Plain text of the message (text parts joined by newlines)."""
        if self.content is not None:
            return self.content
        return "\n".join(part.text for part in self.parts if isinstance(part, TextPart))


Conversation = List[Message]


@dataclass
class AudioFile:
    """Audio to transcribe. 'path' doubles as the upload filename."""

    path: str
    reader: BinaryIO


class AudioSegment(BaseModel):
    """One timed piece of a transcript."""

    text: str
    seek: int = 0
    start: float = 0.0
    end: float = 0.0


@runtime_checkable
class Provider(Protocol):
    """Capabilities of an LLM backend.

    Implementations:
        - ChatCompletionsProvider: OpenAI-compatible APIs (Groq)
        - CohereProvider: Cohere chat API
        - CacheProvider: decorator caching transcriptions on disk

    Operations a backend does not offer raise UnsupportedCapabilityError.
    """

    def stream(self, config: Config, conversation: Sequence[Message]) -> BinaryIO:
        """Start generating a reply to the last message.

        Returns:
            Readable byte stream of the reply text, in generation order.
            Closing it (or reading it to the end) releases the connection.
        """
        ...

    def transcribe(self, config: Config, audio: AudioFile) -> List[AudioSegment]:
        """Transcribe an audio file into ordered segments."""
        ...

    def list_models(self) -> List[str]:
        """Ids of the models the backend offers."""
        ...

    def list_connectors(self) -> List[str]:
        """Ids of the connectors (auxiliary data sources) available."""
        ...
