"""
Provider decorator caching transcriptions on disk.

Transcriptions are keyed by the content of the audio (url-safe base64 of
its SHA-256), so the same recording under another name is still a hit.
Chat streams are passed through uncached.

The cache file is loaded once at construction and written back by
close(). Concurrent use from several processes is not supported.
"""

import base64
import hashlib
import io
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Dict, List, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from ..config import Config
from ..errors import ConfigurationError
from ..paths import DEFAULT_CACHE_PATH
from .base import AudioFile, AudioSegment, Message, Provider

logger = logging.getLogger(__name__)


class CacheIndex(BaseModel):
    """On-disk cache layout."""

    audio_segments: Dict[str, List[AudioSegment]] = Field(default_factory=dict)


def cache_key(data: bytes) -> str:
    """Content-addressed key for a piece of audio.

    Example:
        >>> cache_key(b"")
        '47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU='
    """
    return base64.urlsafe_b64encode(hashlib.sha256(data).digest()).decode("ascii")


class CacheProvider:
    """Wrap a provider, serving repeated transcriptions from disk.

    The in-memory index is guarded by a lock so the transcription worker
    pool can share one instance. The lock is not held while the wrapped
    provider works; two concurrent misses on the same audio both fetch.
    """

    def __init__(self, provider: Provider, cache_path: Union[str, Path] = DEFAULT_CACHE_PATH):
        self.provider = provider
        self.cache_path = Path(cache_path)
        self._lock = threading.Lock()
        self._index = self._load()

    def _load(self) -> CacheIndex:
        try:
            data = self.cache_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CacheIndex()
        try:
            index = CacheIndex.model_validate_json(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"malformed cache file {self.cache_path}: {e}",
                hint="Delete the file to start with an empty cache",
            ) from e
        logger.debug(f"Loaded {len(index.audio_segments)} cached transcriptions from {self.cache_path}")
        return index

    def stream(self, config: Config, conversation: Sequence[Message]) -> BinaryIO:
        return self.provider.stream(config, conversation)

    def list_models(self) -> List[str]:
        return self.provider.list_models()

    def list_connectors(self) -> List[str]:
        return self.provider.list_connectors()

    def transcribe(self, config: Config, audio: AudioFile) -> List[AudioSegment]:
        data = audio.reader.read()
        key = cache_key(data)

        with self._lock:
            cached = self._index.audio_segments.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {audio.path}")
            return list(cached)

        logger.debug(f"Cache miss for {audio.path}")
        segments = self.provider.transcribe(config, AudioFile(path=audio.path, reader=io.BytesIO(data)))
        with self._lock:
            self._index.audio_segments[key] = list(segments)
        return segments

    def close(self) -> None:
        """Write the cache file, then close the wrapped provider."""
        with self._lock:
            payload = self._index.model_dump_json(indent=2)
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache_path.write_text(payload, encoding="utf-8")
        logger.debug(f"Wrote transcription cache to {self.cache_path}")

        close = getattr(self.provider, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "CacheProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
