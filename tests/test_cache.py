"""Tests for the transcription cache decorator."""

import io
import json
import threading

import pytest
from pydantic import ValidationError

from llm_cmd.errors import ConfigurationError
from llm_cmd.provider import AudioFile, AudioSegment, CacheProvider, cache_key
from llm_cmd.runner import user_message

from conftest import FakeProvider

SEGMENTS = [AudioSegment(text="hello", start=0.0, end=1.0)]


def _audio(path, data=b"RIFF....WAVEfmt "):
    return AudioFile(path=path, reader=io.BytesIO(data))


def test_repeat_transcription_is_served_from_cache(tmp_path, config):
    """The wrapped provider is called once per distinct audio, also after reopening."""
    cache_path = tmp_path / "nested" / "cache.json"
    inner = FakeProvider(segments=SEGMENTS)

    with CacheProvider(inner, cache_path) as cached:
        assert cached.transcribe(config, _audio("a.wav")) == SEGMENTS
        assert cached.transcribe(config, _audio("a.wav")) == SEGMENTS
    assert len(inner.transcribed) == 1
    assert cache_path.exists()

    reopened_inner = FakeProvider(segments=[AudioSegment(text="different")])
    reopened = CacheProvider(reopened_inner, cache_path)
    assert reopened.transcribe(config, _audio("a.wav")) == SEGMENTS
    assert reopened_inner.transcribed == []


def test_key_is_content_addressed(tmp_path, config):
    """Same bytes under another file name hit the cache."""
    inner = FakeProvider(segments=SEGMENTS)
    cached = CacheProvider(inner, tmp_path / "cache.json")

    cached.transcribe(config, _audio("first.mp3", b"same audio"))
    cached.transcribe(config, _audio("renamed.mp3", b"same audio"))
    cached.transcribe(config, _audio("first.mp3", b"other audio"))

    assert [data for _, data in inner.transcribed] == [b"same audio", b"other audio"]


def test_miss_forwards_full_audio(tmp_path, config):
    inner = FakeProvider(segments=SEGMENTS)
    cached = CacheProvider(inner, tmp_path / "cache.json")

    cached.transcribe(config, _audio("talk.mp3", b"0123456789"))

    assert inner.transcribed == [("talk.mp3", b"0123456789")]


def test_cache_file_layout(tmp_path, config):
    cache_path = tmp_path / "cache.json"
    with CacheProvider(FakeProvider(segments=SEGMENTS), cache_path) as cached:
        cached.transcribe(config, _audio("a.mp3", b"abc"))

    data = json.loads(cache_path.read_text())
    assert data == {
        "audio_segments": {
            cache_key(b"abc"): [{"text": "hello", "seek": 0, "start": 0.0, "end": 1.0}],
        }
    }


def test_cache_key_is_urlsafe_base64_sha256():
    key = cache_key(b"")

    assert key == "47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU="
    assert cache_key(b"a") != key


def test_stream_and_listings_pass_through(tmp_path, config):
    inner = FakeProvider(replies=["hi"], models=["m1"], connectors=["c1"])
    cached = CacheProvider(inner, tmp_path / "cache.json")

    assert cached.stream(config, [user_message("hello")]).read() == b"hi"
    assert cached.list_models() == ["m1"]
    assert cached.list_connectors() == ["c1"]


def test_malformed_cache_file(tmp_path):
    cache_path = tmp_path / "cache.json"
    cache_path.write_text("{not json")

    with pytest.raises(ConfigurationError, match="malformed cache file") as exc_info:
        CacheProvider(FakeProvider(), cache_path)

    assert isinstance(exc_info.value.__cause__, ValidationError)


def test_concurrent_transcriptions_all_recorded(tmp_path, config):
    """Threads sharing one cache lose no entries."""
    cache_path = tmp_path / "cache.json"
    cached = CacheProvider(FakeProvider(segments=SEGMENTS), cache_path)
    contents = [f"audio-{i}".encode() for i in range(50)]

    threads = [
        threading.Thread(target=cached.transcribe, args=(config, _audio(f"{i}.mp3", data)))
        for i, data in enumerate(contents)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    cached.close()

    stored = json.loads(cache_path.read_text())["audio_segments"]
    assert set(stored) == {cache_key(data) for data in contents}
