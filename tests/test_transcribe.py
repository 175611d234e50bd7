"""Tests for the transcription worker pool and the batch command."""

import io
import json
import signal
import threading
import time
from pathlib import Path

import pytest
from click.testing import CliRunner

from llm_cmd import transcribe
from llm_cmd.config import Settings
from llm_cmd.errors import CmdError, ProviderError, RateLimitError, TranscriptionError
from llm_cmd.provider import AudioFile, AudioSegment, CacheProvider, cache_key
from llm_cmd.transcribe import (
    DEFAULT_RETRY_DELAY,
    TranscriptionPool,
    format_segments,
    interrupt_handler,
    parse_retry_after,
    retry_delay,
)


class ScriptedProvider:
    """Transcribes to the file name; sleeps or fails per file."""

    def __init__(self, delays=None, failures=None):
        self.delays = delays or {}
        self.failures = {name: list(errors) for name, errors in (failures or {}).items()}
        self.calls = []
        self._lock = threading.Lock()

    def transcribe(self, config, audio):
        name = Path(audio.path).name
        audio.reader.read()
        with self._lock:
            self.calls.append((name, time.monotonic()))
            pending = self.failures.get(name)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        time.sleep(self.delays.get(name, 0))
        return [AudioSegment(text=name)]


def _files(tmp_path, *names):
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(name.encode())
        paths.append(path)
    return paths


def test_parse_retry_after():
    assert parse_retry_after("Rate limit reached. Please try again in 6m6.125s. Visit") == 366.125
    assert parse_retry_after("Please try again in 0m0.10s.") == pytest.approx(0.1)
    assert parse_retry_after("Please try again in 6s.") is None
    assert parse_retry_after("internal error") is None


def test_retry_delay():
    assert retry_delay(RateLimitError("slow down")) == DEFAULT_RETRY_DELAY
    assert retry_delay(ProviderError("Please try again in 1m0.5s.")) == 60.5
    assert retry_delay(ProviderError("bad request")) is None


def test_results_keep_input_order(tmp_path, config):
    """Output order matches input order whatever the per-file latency."""
    paths = _files(tmp_path, "a.mp3", "b.mp3", "c.mp3", "d.mp3")
    provider = ScriptedProvider(delays={"a.mp3": 0.3, "b.mp3": 0.0, "c.mp3": 0.1, "d.mp3": 0.0})

    results = TranscriptionPool(provider, config, workers=2).run(paths)

    assert [segments[0].text for segments in results] == ["a.mp3", "b.mp3", "c.mp3", "d.mp3"]


def test_rate_limit_is_retried_after_delay(tmp_path, config):
    paths = _files(tmp_path, "a.mp3")
    provider = ScriptedProvider(failures={"a.mp3": [RateLimitError("Please try again in 0m0.10s.")]})

    started = time.monotonic()
    results = TranscriptionPool(provider, config, workers=1).run(paths)
    elapsed = time.monotonic() - started

    assert results == [[AudioSegment(text="a.mp3")]]
    assert len(provider.calls) == 2
    assert elapsed >= 0.1
    assert provider.calls[1][1] - provider.calls[0][1] >= 0.1


def test_fatal_error_stops_batch(tmp_path, config):
    paths = _files(tmp_path, "a.mp3", "b.mp3")
    cancel = threading.Event()
    provider = ScriptedProvider(failures={"a.mp3": [ProviderError("invalid file")]})

    with pytest.raises(TranscriptionError) as exc_info:
        TranscriptionPool(provider, config, workers=1, cancel=cancel).run(paths)

    assert exc_info.value.path == str(paths[0])
    assert "invalid file" in str(exc_info.value)
    assert cancel.is_set()


def test_cancelled_batch(tmp_path, config):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(CmdError, match="cancelled"):
        TranscriptionPool(ScriptedProvider(), config, cancel=cancel).run(_files(tmp_path, "a.mp3"))


def test_empty_batch(config):
    assert TranscriptionPool(ScriptedProvider(), config).run([]) == []


def test_workers_must_be_positive(config):
    with pytest.raises(ValueError):
        TranscriptionPool(ScriptedProvider(), config, workers=0)


def test_format_segments():
    segments = [AudioSegment(text="hi", start=0.0, end=1.5), AudioSegment(text="there", start=1.5, end=2.0)]

    assert format_segments(segments) == "0.0 - 1.5\nhi\n1.5 - 2.0\nthere"


class EchoProvider:
    """Transcribes each file to its content, counting calls."""

    def __init__(self):
        self.calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def transcribe(self, config, audio):
        data = audio.reader.read()
        with self._lock:
            self.calls += 1
        time.sleep(0.01)
        return [AudioSegment(text=data.decode())]

    def close(self):
        self.closed = True


def test_pool_shares_cache_provider(tmp_path, config):
    """Workers share one cache: results stay aligned and repeats are served from disk."""
    contents = [f"clip-{i % 5}" for i in range(20)]
    paths = []
    for i, content in enumerate(contents):
        path = tmp_path / f"{i:02d}.mp3"
        path.write_text(content)
        paths.append(path)
    cache_path = tmp_path / "cache.json"

    inner = EchoProvider()
    with CacheProvider(inner, cache_path) as cached:
        results = TranscriptionPool(cached, config, workers=4).run(paths)

    assert [segments[0].text for segments in results] == contents
    assert 5 <= inner.calls <= 20
    assert len(json.loads(cache_path.read_text())["audio_segments"]) == 5

    again = EchoProvider()
    with CacheProvider(again, cache_path) as cached:
        results = TranscriptionPool(cached, config, workers=4).run(paths)

    assert [segments[0].text for segments in results] == contents
    assert again.calls == 0


def test_interrupt_flushes_cache(tmp_path, config):
    cache_path = tmp_path / "cache.json"
    inner = EchoProvider()
    cached = CacheProvider(inner, cache_path)
    cached.transcribe(config, AudioFile(path="a.mp3", reader=io.BytesIO(b"partial batch")))
    cancel = threading.Event()

    with pytest.raises(SystemExit) as exc_info:
        interrupt_handler(cancel, cached)(signal.SIGINT, None)

    assert exc_info.value.code == 1
    assert cancel.is_set()
    assert inner.closed
    assert cache_key(b"partial batch") in json.loads(cache_path.read_text())["audio_segments"]


def test_transcribe_command(tmp_path, monkeypatch, config_path):
    """Files matching the pattern are printed in order and the cache is written."""
    monkeypatch.chdir(tmp_path)
    audio_dir = tmp_path / "talks"
    audio_dir.mkdir()
    (audio_dir / "b.mp3").write_bytes(b"second")
    (audio_dir / "a.mp3").write_bytes(b"first")
    (audio_dir / "notes.txt").write_text("not audio")

    inner = EchoProvider()
    handlers = []
    monkeypatch.setattr(transcribe, "get_settings", lambda: Settings(GROQ_API_KEY="gsk_test"))
    monkeypatch.setattr(transcribe, "new_provider", lambda cfg, settings: inner)
    monkeypatch.setattr(transcribe.signal, "signal", lambda signum, handler: handlers.append(signum))

    result = CliRunner().invoke(transcribe.main, [str(audio_dir), "-w", "2"])

    assert result.exit_code == 0, result.output
    assert result.output == "File 0:\n0.0 - 0.0\nfirst\nFile 1:\n0.0 - 0.0\nsecond\n"
    assert handlers == [signal.SIGINT]
    assert inner.closed
    cache = json.loads((tmp_path / ".cache" / "cache.json").read_text())
    assert set(cache["audio_segments"]) == {cache_key(b"first"), cache_key(b"second")}
