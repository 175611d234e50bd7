"""Shared fixtures and fakes for llm-cmd tests."""

import io
import threading
from typing import List, Optional

import pytest

from llm_cmd.config import Config
from llm_cmd.provider import AudioSegment


class FakeProvider:
    """In-memory provider.

    stream() returns the next canned reply as a byte stream and records
    a copy of the conversation it was given.
    """

    def __init__(self, replies=(), segments: Optional[List[AudioSegment]] = None,
                 models=(), connectors=()):
        self.replies = list(replies)
        self.segments = segments or []
        self.models = list(models)
        self.connectors = list(connectors)
        self.conversations = []
        self.readers = []
        self.transcribed = []
        self.closed = False
        self._lock = threading.Lock()

    def stream(self, config, conversation):
        self.conversations.append(list(conversation))
        reply = self.replies.pop(0) if self.replies else ""
        reader = io.BytesIO(reply.encode("utf-8"))
        self.readers.append(reader)
        return reader

    def transcribe(self, config, audio):
        data = audio.reader.read()
        with self._lock:
            self.transcribed.append((audio.path, data))
        return list(self.segments)

    def list_models(self):
        return self.models

    def list_connectors(self):
        return self.connectors

    def close(self):
        self.closed = True


class RecordingExecutor:
    """Block executor that records blocks instead of running them."""

    def __init__(self, fail_on=()):
        self.blocks = []
        self.fail_on = fail_on

    def run(self, block):
        from llm_cmd.errors import BlockExecutionError

        self.blocks.append(block)
        if len(self.blocks) in self.fail_on:
            raise BlockExecutionError(f"block {len(self.blocks)} failed", exit_code=len(self.blocks))


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Point the persisted config at a temp file."""
    path = tmp_path / "home" / ".cmd" / "config.json"
    monkeypatch.setattr("llm_cmd.config.get_config_path", lambda: path)
    return path
