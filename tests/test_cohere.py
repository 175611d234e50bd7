"""Tests for the Cohere provider, over httpx.MockTransport."""

import io
import json

import httpx
import pytest

from llm_cmd.config import Config
from llm_cmd.errors import ProviderError, RateLimitError, UnsupportedCapabilityError
from llm_cmd.provider import AudioFile, CohereProvider, Message, Role
from llm_cmd.runner import user_message


def _provider(handler):
    client = httpx.Client(base_url="https://api.cohere.com", transport=httpx.MockTransport(handler))
    return CohereProvider(client=client)


def _ndjson(*events):
    return ("\n".join(json.dumps(e) for e in events) + "\n").encode("utf-8")


def test_request_body(config):
    cfg = Config(provider="cohere", temperature=0.3, top_p=0.8, top_k=5, connectors=["web-search"])
    provider = _provider(lambda request: httpx.Response(200))
    conversation = [
        user_message("hi"),
        Message(role=Role.ASSISTANT, content="hello"),
        user_message("what's new?"),
    ]

    body = provider.build_request(cfg, conversation)

    assert body == {
        "message": "what's new?",
        "chat_history": [
            {"role": "USER", "message": "hi"},
            {"role": "CHATBOT", "message": "hello"},
        ],
        "stream": True,
        "temperature": 0.3,
        "p": 0.8,
        "k": 5,
        "connectors": [{"id": "web-search"}],
    }


def test_model_only_sent_when_configured(config):
    provider = _provider(lambda request: httpx.Response(200))

    assert "model" not in provider.build_request(config, [user_message("hi")])
    cfg = Config(model={"chat": "command-r-plus"})
    assert provider.build_request(cfg, [user_message("hi")])["model"] == "command-r-plus"


def test_stream_yields_text_generation_events(config):
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, content=_ndjson(
            {"event_type": "stream-start", "generation_id": "g1"},
            {"event_type": "text-generation", "text": "Hello"},
            {"event_type": "search-results", "documents": []},
            {"event_type": "text-generation", "text": ", world"},
            {"event_type": "stream-end", "finish_reason": "COMPLETE"},
        ))

    reader = _provider(handler).stream(config, [user_message("hi")])

    assert reader.read() == b"Hello, world"
    assert seen[0][0] == "/v1/chat"
    assert seen[0][1]["stream"] is True


def test_rate_limit_status(config):
    provider = _provider(lambda request: httpx.Response(429, json={"message": "too many requests"}))

    with pytest.raises(RateLimitError, match="too many requests"):
        provider.stream(config, [user_message("hi")])


def test_error_status_includes_body(config):
    provider = _provider(lambda request: httpx.Response(400, json={"message": "invalid request"}))

    with pytest.raises(ProviderError, match="invalid request") as exc_info:
        provider.stream(config, [user_message("hi")])
    assert exc_info.value.status_code == 400


def test_malformed_event_raises_provider_error(config):
    provider = _provider(lambda request: httpx.Response(200, content=b"not json\n"))

    reader = provider.stream(config, [user_message("hi")])
    with pytest.raises(ProviderError):
        reader.read()


def test_unsupported_capabilities(config):
    provider = _provider(lambda request: httpx.Response(200))

    with pytest.raises(UnsupportedCapabilityError):
        provider.build_request(config, [user_message("what is this?", "data:image/png;base64,AA==")])
    with pytest.raises(UnsupportedCapabilityError):
        provider.transcribe(config, AudioFile(path="a.mp3", reader=io.BytesIO(b"")))


def test_listings():
    def handler(request):
        if request.url.path == "/v1/models":
            assert request.url.params["endpoint"] == "chat"
            return httpx.Response(200, json={"models": [{"name": "command-r"}, {"name": "command-r-plus"}]})
        if request.url.path == "/v1/connectors":
            return httpx.Response(200, json={"connectors": [{"id": "web-search", "name": "Web"}]})
        return httpx.Response(404)

    provider = _provider(handler)

    assert provider.list_models() == ["command-r", "command-r-plus"]
    assert provider.list_connectors() == ["web-search"]
