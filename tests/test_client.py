"""Tests for the collaborator HTTP client."""
import json

import aiohttp
import pytest

from thought_server.config import ModelConfig
from thought_server.core import ModelClient

MODEL = ModelConfig(name="test", model="m", api_url="http://model.test/v1/chat/completions")


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued responses; an exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def chat_body(content):
    return json.dumps({"choices": [{"message": {"content": content}}], "usage": {"total_tokens": 3}})


async def test_call_model_success():
    session = FakeSession(FakeResponse(200, chat_body('{"rating": 3}')))
    client = ModelClient(session, retry_attempts=1)

    result = await client.call_model(MODEL, [{"role": "user", "content": "hi"}], "key", "c1")

    assert result["success"]
    assert result["content"] == '{"rating": 3}'
    assert session.requests[0]["headers"]["Authorization"] == "Bearer key"
    assert session.requests[0]["json"]["model"] == "m"
    assert client.total_calls == 1


async def test_call_model_http_error():
    client = ModelClient(FakeSession(FakeResponse(500, "boom")), retry_attempts=1)
    result = await client.call_model(MODEL, [], "key")
    assert not result["success"]
    assert result["error"].startswith("HTTP 500")


async def test_call_model_malformed_body():
    client = ModelClient(FakeSession(FakeResponse(200, "{}")), retry_attempts=1)
    result = await client.call_model(MODEL, [], "key")
    assert not result["success"]
    assert "Malformed" in result["error"]


async def test_transport_errors_are_retried(monkeypatch):
    """Test that connection errors are retried before giving up."""
    monkeypatch.setattr("asyncio.sleep", _no_sleep)
    session = FakeSession(
        aiohttp.ClientConnectionError("reset"),
        FakeResponse(200, chat_body("ok")),
    )
    client = ModelClient(session, retry_attempts=2)

    result = await client.call_model(MODEL, [], "key")
    assert result == {"success": True, "content": "ok", "usage": {"total_tokens": 3}}
    assert len(session.requests) == 2


async def test_transport_errors_exhaust_retries(monkeypatch):
    monkeypatch.setattr("asyncio.sleep", _no_sleep)
    session = FakeSession(aiohttp.ClientConnectionError("reset"), aiohttp.ClientConnectionError("reset"))
    client = ModelClient(session, retry_attempts=2)

    result = await client.call_model(MODEL, [], "key")
    assert not result["success"]
    assert "reset" in result["error"]


async def test_transient_status_is_retried(monkeypatch):
    """Test that a 503 from the collaborator is asked again."""
    monkeypatch.setattr("asyncio.sleep", _no_sleep)
    session = FakeSession(FakeResponse(503, "busy"), FakeResponse(200, chat_body("ok")))
    client = ModelClient(session, retry_attempts=3)

    result = await client.call_model(MODEL, [], "key")
    assert result["success"]
    assert len(session.requests) == 2


async def test_transient_status_exhausts_retries(monkeypatch):
    monkeypatch.setattr("asyncio.sleep", _no_sleep)
    session = FakeSession(FakeResponse(429, "slow down"), FakeResponse(429, "slow down"))
    client = ModelClient(session, retry_attempts=2)

    result = await client.call_model(MODEL, [], "key")
    assert result == {"success": False, "error": "HTTP 429: slow down"}
    assert len(session.requests) == 2


async def test_client_errors_are_not_retried():
    session = FakeSession(FakeResponse(400, "bad request"), FakeResponse(200, chat_body("ok")))
    client = ModelClient(session, retry_attempts=3)

    result = await client.call_model(MODEL, [], "key")
    assert result["error"] == "HTTP 400: bad request"
    assert len(session.requests) == 1


async def test_embed_orders_by_index():
    body = json.dumps({"data": [
        {"index": 1, "embedding": [0, 1]},
        {"index": 0, "embedding": [1, 0]},
    ]})
    client = ModelClient(FakeSession(FakeResponse(200, body)), retry_attempts=1)

    result = await client.embed(MODEL, ["a", "b"], "key")
    assert result == {"success": True, "embeddings": [[1.0, 0.0], [0.0, 1.0]]}


@pytest.mark.parametrize("status, body", [(429, "slow down"), (200, '{"data": [{}]}')])
async def test_embed_failures(status, body):
    client = ModelClient(FakeSession(FakeResponse(status, body)), retry_attempts=1)
    result = await client.embed(MODEL, ["a"], "key")
    assert not result["success"]


async def _no_sleep(seconds):
    return None
