from __future__ import annotations

import json

import httpx
import pytest

from coursemind.errors import StructuringError
from coursemind.llm_client import STRUCTURE_PROMPT, OllamaClient


def _client(handler) -> OllamaClient:
    return OllamaClient(
        base_url="http://ollama.test",
        model="test-model",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


async def test_structure_content_sends_prompt_and_returns_markdown():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "  # Cells\n\nText.  "}})

    result = await _client(handler).structure_content("cells text")

    assert result == "# Cells\n\nText."
    payload = requests[0]
    assert payload["model"] == "test-model"
    assert payload["stream"] is False
    assert payload["options"] == {"temperature": 0.1}
    assert payload["messages"][0] == {"role": "system", "content": STRUCTURE_PROMPT}
    assert payload["messages"][1] == {"role": "user", "content": "cells text"}


async def test_http_error_becomes_structuring_error():
    def handler(request):
        return httpx.Response(500, json={"error": "model crashed"})

    with pytest.raises(StructuringError, match="Ollama request failed"):
        await _client(handler).structure_content("text")


async def test_connection_error_becomes_structuring_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StructuringError):
        await _client(handler).structure_content("text")


async def test_empty_reply_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"message": {"content": "   "}})

    with pytest.raises(StructuringError, match="Empty response"):
        await _client(handler).structure_content("text")


async def test_list_models():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "gemma3:12b"}, {"name": "llama3"}]})

    assert await _client(handler).list_models() == ["gemma3:12b", "llama3"]
