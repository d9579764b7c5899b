"""Tests for the OpenAI-compatible provider against a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

from voice_overlay.ai_providers.base import ConverseOptions
from voice_overlay.ai_providers.openai_provider import OpenAIProvider, to_openai_messages
from voice_overlay.config import Config
from voice_overlay.errors import ErrorKind, ProviderError


def chunk(content=None, usage=None):
    body = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 0,
        "model": "gpt-4o-mini",
        "choices": [] if content is None else [{"index": 0, "delta": {"content": content}, "finish_reason": None}],
    }
    if usage is not None:
        body["usage"] = usage
    return f"data: {json.dumps(body)}\n\n"


class MockedOpenAIProvider(OpenAIProvider):
    def __init__(self, config, handler):
        super().__init__(config)
        self.handler = handler

    def _client_kwargs(self):
        return {"http_client": httpx.AsyncClient(transport=httpx.MockTransport(self.handler)), "max_retries": 0}


def test_stream_accumulates_text_and_usage():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        stream = (
            chunk("Use ")
            + chunk("find.")
            + chunk(usage={"prompt_tokens": 50, "completion_tokens": 3, "total_tokens": 53})
            + "data: [DONE]\n\n"
        )
        return httpx.Response(200, content=stream.encode("utf-8"), headers={"content-type": "text/event-stream"})

    provider = MockedOpenAIProvider(Config(openai_api_key="sk-test"), handler)
    chunks = []
    messages = [{"role": "user", "content": [{"type": "text", "text": "find files"}]}]
    text = asyncio.run(provider.converse(messages, ConverseOptions("Be brief.", "gpt-4o-mini", on_chunk=chunks.append)))

    assert text == "Use find."
    assert chunks == ["Use ", "Use find."]
    assert (provider.last_usage.input_tokens, provider.last_usage.output_tokens) == (50, 3)
    assert requests[0]["messages"][0] == {"role": "system", "content": "Be brief."}
    assert requests[0]["stream_options"] == {"include_usage": True}


def test_auth_failure_is_typed():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}})

    provider = MockedOpenAIProvider(Config(openai_api_key="sk-bad"), handler)
    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.converse([{"role": "user", "content": "hi"}], ConverseOptions("", "gpt-4o-mini")))
    assert exc_info.value.kind is ErrorKind.AUTH_FAILED
    assert exc_info.value.status == 401


def test_missing_key():
    provider = OpenAIProvider(Config(openai_api_key=""))
    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.converse([], ConverseOptions("", "gpt-4o-mini")))
    assert exc_info.value.kind is ErrorKind.NOT_CONFIGURED
    assert str(exc_info.value) == "OpenAI API key not configured"


def test_image_becomes_data_url():
    messages = [{"role": "user", "content": [
        {"type": "image", "media_type": "image/png", "data": "aW1n"},
        {"type": "text", "text": "what is this"},
    ]}]
    converted = to_openai_messages(messages, "sys")
    assert converted[1]["content"][0] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aW1n"}}
    assert converted[1]["content"][1] == {"type": "text", "text": "what is this"}
