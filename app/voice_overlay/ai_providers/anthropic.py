"""Anthropic Messages API provider, streamed as raw server-sent events over httpx."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ErrorKind, ProviderError, kind_for_status
from ..models import TokenUsage
from .base import AIProvider, ApiMessage, ConverseOptions, CONNECT_TIMEOUT, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"


def to_anthropic_messages(messages: List[ApiMessage]) -> List[Dict[str, Any]]:
    result = []
    for message in messages:
        content = message["content"]
        if isinstance(content, str):
            result.append({"role": message["role"], "content": content})
            continue
        parts = []
        for part in content:
            if part["type"] == "image":
                parts.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": part["media_type"], "data": part["data"]},
                })
            else:
                parts.append({"type": "text", "text": part["text"]})
        result.append({"role": message["role"], "content": parts})
    return result


class AnthropicProvider(AIProvider):
    """Streams ``/v1/messages`` and accumulates ``content_block_delta`` text."""

    def __init__(self, config, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._closing: set = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self.config.anthropic_api_key:
                raise ProviderError("Anthropic API key not configured", ErrorKind.NOT_CONFIGURED)
            self._client = httpx.AsyncClient(
                base_url=ANTHROPIC_BASE_URL,
                headers={
                    "x-api-key": self.config.anthropic_api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=CONNECT_TIMEOUT),
                transport=self._transport,
            )
        return self._client

    async def initialize(self) -> None:
        if not self.config.anthropic_api_key:
            logger.warning("Anthropic API key not set")

    def invalidate_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, leaving Anthropic client to be collected")
            return
        task = loop.create_task(client.aclose())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def converse(self, messages: List[ApiMessage], options: ConverseOptions) -> str:
        client = self._get_client()
        self.last_usage = None
        body = {
            "model": options.model,
            "max_tokens": options.max_tokens,
            "system": options.system_prompt,
            "stream": True,
            "messages": to_anthropic_messages(messages),
        }

        text = ""
        usage = TokenUsage()
        saw_usage = False

        try:
            async with client.stream("POST", "/v1/messages", json=body) as response:
                if response.status_code != 200:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        f"Anthropic API {response.status_code}: {error_body[:200]}",
                        kind_for_status(response.status_code),
                        status=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if not data or data == "[DONE]":
                        continue
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping unparsable SSE line: {data[:80]}")
                        continue

                    event_type = event.get("type")
                    if event_type == "content_block_delta":
                        delta = (event.get("delta") or {}).get("text")
                        if delta:
                            text += delta
                            if options.on_chunk:
                                options.on_chunk(text)
                    elif event_type == "message_start":
                        start_usage = (event.get("message") or {}).get("usage") or {}
                        if "input_tokens" in start_usage:
                            usage.input_tokens = start_usage["input_tokens"] or 0
                            saw_usage = True
                    elif event_type == "message_delta":
                        delta_usage = event.get("usage") or {}
                        if "output_tokens" in delta_usage:
                            usage.output_tokens = delta_usage["output_tokens"] or 0
                            saw_usage = True
                    elif event_type == "error":
                        error = event.get("error") or {}
                        kind = ErrorKind.RATE_LIMITED if error.get("type") == "overloaded_error" else ErrorKind.UNKNOWN
                        raise ProviderError(f"Anthropic stream error: {error.get('message', data[:200])}", kind)
        except httpx.TransportError as e:
            raise ProviderError(f"Anthropic connection failed: {e}", ErrorKind.CONNECTION) from e

        self.last_usage = usage if saw_usage else None
        return text
