"""OpenAI chat completions provider (also the base for OpenAI-compatible APIs)."""

import logging
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..errors import ErrorKind, ProviderError, kind_for_status
from ..models import TokenUsage
from .base import AIProvider, ApiMessage, ConverseOptions, CONNECT_TIMEOUT, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


def to_openai_messages(messages: List[ApiMessage], system_prompt: str) -> List[Dict[str, Any]]:
    """Convert neutral messages to chat-completions format."""
    result: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in messages:
        content = message["content"]
        if isinstance(content, str):
            result.append({"role": message["role"], "content": content})
            continue
        parts = []
        for part in content:
            if part["type"] == "image":
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{part['media_type']};base64,{part['data']}"},
                })
            else:
                parts.append({"type": "text", "text": part["text"]})
        result.append({"role": message["role"], "content": parts})
    return result


class OpenAIProvider(AIProvider):
    """Streams from the OpenAI chat completions API."""

    label = "OpenAI"
    base_url: Optional[str] = None

    def __init__(self, config):
        super().__init__(config)
        self._client: Optional[AsyncOpenAI] = None

    def _api_key(self) -> str:
        return self.config.openai_api_key

    def _client_kwargs(self) -> Dict[str, Any]:
        return {}

    def _request_kwargs(self) -> Dict[str, Any]:
        return {"stream_options": {"include_usage": True}}

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self._api_key()
            if not api_key:
                raise ProviderError(f"{self.label} API key not configured", ErrorKind.NOT_CONFIGURED)
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.base_url,
                timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=CONNECT_TIMEOUT),
                **self._client_kwargs(),
            )
        return self._client

    async def initialize(self) -> None:
        if not self._api_key():
            logger.warning(f"{self.label} API key not set")
            return
        self._get_client()

    def invalidate_client(self) -> None:
        self._client = None

    async def converse(self, messages: List[ApiMessage], options: ConverseOptions) -> str:
        client = self._get_client()
        self.last_usage = None
        text = ""
        usage: Optional[TokenUsage] = None

        try:
            stream = await client.chat.completions.create(
                model=options.model,
                messages=to_openai_messages(messages, options.system_prompt),
                max_tokens=options.max_tokens,
                stream=True,
                **self._request_kwargs(),
            )
            async for chunk in stream:
                if chunk.usage:
                    usage = TokenUsage(
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content if chunk.choices[0].delta else None
                if delta:
                    text += delta
                    if options.on_chunk:
                        options.on_chunk(text)
        except openai.APIConnectionError as e:
            raise ProviderError(f"{self.label} connection failed: {e}", ErrorKind.CONNECTION) from e
        except openai.APIStatusError as e:
            raise ProviderError(
                f"{self.label} API error {e.status_code}: {e.message}",
                kind_for_status(e.status_code),
                status=e.status_code,
            ) from e

        self.last_usage = usage
        return text
