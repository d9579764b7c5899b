"""Google Gemini provider using the google-genai SDK."""

import base64
import logging
from typing import List, Optional

import httpx
from google import genai
from google.genai import errors, types

from ..errors import ErrorKind, ProviderError, kind_for_status
from ..models import TokenUsage
from .base import AIProvider, ApiMessage, ConverseOptions

logger = logging.getLogger(__name__)


def to_gemini_contents(messages: List[ApiMessage]) -> List[types.Content]:
    contents = []
    for message in messages:
        role = "model" if message["role"] == "assistant" else "user"
        content = message["content"]
        if isinstance(content, str):
            parts = [types.Part.from_text(text=content)]
        else:
            parts = []
            for part in content:
                if part["type"] == "image":
                    parts.append(types.Part.from_bytes(
                        data=base64.b64decode(part["data"]),
                        mime_type=part["media_type"],
                    ))
                else:
                    parts.append(types.Part.from_text(text=part["text"]))
        contents.append(types.Content(role=role, parts=parts))
    return contents


class GeminiProvider(AIProvider):
    """Streams from Gemini through ``client.aio``."""

    def __init__(self, config):
        super().__init__(config)
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.config.gemini_api_key:
                raise ProviderError("Gemini API key not configured", ErrorKind.NOT_CONFIGURED)
            self._client = genai.Client(api_key=self.config.gemini_api_key)
        return self._client

    async def initialize(self) -> None:
        if not self.config.gemini_api_key:
            logger.warning("Gemini API key not set")
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
            stream = await client.aio.models.generate_content_stream(
                model=options.model,
                contents=to_gemini_contents(messages),
                config=types.GenerateContentConfig(
                    system_instruction=options.system_prompt,
                    max_output_tokens=options.max_tokens,
                ),
            )
            async for chunk in stream:
                if chunk.usage_metadata:
                    usage = TokenUsage(
                        input_tokens=chunk.usage_metadata.prompt_token_count or 0,
                        output_tokens=chunk.usage_metadata.candidates_token_count or 0,
                    )
                delta = chunk.text
                if delta:
                    text += delta
                    if options.on_chunk:
                        options.on_chunk(text)
        except errors.APIError as e:
            raise ProviderError(
                f"Gemini API error {e.code}: {e.message}",
                kind_for_status(e.code),
                status=e.code,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(f"Gemini connection failed: {e}", ErrorKind.CONNECTION) from e

        self.last_usage = usage
        return text
