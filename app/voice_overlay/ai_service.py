"""Conversation client: resolves the active AI provider and runs one turn."""

import logging
from typing import Callable, Dict, List, Optional

from .ai_providers import AI_PROVIDERS, AIProvider, ConverseOptions, ProviderEntry
from .config import Config, get_system_prompt
from .errors import ErrorKind, ProviderError
from .models import Message, ProviderDescriptor, Screenshot, TokenUsage, WindowInfo
from .response_parser import clean_chunk, clean_output

logger = logging.getLogger(__name__)


class AIService:
    """Holds the current provider and turns session messages into a request.

    The provider id is read from config on every access; when it changes the
    old instance is torn down before the new one is created.
    """

    def __init__(self, config: Config, registry: Optional[Dict[str, ProviderEntry]] = None):
        self.config = config
        self._registry = AI_PROVIDERS if registry is None else registry
        self._provider: Optional[AIProvider] = None
        self._provider_id: Optional[str] = None
        self.last_usage: Optional[TokenUsage] = None

    def _entry(self) -> ProviderEntry:
        provider_id = self.config.ai_provider or "openai"
        entry = self._registry.get(provider_id)
        if entry is None:
            raise ProviderError(f"Unknown AI provider: {provider_id}", ErrorKind.NOT_CONFIGURED)
        return entry

    def get_descriptor(self) -> ProviderDescriptor:
        return self._entry().descriptor

    def get_provider(self) -> AIProvider:
        entry = self._entry()
        provider_id = entry.descriptor.id
        if self._provider_id != provider_id:
            if self._provider is not None:
                logger.info(f"AI provider changed: {self._provider_id} -> {provider_id}")
                self._provider.invalidate_client()
            self._provider = entry.factory(self.config)
            self._provider_id = provider_id
        return self._provider

    async def initialize(self) -> None:
        """Best-effort warmup; the real failure shows up on first use."""
        try:
            await self.get_provider().initialize()
        except Exception as e:
            logger.warning(f"AI provider init failed: {e}")

    def invalidate_client(self) -> None:
        if self._provider is not None:
            self._provider.invalidate_client()
        self._provider = None
        self._provider_id = None

    def get_model(self) -> str:
        return self.config.ai_model or self.get_descriptor().default_model

    @staticmethod
    def build_api_messages(
        messages: List[Message],
        screenshot: Optional[Screenshot],
        window_info: Optional[WindowInfo],
    ) -> List[dict]:
        """Provider-neutral request messages; the first user turn carries the screen context."""
        api_messages = []
        for i, message in enumerate(messages):
            if message.role != "user":
                api_messages.append({"role": "assistant", "content": message.content})
                continue

            parts = []
            prefix = ""
            if i == 0:
                if screenshot is not None:
                    parts.append({"type": "image", "media_type": screenshot.media_type, "data": screenshot.base64})
                if window_info is not None:
                    prefix = f'App: {window_info.owner or "unknown app"} - "{window_info.title or "unknown"}"\n\n'
                prefix += "Transcript:\n"
            parts.append({"type": "text", "text": f"{prefix}{message.content}"})
            api_messages.append({"role": "user", "content": parts})
        return api_messages

    async def converse(
        self,
        messages: List[Message],
        screenshot: Optional[Screenshot] = None,
        window_info: Optional[WindowInfo] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Run one turn over the full history and return the cleaned response text."""
        provider = self.get_provider()
        self.last_usage = None

        forward = None
        if on_chunk is not None:
            def forward(text: str) -> None:
                cleaned = clean_chunk(text)
                if cleaned:
                    on_chunk(cleaned)

        options = ConverseOptions(
            system_prompt=get_system_prompt(self.config),
            model=self.get_model(),
            max_tokens=self.config.ai_max_tokens,
            on_chunk=forward,
        )

        try:
            raw_text = await provider.converse(self.build_api_messages(messages, screenshot, window_info), options)
        except Exception as e:
            logger.error(f"Converse error: {e}")
            raise

        self.last_usage = provider.last_usage
        return clean_output(raw_text)

    def dispose(self) -> None:
        self.invalidate_client()
