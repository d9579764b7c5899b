"""OpenRouter provider using the OpenAI-compatible endpoint."""

from typing import Any, Dict

from .openai_provider import OpenAIProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter chat via the OpenAI SDK."""

    label = "OpenRouter"
    base_url = OPENROUTER_BASE_URL

    def _api_key(self) -> str:
        return self.config.openrouter_api_key

    def _client_kwargs(self) -> Dict[str, Any]:
        return {"default_headers": {"X-Title": "Voice Overlay"}}

    def _request_kwargs(self) -> Dict[str, Any]:
        # OpenRouter reports usage when asked through the request body
        return {
            "stream_options": {"include_usage": True},
            "extra_body": {"usage": {"include": True}},
        }
