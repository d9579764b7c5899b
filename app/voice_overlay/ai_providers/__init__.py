"""AI provider registry.

Each entry pairs static metadata (for the settings screen and default-model
lookup) with a factory. Factories import their module on first use so an
unused vendor SDK is never loaded.
"""

from dataclasses import dataclass
from typing import Callable, Dict

from ..config import Config, OPENAI_MODELS, OPENROUTER_MODELS, GEMINI_MODELS, ANTHROPIC_MODELS
from ..models import ConfigField, ProviderDescriptor
from .base import AIProvider, ConverseOptions


@dataclass(frozen=True)
class ProviderEntry:
    descriptor: ProviderDescriptor
    factory: Callable[[Config], AIProvider]


def _openai(config: Config) -> AIProvider:
    from .openai_provider import OpenAIProvider
    return OpenAIProvider(config)


def _openrouter(config: Config) -> AIProvider:
    from .openrouter import OpenRouterProvider
    return OpenRouterProvider(config)


def _gemini(config: Config) -> AIProvider:
    from .gemini import GeminiProvider
    return GeminiProvider(config)


def _anthropic(config: Config) -> AIProvider:
    from .anthropic import AnthropicProvider
    return AnthropicProvider(config)


AI_PROVIDERS: Dict[str, ProviderEntry] = {
    "openai": ProviderEntry(
        ProviderDescriptor(
            id="openai",
            label="OpenAI",
            models=tuple(OPENAI_MODELS),
            default_model="gpt-4o-mini",
            config_fields=(ConfigField("openai_api_key", "API Key", "secret", placeholder="sk-..."),),
        ),
        _openai,
    ),
    "openrouter": ProviderEntry(
        ProviderDescriptor(
            id="openrouter",
            label="OpenRouter",
            models=tuple(OPENROUTER_MODELS),
            default_model="anthropic/claude-haiku-4-5",
            config_fields=(ConfigField("openrouter_api_key", "API Key", "secret", placeholder="sk-or-..."),),
        ),
        _openrouter,
    ),
    "gemini": ProviderEntry(
        ProviderDescriptor(
            id="gemini",
            label="Google Gemini",
            models=tuple(GEMINI_MODELS),
            default_model="gemini-2.0-flash",
            config_fields=(ConfigField("gemini_api_key", "API Key", "secret", placeholder="AIza..."),),
        ),
        _gemini,
    ),
    "anthropic": ProviderEntry(
        ProviderDescriptor(
            id="anthropic",
            label="Anthropic",
            models=tuple(ANTHROPIC_MODELS),
            default_model="claude-haiku-4-5-20251001",
            config_fields=(ConfigField("anthropic_api_key", "API Key", "secret", placeholder="sk-ant-..."),),
        ),
        _anthropic,
    ),
}

__all__ = ["AI_PROVIDERS", "AIProvider", "ConverseOptions", "ProviderEntry"]
