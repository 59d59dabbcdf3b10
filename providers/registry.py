"""Builds configured provider adapters from settings."""
from typing import Optional

import httpx

from config import settings
from providers.base import BaseProvider, ProviderConfig
from providers.claude import ClaudeProvider
from providers.gemini import GeminiProvider
from providers.gpt import DeepSeekProvider, GrokProvider, OpenAIProvider

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "claude":   ClaudeProvider,
    "gpt4":     OpenAIProvider,
    "deepseek": DeepSeekProvider,
    "gemini":   GeminiProvider,
    "grok":     GrokProvider,
}

API_KEYS = {
    "claude":   lambda: settings.ANTHROPIC_API_KEY,
    "gpt4":     lambda: settings.OPENAI_API_KEY,
    "deepseek": lambda: settings.DEEPSEEK_API_KEY,
    "gemini":   lambda: settings.GOOGLE_AI_API_KEY,
    "grok":     lambda: settings.GROK_API_KEY,
}


def provider_config(name: str) -> ProviderConfig:
    if name not in PROVIDER_CLASSES:
        raise KeyError(f"Unknown AI provider: {name}")
    return ProviderConfig(
        name=name,
        api_key=API_KEYS[name](),
        model=settings.PROVIDER_MODELS[name],
        base_url=settings.PROVIDER_BASE_URLS[name],
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def build_providers(names: Optional[list[str]] = None,
                    client: Optional[httpx.AsyncClient] = None) -> list[BaseProvider]:
    """Adapters in declaration order (AI_PROVIDERS unless *names* is given)."""
    names = names if names is not None else settings.AI_PROVIDERS
    return [PROVIDER_CLASSES[n](provider_config(n), client=client) for n in names]
