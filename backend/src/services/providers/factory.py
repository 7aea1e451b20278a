"""Build provider adapters from configuration."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ...models.settings import AiSettings, ModelProvider
from ..config import AppConfig
from .base import ProviderAdapter, ProviderError
from .gemini import GeminiAdapter
from .openai_compat import OpenAICompatibleAdapter, OpenRouterAdapter

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    ModelProvider.GEMINI: "gemini-2.5-flash",
    ModelProvider.OPENROUTER: "google/gemini-2.5-flash",
}


def build_provider(
    config: AppConfig,
    name: Optional[str] = None,
    settings: Optional[AiSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderAdapter:
    """Return the adapter for ``name`` (defaults to the configured chat provider).

    Raises:
        ProviderError: unknown provider or missing API key.
    """
    try:
        provider = ModelProvider(name or config.chat_provider)
    except ValueError as e:
        raise ProviderError(f"Unknown provider: {name}") from e

    if provider == ModelProvider.GEMINI:
        if not config.gemini_api_key:
            raise ProviderError("Gemini API key is not configured (GEMINI_API_KEY).")
        return GeminiAdapter(api_key=config.gemini_api_key, transport=transport)

    if provider == ModelProvider.OPENROUTER:
        if not config.openrouter_api_key:
            raise ProviderError("OpenRouter API key is not configured (OPENROUTER_API_KEY).")
        return OpenRouterAdapter(api_key=config.openrouter_api_key, transport=transport)

    base_url = settings.universal.base_url if settings else config.universal_base_url
    return OpenAICompatibleAdapter(
        base_url=base_url, api_key=config.universal_api_key, transport=transport
    )


def default_model(
    config: AppConfig, name: Optional[str] = None, settings: Optional[AiSettings] = None
) -> str:
    """Model id to use for ``name`` when the caller did not choose one."""
    provider = ModelProvider(name or config.chat_provider)
    if provider == ModelProvider.UNIVERSAL:
        return settings.universal.model_id if settings else config.universal_model_id
    if provider.value == config.chat_provider:
        return config.chat_model
    return DEFAULT_MODELS[provider]


__all__ = ["DEFAULT_MODELS", "build_provider", "default_model"]
