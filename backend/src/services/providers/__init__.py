"""LLM provider adapters."""

from .base import ProviderAdapter, ProviderError, ProviderResponse
from .factory import build_provider, default_model
from .gemini import GeminiAdapter
from .openai_compat import OpenAICompatibleAdapter, OpenRouterAdapter

__all__ = [
    "GeminiAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "ProviderAdapter",
    "ProviderError",
    "ProviderResponse",
    "build_provider",
    "default_model",
]
