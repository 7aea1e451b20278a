"""Pydantic models for AI settings and model providers."""

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from .note import CamelModel

logger = logging.getLogger(__name__)


class ModelProvider(str, Enum):
    """Available model providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    UNIVERSAL = "universal"


class TaskSettings(CamelModel):
    """Provider and model selection for one AI task."""
    provider: ModelProvider = Field(default=ModelProvider.GEMINI)
    model: Optional[str] = Field(default=None, description="Model override for this task")

    @field_validator("provider", mode="before")
    @classmethod
    def fall_back_to_default_provider(cls, value: Any) -> Any:
        """Providers this backend does not ship (openai, anthropic, groq...) map to the default."""
        if isinstance(value, ModelProvider):
            return value
        try:
            return ModelProvider(value)
        except ValueError:
            logger.warning(f"Unsupported provider {value!r}; using {ModelProvider.GEMINI.value}")
            return ModelProvider.GEMINI


class TaskAssignments(CamelModel):
    chat: TaskSettings = Field(default_factory=TaskSettings)
    summary: TaskSettings = Field(default_factory=TaskSettings)


class UniversalSettings(CamelModel):
    """OpenAI-compatible endpoint settings (Ollama, LM Studio, vLLM...)."""
    base_url: str = Field(default="http://localhost:11434/v1")
    model_id: str = Field(default="llama3")


class AiSettings(CamelModel):
    """User AI preferences. API keys come from the environment, never from here."""
    tasks: TaskAssignments = Field(default_factory=TaskAssignments)
    universal: UniversalSettings = Field(default_factory=UniversalSettings)
    thinking_budget: Optional[int] = Field(
        default=None,
        ge=0,
        description="Thinking token budget forwarded to providers that support it",
    )


__all__ = ["AiSettings", "ModelProvider", "TaskAssignments", "TaskSettings", "UniversalSettings"]
