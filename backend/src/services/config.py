"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "cogniflow.db"


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    db_path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite database file")
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API key")
    universal_api_key: Optional[str] = Field(
        default=None, description="Bearer token for the OpenAI-compatible endpoint (optional)"
    )
    universal_base_url: str = Field(
        default="http://localhost:11434/v1",
        description="Base URL of an OpenAI-compatible chat completions endpoint",
    )
    universal_model_id: str = Field(default="llama3", min_length=1)
    chat_provider: Literal["gemini", "openrouter", "universal"] = Field(default="gemini")
    chat_model: str = Field(default="gemini-2.5-flash", min_length=1)
    snapshot_debounce_seconds: float = Field(default=2.0, gt=0)
    snapshot_interval_seconds: float = Field(default=300.0, gt=0)
    seed_on_empty: bool = Field(default=True, description="Seed starter notes into an empty store")
    log_level: str = Field(default="INFO")

    @field_validator("db_path", mode="before")
    @classmethod
    def _normalize_db_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            return DEFAULT_DB_PATH
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("gemini_api_key", "openrouter_api_key", "universal_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("universal_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


def _read_flag(key: str, default: str = "true") -> bool:
    return (_read_env(key, default) or default).lower() not in {"0", "false", "no"}


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    config = AppConfig(
        db_path=_read_env("COGNIFLOW_DB_PATH"),
        gemini_api_key=_read_env("GEMINI_API_KEY"),
        openrouter_api_key=_read_env("OPENROUTER_API_KEY"),
        universal_api_key=_read_env("UNIVERSAL_API_KEY"),
        universal_base_url=_read_env("UNIVERSAL_BASE_URL", "http://localhost:11434/v1"),
        universal_model_id=_read_env("UNIVERSAL_MODEL_ID", "llama3"),
        chat_provider=_read_env("CHAT_PROVIDER", "gemini"),
        chat_model=_read_env("CHAT_MODEL", "gemini-2.5-flash"),
        snapshot_debounce_seconds=_read_env("SNAPSHOT_DEBOUNCE_SECONDS", "2.0"),
        snapshot_interval_seconds=_read_env("SNAPSHOT_INTERVAL_SECONDS", "300"),
        seed_on_empty=_read_flag("SEED_ON_EMPTY"),
        log_level=_read_env("LOG_LEVEL", "INFO"),
    )
    # Ensure the data directory exists for the database service.
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(config.log_level)


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "configure_logging", "get_config", "reload_config", "PROJECT_ROOT", "DEFAULT_DB_PATH"]
