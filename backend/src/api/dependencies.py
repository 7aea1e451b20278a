"""Service container built once per app and FastAPI dependency helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request

from ..services.chat_history import ChatHistoryService
from ..services.config import AppConfig
from ..services.local_store import LocalStore
from ..services.notebook import NotebookService
from ..services.prompt_loader import PromptLoader
from ..services.providers import ProviderAdapter, build_provider
from ..services.versioning import VersionRecorder

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[Optional[str]], ProviderAdapter]


@dataclass
class AppServices:
    config: AppConfig
    store: LocalStore
    notebook: NotebookService
    recorder: VersionRecorder
    chat_history: ChatHistoryService
    prompt_loader: PromptLoader


def build_services(config: AppConfig) -> AppServices:
    store = LocalStore.at_path(config.db_path)
    notebook = NotebookService(store, seed_on_empty=config.seed_on_empty)
    recorder = VersionRecorder(
        store,
        notebook,
        debounce=config.snapshot_debounce_seconds,
        interval=config.snapshot_interval_seconds,
    )
    return AppServices(
        config=config,
        store=store,
        notebook=notebook,
        recorder=recorder,
        chat_history=ChatHistoryService(store),
        prompt_loader=PromptLoader(),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


async def get_notebook(services: AppServices = Depends(get_services)) -> NotebookService:
    """Notebook with the workspace loaded (retries a failed startup load)."""
    await services.notebook.initialize()
    return services.notebook


def get_recorder(services: AppServices = Depends(get_services)) -> VersionRecorder:
    return services.recorder


def get_chat_history(services: AppServices = Depends(get_services)) -> ChatHistoryService:
    return services.chat_history


def get_provider_builder(services: AppServices = Depends(get_services)) -> ProviderBuilder:
    def _build(name: Optional[str] = None) -> ProviderAdapter:
        return build_provider(services.config, name, services.notebook.state.settings)

    return _build


__all__ = [
    "AppServices",
    "ProviderBuilder",
    "build_services",
    "get_chat_history",
    "get_notebook",
    "get_provider_builder",
    "get_recorder",
    "get_services",
]
