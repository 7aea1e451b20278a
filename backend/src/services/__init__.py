"""Service layer for business logic and external integrations."""

from .action_dispatcher import ActionDispatcher, get_tool_schemas
from .chat_history import ChatHistoryService
from .config import AppConfig, get_config, reload_config
from .conversation import ConversationTurnController
from .database import DatabaseService, init_database
from .export_import import ImportFormatError, export_json, export_markdown, parse_import
from .insights import InsightsService
from .local_store import ConstraintViolation, LocalStore, LocalStoreError
from .notebook import NotebookService, NotebookValidationError
from .optimistic import (
    InitializationError,
    InitializationGuard,
    OptimisticUpdateEngine,
    PersistenceError,
)
from .prompt_loader import PromptLoader, PromptLoaderError
from .state import StateStore
from .versioning import VersionRecorder

__all__ = [
    "ActionDispatcher",
    "AppConfig",
    "ChatHistoryService",
    "ConstraintViolation",
    "ConversationTurnController",
    "DatabaseService",
    "ImportFormatError",
    "InitializationError",
    "InitializationGuard",
    "InsightsService",
    "LocalStore",
    "LocalStoreError",
    "NotebookService",
    "NotebookValidationError",
    "OptimisticUpdateEngine",
    "PersistenceError",
    "PromptLoader",
    "PromptLoaderError",
    "StateStore",
    "VersionRecorder",
    "export_json",
    "export_markdown",
    "get_config",
    "get_tool_schemas",
    "init_database",
    "parse_import",
    "reload_config",
]
