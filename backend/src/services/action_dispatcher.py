"""Action Dispatcher - executes model tool calls against the notebook.

Every tool call ends as a text result for the model. Validation problems,
unknown tools and failed writes are all reported as ``Error: ...`` strings;
nothing raises past :meth:`ActionDispatcher.execute`.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.chat import AiAction
from ..models.note import NOTE_KINDS
from .notebook import NotebookService, NotebookValidationError
from .optimistic import PersistenceError

logger = logging.getLogger(__name__)

TOOLS_FILE = Path(__file__).resolve().parent.parent.parent / "prompts" / "tools.json"

ConfirmCallback = Callable[[AiAction], Awaitable[bool]]


class ToolArgumentError(ValueError):
    """Malformed or missing tool argument."""


@lru_cache(maxsize=4)
def load_tool_schemas(path: Path = TOOLS_FILE) -> Dict[str, Any]:
    """Load tool declarations from JSON (cached per path)."""
    if not path.exists():
        logger.error(f"Tool schemas not found at {path}")
        return {"tools": []}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse tool schemas: {e}")
        return {"tools": []}
    logger.info(f"Loaded tool schemas from {path}")
    return data


def get_tool_schemas(format: str = "openai", path: Path = TOOLS_FILE) -> List[Dict[str, Any]]:
    """Tool declarations shaped for a provider.

    ``openai`` returns ``[{"type": "function", "function": {...}}]``;
    ``gemini`` returns a single ``{"functionDeclarations": [...]}`` tool.
    """
    functions = [tool.get("function", {}) for tool in load_tool_schemas(path).get("tools", [])]
    if format == "openai":
        return [{"type": "function", "function": fn} for fn in functions]
    if format == "gemini":
        declarations = []
        for fn in functions:
            declaration = {"name": fn["name"], "description": fn.get("description", "")}
            # Gemini rejects OBJECT parameters with no properties.
            if fn.get("parameters", {}).get("properties"):
                declaration["parameters"] = fn["parameters"]
            declarations.append(declaration)
        return [{"functionDeclarations": declarations}]
    raise ValueError(f"Unknown tool schema format: {format}")


def _require_str(args: Dict[str, Any], key: str) -> str:
    if key not in args or args[key] is None:
        raise ToolArgumentError(f"Missing required argument '{key}'.")
    value = args[key]
    if not isinstance(value, str):
        raise ToolArgumentError(f"Argument '{key}' must be a string.")
    return value


def _optional_str(args: Dict[str, Any], key: str) -> Optional[str]:
    value = args.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ToolArgumentError(f"Argument '{key}' must be a string.")
    return value


def _optional_str_list(args: Dict[str, Any], key: str) -> List[str]:
    value = args.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ToolArgumentError(f"Argument '{key}' must be a list of strings.")
    return value


def clean_content(content: str) -> str:
    """Collapse 3+ newlines to a blank line, squeeze runs of spaces, trim."""
    cleaned = re.sub(r"\n{3,}", "\n\n", content)
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    return cleaned.strip()


class ActionDispatcher:
    """Map a named tool invocation to a notebook read or mutation."""

    def __init__(
        self,
        notebook: NotebookService,
        confirm: Optional[ConfirmCallback] = None,
        model_used: str = "assistant",
    ) -> None:
        self.notebook = notebook
        self.confirm = confirm
        self.model_used = model_used

        self._tools: Dict[str, Callable[[Dict[str, Any]], Awaitable[str]]] = {
            # Reads
            "get_note_content": self._get_note_content,
            "list_folders": self._list_folders,
            "explain_note_connections": self._explain_note_connections,
            # Notes
            "create_note": self._create_note,
            "create_note_from_conversation": self._create_note_from_conversation,
            "set_note_metadata": self._set_note_metadata,
            "update_note_title": self._update_note_title,
            "move_note_to_folder": self._move_note_to_folder,
            "update_note": self._update_note,
            "write_file": self._write_file,
            "add_tags_to_note": self._add_tags_to_note,
            "cleanup_note_content": self._cleanup_note_content,
            # Folders
            "create_folder": self._create_folder,
            "delete_folder": self._delete_folder,
            "update_folder_description": self._update_folder_description,
            # Dev studio
            "propose_code_patch": self._propose_code_patch,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    async def execute(self, action: AiAction) -> str:
        """Execute ``action`` and return the text result. Never raises."""
        handler = self._tools.get(action.tool)
        if handler is None:
            logger.warning(f"Unknown tool requested: {action.tool}")
            return f"Error: Unknown tool '{action.tool}'."

        logger.info(
            f"Executing tool: {action.tool}",
            extra={"tool": action.tool, "args_keys": list(action.args.keys())},
        )
        try:
            return await handler(action.args)
        except (ToolArgumentError, NotebookValidationError) as e:
            message = getattr(e, "message", None) or str(e)
            logger.warning(f"Tool {action.tool} validation error: {message}")
            return f"Error: {message}"
        except PersistenceError as e:
            return f"Error: Failed to save changes: {e.message}"
        except Exception as e:
            logger.exception(f"Tool {action.tool} execution failed: {e}")
            return f"Error: Tool execution failed: {e}"

    async def _confirmed(self, action: AiAction) -> bool:
        if self.confirm is None:
            return True
        return await self.confirm(action)

    # =========================================================================
    # Reads
    # =========================================================================

    async def _get_note_content(self, args: Dict[str, Any]) -> str:
        note = self.notebook.get_note(_require_str(args, "note_id"))
        return f'Here is the content of the note titled "{note.title}":\n\n{note.content}'

    async def _list_folders(self, args: Dict[str, Any]) -> str:
        folders = [{"id": f.id, "name": f.name} for f in self.notebook.state.folders]
        return f"Here is a list of available folders: {json.dumps(folders, separators=(',', ':'))}"

    async def _explain_note_connections(self, args: Dict[str, Any]) -> str:
        note = self.notebook.get_note(_require_str(args, "note_id"))
        lines = []
        for connection in self.notebook.state.connections:
            if note.id not in (connection.source, connection.target):
                continue
            other_id = connection.target if connection.source == note.id else connection.source
            other = self.notebook.state.find_note(other_id)
            if other is None:
                continue
            lines.append(f'- "{other.title}" ({other.id}): {connection.reason}')
        if not lines:
            return f'Note "{note.title}" has no connections yet.'
        return f'Note "{note.title}" is connected to:\n' + "\n".join(lines)

    # =========================================================================
    # Notes
    # =========================================================================

    async def _create_note(self, args: Dict[str, Any]) -> str:
        title = _require_str(args, "title")
        content = _require_str(args, "content")
        folder_id = _optional_str(args, "folder_id")
        if not await self._confirmed(AiAction(tool="create_note", args=args)):
            return "Note creation cancelled by user."
        note = await self.notebook.create_note(title, content, folder_id=folder_id)
        return f"Successfully created note with ID {note.id}."

    async def _create_note_from_conversation(self, args: Dict[str, Any]) -> str:
        title = _require_str(args, "title")
        content = _require_str(args, "content")
        tags = _optional_str_list(args, "tags")
        folder_id = _optional_str(args, "folder_id")
        if not await self._confirmed(AiAction(tool="create_note_from_conversation", args=args)):
            return "Note creation cancelled by user."
        note = await self.notebook.create_note(title, content, folder_id=folder_id, tags=tags)
        return f'Successfully created note "{title}" with ID {note.id} from our conversation.'

    async def _set_note_metadata(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        language = _optional_str(args, "language")
        kind = _optional_str(args, "type")
        if kind is not None and kind not in NOTE_KINDS:
            raise ToolArgumentError(
                f"Invalid note type '{kind}'. Expected one of: {', '.join(NOTE_KINDS)}."
            )
        await self.notebook.set_note_metadata(note_id, language=language, kind=kind)
        return f"Successfully updated metadata for note {note_id}."

    async def _update_note_title(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        await self.notebook.update_note(note_id, title=_require_str(args, "new_title"))
        return f"Successfully updated title for note {note_id}."

    async def _move_note_to_folder(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        folder_id = _optional_str(args, "folder_id")
        await self.notebook.move_note(note_id, folder_id)
        if folder_id is None:
            return f"Successfully moved note {note_id} to Uncategorized."
        return f"Successfully moved note {note_id} to folder {folder_id}."

    async def _update_note(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        await self.notebook.append_to_note(note_id, _require_str(args, "content"))
        return f"Successfully appended content to note {note_id}."

    async def _write_file(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        await self.notebook.update_note(note_id, content=_require_str(args, "content"))
        return f"Successfully wrote content to note {note_id}."

    async def _add_tags_to_note(self, args: Dict[str, Any]) -> str:
        note_id = _require_str(args, "note_id")
        if "tags" not in args:
            raise ToolArgumentError("Missing required argument 'tags'.")
        tags = _optional_str_list(args, "tags")
        note = self.notebook.get_note(note_id)
        await self.notebook.update_note(note_id, tags=[*note.tags, *tags])
        return f"Successfully added tags to note {note_id}: {', '.join(tags)}."

    async def _cleanup_note_content(self, args: Dict[str, Any]) -> str:
        note = self.notebook.get_note(_require_str(args, "note_id"))
        await self.notebook.update_note(note.id, content=clean_content(note.content))
        return f'Successfully cleaned up content for note "{note.title}".'

    # =========================================================================
    # Folders
    # =========================================================================

    async def _create_folder(self, args: Dict[str, Any]) -> str:
        folder = await self.notebook.add_folder(_require_str(args, "name"))
        return f"Successfully created folder with ID {folder.id}."

    async def _delete_folder(self, args: Dict[str, Any]) -> str:
        folder_id = _require_str(args, "folder_id")
        await self.notebook.delete_folder(folder_id)
        return f"Successfully deleted folder {folder_id} and moved its notes to Uncategorized."

    async def _update_folder_description(self, args: Dict[str, Any]) -> str:
        folder_id = _require_str(args, "folder_id")
        await self.notebook.update_folder(folder_id, description=_require_str(args, "description"))
        return f"Successfully updated description for folder {folder_id}."

    # =========================================================================
    # Dev studio
    # =========================================================================

    async def _propose_code_patch(self, args: Dict[str, Any]) -> str:
        patch = await self.notebook.propose_patch(
            title=_require_str(args, "title"),
            description=_require_str(args, "description"),
            code_diff=_require_str(args, "code_diff"),
            tests=_require_str(args, "tests"),
            model_used=self.model_used,
        )
        return f"Successfully proposed patch with ID {patch.id}. It is pending review."


__all__ = [
    "ActionDispatcher",
    "ToolArgumentError",
    "clean_content",
    "get_tool_schemas",
    "load_tool_schemas",
]
