"""AI note insights: summaries, tags and connection discovery."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..models.note import Connection, Note
from .notebook import NotebookService, NotebookValidationError
from .prompt_loader import PromptLoader
from .providers.base import ProviderAdapter, ProviderError

logger = logging.getLogger(__name__)

SUMMARY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string", "description": "A concise, one-sentence summary of the note."},
        "tags": {
            "type": "array",
            "items": {"type": "string"},
            "description": "An array of 3 to 5 relevant tags.",
        },
    },
    "required": ["summary", "tags"],
}

CONNECTIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "connections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "reason": {"type": "string", "description": "Why the two notes are connected."},
                    "note1_id": {"type": "string", "description": "ID of the first note."},
                    "note2_id": {"type": "string", "description": "ID of the second note."},
                },
                "required": ["reason", "note1_id", "note2_id"],
            },
        }
    },
}

MAX_TAGS = 5


class InsightsService:
    def __init__(
        self,
        notebook: NotebookService,
        provider: ProviderAdapter,
        model: str,
        prompt_loader: Optional[PromptLoader] = None,
    ):
        self.notebook = notebook
        self.provider = provider
        self.model = model
        self.prompt_loader = prompt_loader or PromptLoader()

    async def summarize_and_tag(self, note_id: str) -> Note:
        """Generate a summary and tags for a note and store them on it.

        Raises:
            NotebookValidationError: unknown note or empty content.
            ProviderError: the provider failed or returned malformed JSON.
        """
        note = self.notebook.get_note(note_id)
        if not note.content.strip():
            raise NotebookValidationError("Cannot analyze an empty note.")

        prompt = self.prompt_loader.load("insights/summarize.md", {"content": note.content})
        data = await self.provider.generate_json(prompt, SUMMARY_SCHEMA, self.model)
        summary = data.get("summary")
        tags = data.get("tags")
        if not isinstance(summary, str) or not isinstance(tags, list):
            raise ProviderError("Malformed response: expected 'summary' and 'tags'")
        tags = [str(t) for t in tags][:MAX_TAGS]
        logger.info(f"Generated insights for note {note_id}", extra={"note_id": note_id})
        return await self.notebook.apply_insights(note_id, summary, tags)

    async def discover_connections(self) -> List[Connection]:
        """Ask the model for related note pairs and store the valid, new ones."""
        notes = self.notebook.state.notes
        if len(notes) < 2:
            return []

        payload = [
            {"id": n.id, "title": n.title, "summary": n.summary or n.content[:100]} for n in notes
        ]
        prompt = self.prompt_loader.load("insights/connections.md", {"notes": payload})
        data = await self.provider.generate_json(prompt, CONNECTIONS_SCHEMA, self.model)

        valid_ids = {n.id for n in notes}
        pairs = []
        for item in data.get("connections") or []:
            if not isinstance(item, dict):
                continue
            source, target = item.get("note1_id"), item.get("note2_id")
            if source in valid_ids and target in valid_ids:
                pairs.append((source, target, str(item.get("reason", ""))))
        logger.info(f"Model proposed {len(pairs)} valid connections")
        return await self.notebook.add_connections(pairs)


__all__ = ["InsightsService", "SUMMARY_SCHEMA", "CONNECTIONS_SCHEMA"]
