"""Whole-workspace export (JSON, markdown) and import parsing."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from ..models.export import ExportBundle
from .notebook import NotebookService

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("notes", "folders", "settings")


class ImportFormatError(Exception):
    """Raised when an import document is not a valid export."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def export_json(notebook: NotebookService) -> str:
    """Serialize the in-memory workspace with the camelCase export keys."""
    return notebook.to_bundle().model_dump_json(by_alias=True, indent=2)


def export_markdown(notebook: NotebookService) -> str:
    sections = ["# Cogniflow Export", ""]
    for note in notebook.state.notes:
        sections.append(f"## {note.title}")
        sections.append("")
        if note.tags:
            sections.append(f"**Tags:** {', '.join(note.tags)}")
        sections.append(f"**Created:** {note.created_at.strftime('%Y-%m-%d %H:%M')}")
        sections.append("")
        sections.append(note.content)
        sections.append("")
        sections.append("---")
        sections.append("")
    return "\n".join(sections)


def parse_import(text: str) -> ExportBundle:
    """Parse an export document.

    Raises:
        ImportFormatError: not JSON, missing a required array, or invalid records.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Import file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ImportFormatError("Import file must contain a JSON object.")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ImportFormatError(f"Invalid backup file format. Missing: {', '.join(missing)}")

    try:
        bundle = ExportBundle.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ImportFormatError(f"Invalid backup file contents: {problems}") from e
    logger.info(f"Parsed import with {len(bundle.notes)} notes")
    return bundle


__all__ = ["ImportFormatError", "export_json", "export_markdown", "parse_import"]
