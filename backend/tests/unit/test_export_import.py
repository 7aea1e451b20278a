"""Unit tests for workspace export and import parsing."""

import json

import pytest

from backend.src.models.settings import ModelProvider
from backend.src.services.export_import import (
    ImportFormatError,
    export_json,
    export_markdown,
    parse_import,
)
from backend.src.services.local_store import LocalStore
from backend.src.services.notebook import NotebookService


class TestExport:
    @pytest.mark.asyncio
    async def test_json_export_uses_camel_case_keys(self, seeded_notebook: NotebookService) -> None:
        data = json.loads(export_json(seeded_notebook))

        assert set(data) >= {"notes", "folders", "connections", "settings", "patches", "featureFlags", "auditLog"}
        assert "folderId" in data["notes"][0]
        assert "createdAt" in data["folders"][0]
        assert "isEnabled" in data["featureFlags"][0]

    @pytest.mark.asyncio
    async def test_markdown_export(self, notebook: NotebookService) -> None:
        await notebook.create_note("Shopping", "- milk", tags=["home"])

        text = export_markdown(notebook)

        assert text.startswith("# Cogniflow Export")
        assert "## Shopping" in text
        assert "**Tags:** home" in text
        assert "- milk" in text
        assert "---" in text


class TestImport:
    @pytest.mark.asyncio
    async def test_export_then_import_restores_workspace(
        self, seeded_notebook: NotebookService, tmp_path
    ) -> None:
        notebook = NotebookService(LocalStore.at_path(tmp_path / "restored.db"), seed_on_empty=False)
        await notebook.initialize()
        bundle = parse_import(export_json(seeded_notebook))

        await notebook.replace_all(bundle, confirmed=True)

        assert {n.id for n in notebook.state.notes} == {n.id for n in seeded_notebook.state.notes}
        assert [f.name for f in notebook.state.folders] == [f.name for f in seeded_notebook.state.folders]

    def test_snake_case_documents_are_accepted(self) -> None:
        bundle = parse_import(
            json.dumps(
                {
                    "notes": [{"id": "n1", "title": "T", "folder_id": None}],
                    "folders": [],
                    "settings": {},
                }
            )
        )

        assert bundle.notes[0].id == "n1"
        assert bundle.patches == []

    def test_missing_arrays_are_named(self) -> None:
        with pytest.raises(ImportFormatError) as exc_info:
            parse_import(json.dumps({"notes": []}))

        assert exc_info.value.message == "Invalid backup file format. Missing: folders, settings"

    def test_not_json(self) -> None:
        with pytest.raises(ImportFormatError):
            parse_import("not json at all")

    def test_not_an_object(self) -> None:
        with pytest.raises(ImportFormatError):
            parse_import("[]")

    def test_invalid_record_names_the_field(self) -> None:
        with pytest.raises(ImportFormatError, match="Invalid backup file contents") as exc_info:
            parse_import(json.dumps({"notes": [{"title": "no id"}], "folders": [], "settings": {}}))

        assert "notes.0.id" in exc_info.value.message

    def test_browser_app_export_with_other_providers(self) -> None:
        """Documents written by the browser app keep their data; unknown providers use the default."""
        document = {
            "notes": [
                {
                    "id": "note-1700000000000",
                    "title": "Pomodoro",
                    "content": "25 minutes on, 5 off.",
                    "summary": "",
                    "tags": ["focus"],
                    "createdAt": "2024-01-01T10:00:00.000Z",
                    "updatedAt": "2024-01-02T10:00:00.000Z",
                    "folderId": None,
                    "type": "text",
                    "attachments": [],
                }
            ],
            "folders": [
                {"id": "folder-1", "name": "Inbox", "createdAt": "2024-01-01T09:00:00.000Z", "description": ""}
            ],
            "connections": [{"source": "note-1700000000000", "target": "note-1700000000000"}],
            "settings": {
                "tasks": {
                    "chat": {"provider": "openai"},
                    "summary": {"provider": "openrouter"},
                    "translation": {"provider": "anthropic"},
                },
                "keys": {"gemini": "", "openai": "sk-test"},
                "universal": {"baseUrl": "http://localhost:1234/v1", "modelId": "qwen"},
            },
        }

        bundle = parse_import(json.dumps(document))

        assert bundle.notes[0].title == "Pomodoro"
        assert bundle.folders[0].name == "Inbox"
        assert bundle.settings.tasks.chat.provider == ModelProvider.GEMINI
        assert bundle.settings.tasks.summary.provider == ModelProvider.OPENROUTER
        assert bundle.settings.universal.model_id == "qwen"
