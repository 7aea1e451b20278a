"""Integration tests for the HTTP API (notes, folders, studio, data, graph)."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from backend.src.api.dependencies import get_provider_builder
from backend.src.api.main import create_app
from backend.src.services.config import AppConfig
from backend.src.services.local_store import ConstraintViolation
from backend.tests.fakes import FakeProvider


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client(tmp_path: Path, provider: FakeProvider) -> Iterator[TestClient]:
    """App over a seeded temp database, with the model provider replaced."""
    config = AppConfig(db_path=tmp_path / "api.db", snapshot_debounce_seconds=0.01)
    app = create_app(config)
    app.dependency_overrides[get_provider_builder] = lambda: (lambda name=None: provider)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_health_reports_initialized(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "initialized": True}


class TestNotesApi:
    """CRUD over /api/notes."""

    def test_list_seeded_notes(self, client: TestClient) -> None:
        notes = client.get("/api/notes").json()

        assert {n["id"] for n in notes} == {"note-1", "note-2", "note-3"}
        assert notes[0]["id"] == "note-3"
        assert "folderId" in notes[0]

    def test_list_filters_by_folder(self, client: TestClient) -> None:
        notes = client.get("/api/notes", params={"folder": "folder-2"}).json()

        assert [n["id"] for n in notes] == ["note-3"]
        assert client.get("/api/notes", params={"folder": "uncategorized"}).json() == []

    def test_create_get_update_delete(self, client: TestClient) -> None:
        created = client.post(
            "/api/notes", json={"title": "Pomodoro", "content": "25/5", "folderId": "folder-1"}
        )
        assert created.status_code == 201
        note_id = created.json()["id"]
        assert created.json()["folderId"] == "folder-1"

        fetched = client.get(f"/api/notes/{note_id}").json()
        assert fetched["content"] == "25/5"

        patched = client.patch(f"/api/notes/{note_id}", json={"content": "50/10", "folderId": None})
        assert patched.status_code == 200
        assert patched.json()["content"] == "50/10"
        assert patched.json()["folderId"] is None

        assert client.delete(f"/api/notes/{note_id}").status_code == 204
        missing = client.get(f"/api/notes/{note_id}")
        assert missing.status_code == 404
        assert missing.json()["error"] == "not_found"

    def test_create_in_unknown_folder(self, client: TestClient) -> None:
        response = client.post("/api/notes", json={"title": "T", "folder_id": "folder-404"})

        assert response.status_code == 404
        assert response.json()["message"] == "Folder with ID 'folder-404' does not exist."

    def test_null_fields_are_ignored_except_folder(self, client: TestClient) -> None:
        title = client.get("/api/notes/note-1").json()["title"]

        response = client.patch(
            "/api/notes/note-1", json={"title": None, "content": "edited", "folderId": None}
        )

        assert response.status_code == 200
        assert response.json()["title"] == title
        assert response.json()["content"] == "edited"
        assert response.json()["folderId"] is None

    def test_invalid_note_type(self, client: TestClient) -> None:
        response = client.post("/api/notes", json={"title": "T", "type": "video"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_persistence_failure_returns_503(self, client: TestClient) -> None:
        services = client.app.state.services

        async def failing(*args, **kwargs):
            raise ConstraintViolation("database is locked")

        services.store.notes.add = failing
        before = len(client.get("/api/notes").json())

        response = client.post("/api/notes", json={"title": "Doomed"})

        assert response.status_code == 503
        assert response.json()["detail"] == {"operation": "create_note"}
        assert len(client.get("/api/notes").json()) == before

    def test_versions_and_restore(self, client: TestClient) -> None:
        client.patch("/api/notes/note-2", json={"content": "rewritten"})
        versions = []
        for _ in range(50):
            versions = client.get("/api/notes/note-2/versions").json()
            if versions:
                break
            time.sleep(0.05)
        assert [v["content"] for v in versions] == ["rewritten"]

        client.patch("/api/notes/note-2", json={"content": "rewritten again"})
        restored = client.post(f"/api/notes/note-2/versions/{versions[0]['id']}/restore")

        assert restored.status_code == 200
        assert restored.json()["content"] == "rewritten"
        assert client.post("/api/notes/note-2/versions/9999/restore").status_code == 404

    def test_analyze_note(self, client: TestClient, provider: FakeProvider) -> None:
        provider.json_responses.append({"summary": "About atomic notes.", "tags": ["pkm"]})

        response = client.post("/api/notes/note-2/analyze")

        assert response.status_code == 200
        assert response.json()["summary"] == "About atomic notes."
        assert "pkm" in response.json()["tags"]


class TestProviderErrors:
    def test_missing_api_key_returns_502(self, tmp_path: Path) -> None:
        app = create_app(AppConfig(db_path=tmp_path / "api.db"))
        with TestClient(app) as client:
            response = client.post("/api/notes/note-1/analyze")

        assert response.status_code == 502
        assert response.json()["error"] == "provider_error"
        assert response.json()["detail"] == {"retryable": False}


class TestFoldersApi:
    def test_create_duplicate_and_delete(self, client: TestClient) -> None:
        created = client.post("/api/folders", json={"name": "Ideas", "description": "Raw"})
        assert created.status_code == 201

        duplicate = client.post("/api/folders", json={"name": "Ideas"})
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "conflict"
        assert len(client.get("/api/folders").json()) == 3

    def test_empty_name_is_rejected(self, client: TestClient) -> None:
        assert client.post("/api/folders", json={"name": ""}).status_code == 400

    def test_delete_folder_moves_notes_to_uncategorized(self, client: TestClient) -> None:
        assert client.delete("/api/folders/folder-1").status_code == 204

        loose = client.get("/api/notes", params={"folder": "uncategorized"}).json()
        assert {n["id"] for n in loose} == {"note-1", "note-2"}
        assert [f["id"] for f in client.get("/api/folders").json()] == ["folder-2"]

    def test_rename_folder(self, client: TestClient) -> None:
        response = client.patch("/api/folders/folder-2", json={"name": "Code"})

        assert response.json()["name"] == "Code"
        assert client.patch("/api/folders/folder-2", json={"name": "Getting Started"}).status_code == 409


class TestStudioApi:
    def test_review_pending_patch_once(self, client: TestClient) -> None:
        approved = client.post("/api/studio/patches/patch-1/status", json={"status": "approved"})
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        again = client.post("/api/studio/patches/patch-1/status", json={"status": "rejected"})
        assert again.status_code == 409

        log = client.get("/api/studio/audit-log").json()
        assert [entry["patchId"] for entry in log][:1] == ["patch-1"]
        assert len(log) == 2

    def test_propose_patch(self, client: TestClient) -> None:
        response = client.post(
            "/api/studio/patches", json={"title": "Dark mode", "codeDiff": "--- a\n+++ b"}
        )

        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        assert response.json()["codeDiff"] == "--- a\n+++ b"

    def test_toggle_feature_flag(self, client: TestClient) -> None:
        response = client.post("/api/studio/feature-flags/flag-2/toggle")

        assert response.json()["isEnabled"] is False
        assert client.post("/api/studio/feature-flags/flag-404/toggle").status_code == 404


class TestDataApi:
    def test_export_json_and_markdown(self, client: TestClient) -> None:
        exported = client.get("/api/export")
        assert exported.status_code == 200
        assert "attachment" in exported.headers["content-disposition"]
        assert len(exported.json()["notes"]) == 3

        markdown = client.get("/api/export", params={"format": "markdown"})
        assert markdown.text.startswith("# Cogniflow Export")

    def test_import_requires_confirmation(self, client: TestClient) -> None:
        document = client.get("/api/export").text

        response = client.post("/api/import", content=document)

        assert response.status_code == 400

    def test_import_replaces_everything(self, client: TestClient) -> None:
        document = json.dumps(
            {"notes": [{"id": "n-imported", "title": "Imported"}], "folders": [], "settings": {}}
        )

        response = client.post("/api/import", params={"confirm": "true"}, content=document)

        assert response.status_code == 200
        assert response.json() == {"status": "imported", "notes": 1, "folders": 0}
        assert [n["id"] for n in client.get("/api/notes").json()] == ["n-imported"]
        assert client.get("/api/studio/patches").json() == []

    def test_import_accepts_unsupported_task_provider(self, client: TestClient) -> None:
        document = json.dumps(
            {
                "notes": [],
                "folders": [],
                "settings": {"tasks": {"chat": {"provider": "openai"}, "summary": {"provider": "groq"}}},
            }
        )

        response = client.post("/api/import", params={"confirm": "true"}, content=document)

        assert response.status_code == 200
        assert response.json() == {"status": "imported", "notes": 0, "folders": 0}

    def test_import_rejects_malformed_document(self, client: TestClient) -> None:
        response = client.post("/api/import", params={"confirm": "true"}, content='{"notes": []}')

        assert response.status_code == 400
        assert response.json()["error"] == "import_format_error"
        assert len(client.get("/api/notes").json()) == 3


class TestGraphApi:
    def test_discover_connections(self, client: TestClient, provider: FakeProvider) -> None:
        provider.json_responses.append(
            {"connections": [{"note1_id": "note-1", "note2_id": "note-2", "reason": "both intro notes"}]}
        )

        discovered = client.post("/api/graph/discover")

        assert discovered.status_code == 200
        assert discovered.json()[0]["reason"] == "both intro notes"
        assert len(client.get("/api/graph/connections").json()) == 1

    def test_connections_hide_deleted_endpoints(self, client: TestClient, provider: FakeProvider) -> None:
        provider.json_responses.append(
            {"connections": [{"note1_id": "note-1", "note2_id": "note-2", "reason": "r"}]}
        )
        client.post("/api/graph/discover")

        client.delete("/api/notes/note-2")

        assert client.get("/api/graph/connections").json() == []
