"""Starter workspace seeded into an empty store on first run."""

from __future__ import annotations

from datetime import timedelta

from ..models.export import ExportBundle
from ..models.note import Folder, Note, utcnow
from ..models.studio import AuditLogEntry, FeatureFlag, PatchProposal

DEMO_FOLDERS = [
    {
        "id": "folder-1",
        "name": "Getting Started",
        "description": "Your first folder containing introductory notes about Cogniflow.",
        "age_minutes": 15,
    },
    {
        "id": "folder-2",
        "name": "Technical Notes",
        "description": "A place for code snippets, architectural ideas, and development logs.",
        "age_minutes": 14,
    },
]

DEMO_NOTES = [
    {
        "id": "note-1",
        "title": "Welcome to Cogniflow",
        "folder_id": "folder-1",
        "tags": ["welcome", "guide", "getting-started", "AI", "knowledge-management"],
        "summary": "A guide on using Cogniflow for note-taking, AI analysis, and exploring connections in the knowledge graph.",
        "age_minutes": 10,
        "content": """Cogniflow is your second brain: notes stored locally, with an AI assistant that can read and organize them.

1. **Create Notes**: capture anything on your mind. Every edit is saved immediately and earlier versions are kept in the note history.
2. **AI Analysis**: ask for a summary and tags for any note. Configure an API key first.
3. **Discover Connections**: let the AI find related notes and link them in the knowledge graph.
4. **Chat with your Brain**: the assistant can read notes and act on them. Try:
    - "Explain my 'Welcome to Cogniflow' note."
    - "Create a note about the Pomodoro Technique and put it in the 'Getting Started' folder."
    - "Change the 'Python Async Patterns' note to be a 'python' code file."
5. **Dev Studio**: the assistant can propose code patches. They wait for your review and are never applied automatically.
6. **Export Your Data**: download everything as a single JSON document, and import it again later.""",
    },
    {
        "id": "note-2",
        "title": "The Power of Atomic Notes",
        "folder_id": "folder-1",
        "tags": ["productivity", "note-taking", "zettelkasten", "learning"],
        "summary": "Atomic notes are single, self-contained ideas that enhance reusability, clarity, and connectivity.",
        "age_minutes": 5,
        "content": """An atomic note is a single, self-contained idea. It should be brief and focused on one concept.

- **Reusability**: small notes can be linked and combined in many contexts.
- **Clarity**: writing atomically forces you to clarify your thinking.
- **Connectivity**: links between granular ideas are easier to find than links between long documents.

Atomic notes also make AI connection discovery much more effective.""",
    },
    {
        "id": "note-3",
        "title": "Python Async Patterns",
        "folder_id": "folder-2",
        "tags": ["python", "asyncio", "concurrency"],
        "summary": "Common asyncio building blocks: tasks, gather, shields and single-flight initialization.",
        "age_minutes": 0,
        "type": "code",
        "language": "python",
        "content": """import asyncio

async def main():
    # Run independent coroutines concurrently
    results = await asyncio.gather(fetch("a"), fetch("b"))

    # Share one in-flight task between many awaiters
    task = asyncio.ensure_future(load_once())
    await asyncio.shield(task)
""",
    },
]

DEMO_PATCHES = [
    {
        "id": "patch-2",
        "title": "Add Confirmation for Note Deletion",
        "description": "Ask for confirmation before a note is permanently deleted.",
        "code_diff": "--- a/ui/note_list.py\n+++ b/ui/note_list.py\n-    delete_note(note_id)\n+    if confirm('Are you sure?'):\n+        delete_note(note_id)\n",
        "tests": "1. Click delete on a note.\n2. Verify a confirmation dialog appears.\n3. Cancel and verify the note is kept.",
        "status": "approved",
        "model_used": "gemini",
        "age_days": 5,
    },
    {
        "id": "patch-1",
        "title": "Enhance Note Card Styling",
        "description": "Adds a subtle gradient background and hover effect to note cards in the list view.",
        "code_diff": "--- a/ui/note_list.py\n+++ b/ui/note_list.py\n-    card_class = 'card'\n+    card_class = 'card card-gradient'\n",
        "tests": "1. Verify note cards have a gradient background when active.",
        "status": "pending",
        "model_used": "gemini",
        "age_days": 4,
    },
]

DEMO_FEATURE_FLAGS = [
    FeatureFlag(
        id="flag-1",
        name="Real-time Collaboration",
        description="Enable real-time synchronization of notes for collaborative editing (requires backend).",
        is_enabled=False,
    ),
    FeatureFlag(
        id="flag-2",
        name="Daily Insights Dashboard",
        description="Show a dashboard summarizing daily activity and surfacing interesting connections.",
        is_enabled=True,
    ),
]


def build_seed_bundle() -> ExportBundle:
    """Return fresh starter data with timestamps relative to now."""
    now = utcnow()
    folders = [
        Folder(
            id=f["id"],
            name=f["name"],
            description=f["description"],
            created_at=now - timedelta(minutes=f["age_minutes"]),
        )
        for f in DEMO_FOLDERS
    ]
    notes = []
    for n in DEMO_NOTES:
        stamp = now - timedelta(minutes=n["age_minutes"])
        notes.append(
            Note(
                id=n["id"],
                title=n["title"],
                content=n["content"],
                summary=n["summary"],
                tags=n["tags"],
                folder_id=n["folder_id"],
                type=n.get("type", "text"),
                language=n.get("language"),
                created_at=stamp,
                updated_at=stamp,
            )
        )
    patches = [
        PatchProposal(
            id=p["id"],
            title=p["title"],
            description=p["description"],
            code_diff=p["code_diff"],
            tests=p["tests"],
            status=p["status"],
            model_used=p["model_used"],
            created_at=now - timedelta(days=p["age_days"]),
        )
        for p in DEMO_PATCHES
    ]
    audit_log = [
        AuditLogEntry(
            id="log-1",
            patch_id="patch-2",
            status="approved",
            timestamp=now - timedelta(days=5),
        )
    ]
    return ExportBundle(
        notes=notes,
        folders=folders,
        patches=patches,
        feature_flags=[flag.model_copy() for flag in DEMO_FEATURE_FLAGS],
        audit_log=audit_log,
    )


__all__ = ["build_seed_bundle", "DEMO_NOTES", "DEMO_FOLDERS"]
