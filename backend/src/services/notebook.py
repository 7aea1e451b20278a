"""Notebook service - the single mutation boundary for the workspace.

Each operation validates against the in-memory :class:`StateStore` first and
then performs exactly one optimistic apply through the
:class:`OptimisticUpdateEngine`. Validation failures raise
:class:`NotebookValidationError` before anything is touched; persistence
failures surface as :class:`PersistenceError` after the rollback.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..models.export import ExportBundle
from ..models.note import NOTE_KINDS, Connection, Folder, Note, utcnow
from ..models.settings import AiSettings
from ..models.studio import AuditLogEntry, PatchProposal
from .local_store import LocalStore, StoreTransaction
from .optimistic import InitializationGuard, OptimisticUpdateEngine
from .seed import build_seed_bundle
from .state import StateStore

logger = logging.getLogger(__name__)

NoteListener = Callable[[str, str, str], None]

# Pseudo folder ids used by list views.
ALL_FOLDERS = "all"
UNCATEGORIZED = "uncategorized"

NOTE_FIELDS = frozenset(
    {"title", "content", "summary", "tags", "folder_id", "type", "language", "attachments"}
)


class NotebookValidationError(Exception):
    """Rejected operation; raised before any state is mutated.

    ``code`` is one of ``invalid``, ``not_found`` or ``conflict``.
    """

    def __init__(self, message: str, code: str = "invalid"):
        super().__init__(message)
        self.message = message
        self.code = code


class IdGenerator:
    """``<prefix>-<epoch ms>`` identifiers, strictly increasing per process."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._last = 0
        self._lock = threading.Lock()

    def next(self, prefix: str) -> str:
        with self._lock:
            millis = max(int(self._clock() * 1000), self._last + 1)
            self._last = millis
        return f"{prefix}-{millis}"


_ids = IdGenerator()


def new_id(prefix: str) -> str:
    return _ids.next(prefix)


def _write_bundle(tx: StoreTransaction, bundle: ExportBundle) -> None:
    for note in bundle.notes:
        tx.notes.add(note)
    for folder in bundle.folders:
        tx.folders.add(folder)
    for connection in bundle.connections:
        tx.connections.add(connection)
    for patch in bundle.patches:
        tx.patches.add(patch)
    for flag in bundle.feature_flags:
        tx.feature_flags.add(flag)
    for entry in bundle.audit_log:
        tx.audit_log.add(entry)
    tx.put_settings(bundle.settings)


class NotebookService:
    """Notes, folders, connections and dev studio records."""

    def __init__(
        self,
        store: LocalStore,
        state: Optional[StateStore] = None,
        seed_on_empty: bool = True,
    ):
        self.store = store
        self.state = state or StateStore()
        self.engine = OptimisticUpdateEngine(self.state)
        self.guard = InitializationGuard()
        self.seed_on_empty = seed_on_empty
        self._note_listeners: List[NoteListener] = []

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the workspace into memory once; seed an empty store first."""
        await self.guard.ensure(self._load)

    async def _load(self) -> None:
        if self.seed_on_empty:
            bundle = build_seed_bundle()

            def _seed(tx: StoreTransaction) -> bool:
                if tx.notes.count() or tx.folders.count():
                    return False
                _write_bundle(tx, bundle)
                return True

            if await self.store.transaction(_seed):
                logger.info(
                    "Seeded empty store with starter workspace",
                    extra={"notes": len(bundle.notes), "folders": len(bundle.folders)},
                )

        notes = await self.store.notes.get_all()
        folders = await self.store.folders.get_all()
        self.state.set(
            notes=notes,
            folders=sorted(folders, key=lambda f: f.created_at),
            connections=await self.store.connections.get_all(),
            patches=await self.store.patches.get_all(),
            feature_flags=await self.store.feature_flags.get_all(),
            audit_log=await self.store.audit_log.get_all(),
            settings=await self.store.get_settings(),
            is_initialized=True,
        )
        logger.info(f"Workspace loaded: {len(notes)} notes, {len(folders)} folders")

    # ------------------------------------------------------------------
    # Note-change listeners
    # ------------------------------------------------------------------

    def add_note_listener(self, listener: NoteListener) -> Callable[[], None]:
        self._note_listeners.append(listener)

        def remove() -> None:
            if listener in self._note_listeners:
                self._note_listeners.remove(listener)

        return remove

    def _emit_note_change(self, note: Note) -> None:
        for listener in list(self._note_listeners):
            try:
                listener(note.id, note.title, note.content)
            except Exception:
                logger.exception("Note listener failed", extra={"note_id": note.id})

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_note(self, note_id: str) -> Note:
        note = self.state.find_note(note_id)
        if note is None:
            raise NotebookValidationError(f"Note with ID '{note_id}' not found.", "not_found")
        return note

    def get_folder(self, folder_id: str) -> Folder:
        folder = self.state.find_folder(folder_id)
        if folder is None:
            raise NotebookValidationError(f"Folder with ID '{folder_id}' not found.", "not_found")
        return folder

    def list_notes(self, folder_id: Optional[str] = ALL_FOLDERS) -> List[Note]:
        if folder_id in (None, ALL_FOLDERS):
            return list(self.state.notes)
        if folder_id == UNCATEGORIZED:
            return [n for n in self.state.notes if n.folder_id is None]
        return [n for n in self.state.notes if n.folder_id == folder_id]

    def _require_folder(self, folder_id: str) -> Folder:
        folder = self.state.find_folder(folder_id)
        if folder is None:
            raise NotebookValidationError(f"Folder with ID '{folder_id}' does not exist.", "not_found")
        return folder

    @staticmethod
    def _require_kind(kind: str) -> None:
        if kind not in NOTE_KINDS:
            raise NotebookValidationError(
                f"Invalid note type '{kind}'. Expected one of: {', '.join(NOTE_KINDS)}."
            )

    def _replace_note(self, updated: Note) -> List[Note]:
        return [updated if n.id == updated.id else n for n in self.state.notes]

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def create_note(
        self,
        title: str,
        content: str = "",
        folder_id: Optional[str] = None,
        tags: Iterable[str] = (),
        kind: str = "text",
        language: Optional[str] = None,
        activate: bool = False,
    ) -> Note:
        self._require_kind(kind)
        if folder_id is not None:
            self._require_folder(folder_id)

        now = utcnow()
        note = Note(
            id=new_id("note"),
            title=title or "Untitled Note",
            content=content,
            tags=list(tags),
            folder_id=folder_id,
            type=kind,
            language=language,
            created_at=now,
            updated_at=now,
        )

        def _local() -> None:
            changes: Dict[str, Any] = {"notes": [note, *self.state.notes]}
            if activate:
                changes["active_note_id"] = note.id
            self.state.set(**changes)

        await self.engine.apply_snapshot(
            ("notes", "active_note_id"),
            _local,
            lambda: self.store.notes.add(note),
            operation="create_note",
        )
        logger.info(f"Created note {note.id}", extra={"note_id": note.id, "folder_id": folder_id})
        self._emit_note_change(note)
        return note

    async def create_blank_note(self) -> Note:
        """New empty note in the active folder, made the active note."""
        active = self.state.active_folder_id
        folder_id = None if active in (None, ALL_FOLDERS, UNCATEGORIZED) else active
        if folder_id is not None and self.state.find_folder(folder_id) is None:
            folder_id = None
        return await self.create_note("Untitled Note", folder_id=folder_id, activate=True)

    async def update_note(self, note_id: str, **fields: Any) -> Note:
        """Replace the given note fields and stamp ``updated_at``."""
        note = self.get_note(note_id)
        unknown = set(fields) - NOTE_FIELDS
        if unknown:
            raise NotebookValidationError(f"Unknown note fields: {', '.join(sorted(unknown))}")
        if fields.get("type") is not None:
            self._require_kind(fields["type"])
        if fields.get("folder_id") is not None:
            self._require_folder(fields["folder_id"])

        data = note.model_dump()
        data.update(fields)
        data["updated_at"] = utcnow()
        try:
            updated = Note.model_validate(data)
        except ValidationError as e:
            fields_in_error = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise NotebookValidationError(f"Invalid note fields: {', '.join(fields_in_error)}") from e

        await self.engine.apply_snapshot(
            ("notes",),
            lambda: self.state.set(notes=self._replace_note(updated)),
            lambda: self.store.notes.put(updated),
            operation="update_note",
        )
        if "title" in fields or "content" in fields:
            self._emit_note_change(updated)
        return updated

    async def append_to_note(self, note_id: str, content: str) -> Note:
        note = self.get_note(note_id)
        return await self.update_note(note_id, content=f"{note.content}\n\n{content}")

    async def set_note_metadata(
        self, note_id: str, language: Optional[str] = None, kind: Optional[str] = None
    ) -> Note:
        note = self.get_note(note_id)
        return await self.update_note(
            note_id,
            language=language or note.language,
            type=kind or note.type,
        )

    async def move_note(self, note_id: str, folder_id: Optional[str]) -> Note:
        self.get_note(note_id)
        if folder_id is not None:
            self._require_folder(folder_id)
        return await self.update_note(note_id, folder_id=folder_id)

    async def apply_insights(self, note_id: str, summary: str, tags: Sequence[str]) -> Note:
        """Store a generated summary and merge generated tags into the existing ones."""
        note = self.get_note(note_id)
        return await self.update_note(note_id, summary=summary, tags=[*note.tags, *tags])

    async def delete_note(self, note_id: str) -> None:
        self.get_note(note_id)

        def _local() -> None:
            changes: Dict[str, Any] = {"notes": [n for n in self.state.notes if n.id != note_id]}
            if self.state.active_note_id == note_id:
                changes["active_note_id"] = None
            self.state.set(**changes)

        await self.engine.apply_snapshot(
            ("notes", "active_note_id"),
            _local,
            lambda: self.store.notes.delete(note_id),
            operation="delete_note",
        )
        logger.info(f"Deleted note {note_id}", extra={"note_id": note_id})

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def add_folder(self, name: str, description: str = "") -> Folder:
        name = (name or "").strip()
        if not name:
            raise NotebookValidationError("Folder name must not be empty.")
        if self.state.find_folder_by_name(name) is not None:
            raise NotebookValidationError(f"A folder named '{name}' already exists.", "conflict")

        folder = Folder(id=new_id("folder"), name=name, description=description)
        await self.engine.apply_snapshot(
            ("folders",),
            lambda: self.state.set(folders=[*self.state.folders, folder]),
            lambda: self.store.folders.add(folder),
            operation="add_folder",
        )
        logger.info(f"Created folder {folder.id} ({name})", extra={"folder_id": folder.id})
        return folder

    async def update_folder(
        self, folder_id: str, name: Optional[str] = None, description: Optional[str] = None
    ) -> Folder:
        folder = self.get_folder(folder_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise NotebookValidationError("Folder name must not be empty.")
            existing = self.state.find_folder_by_name(name)
            if existing is not None and existing.id != folder_id:
                raise NotebookValidationError(f"A folder named '{name}' already exists.", "conflict")
            changes["name"] = name
        if description is not None:
            changes["description"] = description

        updated = folder.model_copy(update=changes)
        await self.engine.apply_snapshot(
            ("folders",),
            lambda: self.state.set(
                folders=[updated if f.id == folder_id else f for f in self.state.folders]
            ),
            lambda: self.store.folders.put(updated),
            operation="update_folder",
        )
        return updated

    async def delete_folder(self, folder_id: str) -> int:
        """Delete a folder after moving its notes to uncategorized. Returns the moved count."""
        self.get_folder(folder_id)
        moved = [n.id for n in self.state.notes if n.folder_id == folder_id]
        now = utcnow()

        def _local() -> None:
            changes: Dict[str, Any] = {
                "notes": [
                    n.model_copy(update={"folder_id": None, "updated_at": now})
                    if n.folder_id == folder_id
                    else n
                    for n in self.state.notes
                ],
                "folders": [f for f in self.state.folders if f.id != folder_id],
            }
            if self.state.active_folder_id == folder_id:
                changes["active_folder_id"] = ALL_FOLDERS
            self.state.set(**changes)

        def _persist(tx: StoreTransaction) -> None:
            tx.reassign_folder(folder_id, None, updated_at=now)
            tx.folders.delete(folder_id)

        await self.engine.apply_snapshot(
            ("notes", "folders", "active_folder_id"),
            _local,
            lambda: self.store.transaction(_persist),
            operation="delete_folder",
        )
        logger.info(
            f"Deleted folder {folder_id}, moved {len(moved)} notes to uncategorized",
            extra={"folder_id": folder_id},
        )
        return len(moved)

    def reorder_folders(self, dragged_id: str, target_id: str) -> List[Folder]:
        """Move ``dragged_id`` to the position of ``target_id`` (display order only)."""
        self.get_folder(dragged_id)
        self.get_folder(target_id)
        folders = list(self.state.folders)
        dragged_index = next(i for i, f in enumerate(folders) if f.id == dragged_id)
        target_index = next(i for i, f in enumerate(folders) if f.id == target_id)
        folders.insert(target_index, folders.pop(dragged_index))
        self.state.set(folders=folders)
        return folders

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def add_connections(self, pairs: Iterable[Tuple[str, str, str]]) -> List[Connection]:
        """Add undirected edges, skipping self-loops, unknown notes and duplicates."""
        note_ids = {n.id for n in self.state.notes}
        seen = {c.pair() for c in self.state.connections}
        added: List[Connection] = []
        for source, target, reason in pairs:
            if source == target or source not in note_ids or target not in note_ids:
                continue
            edge = frozenset((source, target))
            if edge in seen:
                continue
            seen.add(edge)
            added.append(Connection(source=source, target=target, reason=reason))
        if not added:
            return []

        def _persist(tx: StoreTransaction) -> None:
            for connection in added:
                tx.connections.add(connection)

        await self.engine.apply_snapshot(
            ("connections",),
            lambda: self.state.set(connections=[*self.state.connections, *added]),
            lambda: self.store.transaction(_persist),
            operation="add_connections",
        )
        logger.info(f"Added {len(added)} connections")
        return added

    # ------------------------------------------------------------------
    # Dev studio
    # ------------------------------------------------------------------

    async def propose_patch(
        self,
        title: str,
        description: str,
        code_diff: str,
        tests: str,
        model_used: str = "unknown",
    ) -> PatchProposal:
        if not title:
            raise NotebookValidationError("Patch title must not be empty.")
        patch = PatchProposal(
            id=new_id("patch"),
            title=title,
            description=description,
            code_diff=code_diff,
            tests=tests,
            model_used=model_used,
        )
        await self.engine.apply_snapshot(
            ("patches",),
            lambda: self.state.set(patches=[patch, *self.state.patches]),
            lambda: self.store.patches.add(patch),
            operation="propose_patch",
        )
        logger.info(f"Proposed patch {patch.id}", extra={"patch_id": patch.id})
        return patch

    async def set_patch_status(self, patch_id: str, status: str) -> PatchProposal:
        """Approve or reject a pending patch and append the audit entry."""
        if status not in ("approved", "rejected"):
            raise NotebookValidationError(f"Invalid patch status '{status}'.")
        patch = next((p for p in self.state.patches if p.id == patch_id), None)
        if patch is None:
            raise NotebookValidationError(f"Patch with ID '{patch_id}' not found.", "not_found")
        if patch.status != "pending":
            raise NotebookValidationError(
                f"Patch '{patch_id}' is already {patch.status}.", "conflict"
            )

        updated = patch.model_copy(update={"status": status})
        entry = AuditLogEntry(id=new_id("log"), patch_id=patch_id, status=status)

        def _persist(tx: StoreTransaction) -> None:
            tx.patches.put(updated)
            tx.audit_log.add(entry)

        await self.engine.apply_snapshot(
            ("patches", "audit_log"),
            lambda: self.state.set(
                patches=[updated if p.id == patch_id else p for p in self.state.patches],
                audit_log=[entry, *self.state.audit_log],
            ),
            lambda: self.store.transaction(_persist),
            operation="set_patch_status",
        )
        logger.info(f"Patch {patch_id} {status}", extra={"patch_id": patch_id})
        return updated

    async def toggle_feature_flag(self, flag_id: str):
        flag = next((f for f in self.state.feature_flags if f.id == flag_id), None)
        if flag is None:
            raise NotebookValidationError(f"Feature flag '{flag_id}' not found.", "not_found")
        updated = flag.model_copy(update={"is_enabled": not flag.is_enabled})
        await self.engine.apply_snapshot(
            ("feature_flags",),
            lambda: self.state.set(
                feature_flags=[updated if f.id == flag_id else f for f in self.state.feature_flags]
            ),
            lambda: self.store.feature_flags.put(updated),
            operation="toggle_feature_flag",
        )
        return updated

    async def update_settings(self, settings: AiSettings) -> AiSettings:
        await self.engine.apply_snapshot(
            ("settings",),
            lambda: self.state.set(settings=settings),
            lambda: self.store.put_settings(settings),
            operation="update_settings",
        )
        return settings

    # ------------------------------------------------------------------
    # Wholesale import / export
    # ------------------------------------------------------------------

    def to_bundle(self) -> ExportBundle:
        return ExportBundle(
            notes=list(self.state.notes),
            folders=list(self.state.folders),
            connections=list(self.state.connections),
            settings=self.state.settings,
            patches=list(self.state.patches),
            feature_flags=list(self.state.feature_flags),
            audit_log=list(self.state.audit_log),
        )

    async def replace_all(self, bundle: ExportBundle, confirmed: bool = False) -> None:
        """Replace every collection with ``bundle``. Requires explicit confirmation."""
        if not confirmed:
            raise NotebookValidationError("Import replaces all local data and must be confirmed.")

        def _local() -> None:
            self.state.set(
                notes=list(bundle.notes),
                folders=list(bundle.folders),
                connections=list(bundle.connections),
                patches=list(bundle.patches),
                feature_flags=list(bundle.feature_flags),
                audit_log=list(bundle.audit_log),
                settings=bundle.settings,
                active_note_id=None,
                active_folder_id=ALL_FOLDERS,
            )

        def _persist(tx: StoreTransaction) -> None:
            for collection in (
                tx.notes,
                tx.folders,
                tx.connections,
                tx.patches,
                tx.feature_flags,
                tx.audit_log,
            ):
                collection.clear()
            _write_bundle(tx, bundle)

        await self.engine.apply_snapshot(
            (
                "notes",
                "folders",
                "connections",
                "patches",
                "feature_flags",
                "audit_log",
                "settings",
                "active_note_id",
                "active_folder_id",
            ),
            _local,
            lambda: self.store.transaction(_persist),
            operation="replace_all",
        )
        logger.info(
            f"Imported workspace: {len(bundle.notes)} notes, {len(bundle.folders)} folders"
        )


__all__ = [
    "ALL_FOLDERS",
    "UNCATEGORIZED",
    "IdGenerator",
    "NotebookService",
    "NotebookValidationError",
    "new_id",
]
