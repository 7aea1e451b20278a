"""Note version history recorded on a debounce and an interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..models.note import Note, NoteVersion
from .local_store import LocalStore
from .notebook import NotebookService, NotebookValidationError
from .scheduling import DebouncedTask, LoopScheduler, PeriodicTask, Scheduler

logger = logging.getLogger(__name__)


class VersionRecorder:
    """Append note snapshots to the store, independent of the edit path.

    Every observed change restarts a per-note debounce timer; when it fires the
    latest title/content is snapshotted. A periodic timer additionally
    snapshots the most recently observed note. Snapshots are skipped when the
    content matches the newest stored version, and failures are only logged.
    """

    def __init__(
        self,
        store: LocalStore,
        notebook: NotebookService,
        scheduler: Optional[Scheduler] = None,
        debounce: float = 2.0,
        interval: float = 300.0,
    ):
        self.store = store
        self.notebook = notebook
        self.scheduler = scheduler or LoopScheduler()
        self.debounce = debounce
        self._pending: Dict[str, Tuple[str, str]] = {}
        self._debouncers: Dict[str, DebouncedTask] = {}
        self._last_seen: Optional[Tuple[str, str, str]] = None
        self._periodic = PeriodicTask(self.scheduler, interval, self._on_interval)
        self._inflight: Set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.notebook.add_note_listener(self.observe)
        self._periodic.start()

    async def close(self) -> None:
        """Write pending snapshots and stop all timers."""
        self._periodic.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.flush()

    def observe(self, note_id: str, title: str, content: str) -> None:
        self._pending[note_id] = (title, content)
        self._last_seen = (note_id, title, content)
        task = self._debouncers.get(note_id)
        if task is None:
            task = DebouncedTask(self.scheduler, self.debounce, lambda: self._on_debounce(note_id))
            self._debouncers[note_id] = task
        task.schedule()

    def _on_debounce(self, note_id: str) -> None:
        self._debouncers.pop(note_id, None)
        pending = self._pending.pop(note_id, None)
        if pending is not None:
            self._spawn(self.snapshot(note_id, *pending))

    def _on_interval(self) -> None:
        if self._last_seen is not None:
            self._spawn(self.snapshot(*self._last_seen))

    def _spawn(self, coro: Awaitable[Optional[NoteVersion]]) -> None:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def flush(self) -> None:
        """Run every pending debounced snapshot now and wait for in-flight writes."""
        for task in self._debouncers.values():
            task.cancel()
        self._debouncers.clear()
        pending, self._pending = self._pending, {}
        for note_id, (title, content) in pending.items():
            await self.snapshot(note_id, title, content)
        if self._inflight:
            await asyncio.gather(*list(self._inflight))

    async def snapshot(self, note_id: str, title: str, content: str) -> Optional[NoteVersion]:
        """Append a version unless content equals the latest one. Never raises."""
        try:
            async with self._write_lock:
                latest = await self.store.versions.latest_for_note(note_id)
                if latest is not None and latest.content == content:
                    return None
                version = NoteVersion(note_id=note_id, title=title, content=content)
                await self.store.versions.add(version)
        except Exception:
            logger.exception("Failed to save note version", extra={"note_id": note_id})
            return None
        logger.debug(f"Saved version {version.id} of note {note_id}", extra={"note_id": note_id})
        return version

    async def list_versions(self, note_id: str) -> List[NoteVersion]:
        """Versions for a note, newest first."""
        versions = await self.store.versions.for_note(note_id)
        return list(reversed(versions))

    async def restore(self, note_id: str, version_id: int) -> Note:
        """Write a stored version back through the notebook as a normal edit."""
        self.notebook.get_note(note_id)
        versions = await self.store.versions.for_note(note_id)
        version = next((v for v in versions if v.id == version_id), None)
        if version is None:
            raise NotebookValidationError(
                f"Version {version_id} of note '{note_id}' not found.", "not_found"
            )
        logger.info(f"Restoring note {note_id} to version {version_id}", extra={"note_id": note_id})
        return await self.notebook.update_note(note_id, title=version.title, content=version.content)


__all__ = ["VersionRecorder"]
