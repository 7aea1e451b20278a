"""Reactive in-memory mirror of the workspace.

A single :class:`StateStore` holds what the UI renders. Mutations go through
:meth:`StateStore.set`, which notifies subscribers once per call with the
set of changed keys. Snapshots of any slice can be taken and restored so the
optimistic update engine can roll back exactly what it changed.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..models.note import Connection, Folder, Note
from ..models.settings import AiSettings
from ..models.studio import AuditLogEntry, FeatureFlag, PatchProposal

logger = logging.getLogger(__name__)

Listener = Callable[[FrozenSet[str]], None]

STATE_KEYS: tuple[str, ...] = (
    "notes",
    "folders",
    "connections",
    "patches",
    "feature_flags",
    "audit_log",
    "settings",
    "active_note_id",
    "active_folder_id",
    "sync_error",
    "is_initialized",
)


def _initial_state() -> Dict[str, Any]:
    return {
        "notes": [],
        "folders": [],
        "connections": [],
        "patches": [],
        "feature_flags": [],
        "audit_log": [],
        "settings": AiSettings(),
        "active_note_id": None,
        "active_folder_id": "all",
        "sync_error": None,
        "is_initialized": False,
    }


class StateSnapshot:
    """Deep copy of a subset of state keys."""

    def __init__(self, values: Dict[str, Any]):
        self.values = values

    @property
    def keys(self) -> FrozenSet[str]:
        return frozenset(self.values)


class StateStore:
    """Explicit reactive store with a subscribe/notify contract."""

    def __init__(self) -> None:
        self._state: Dict[str, Any] = _initial_state()
        self._listeners: List[Listener] = []

    # Typed read accessors ------------------------------------------------

    @property
    def notes(self) -> List[Note]:
        return self._state["notes"]

    @property
    def folders(self) -> List[Folder]:
        return self._state["folders"]

    @property
    def connections(self) -> List[Connection]:
        return self._state["connections"]

    @property
    def patches(self) -> List[PatchProposal]:
        return self._state["patches"]

    @property
    def feature_flags(self) -> List[FeatureFlag]:
        return self._state["feature_flags"]

    @property
    def audit_log(self) -> List[AuditLogEntry]:
        return self._state["audit_log"]

    @property
    def settings(self) -> AiSettings:
        return self._state["settings"]

    @property
    def active_note_id(self) -> Optional[str]:
        return self._state["active_note_id"]

    @property
    def active_folder_id(self) -> Optional[str]:
        return self._state["active_folder_id"]

    @property
    def sync_error(self) -> Optional[str]:
        return self._state["sync_error"]

    @property
    def is_initialized(self) -> bool:
        return self._state["is_initialized"]

    def get(self, key: str) -> Any:
        return self._state[key]

    def find_note(self, note_id: str) -> Optional[Note]:
        return next((n for n in self.notes if n.id == note_id), None)

    def find_folder(self, folder_id: str) -> Optional[Folder]:
        return next((f for f in self.folders if f.id == folder_id), None)

    def find_folder_by_name(self, name: str) -> Optional[Folder]:
        return next((f for f in self.folders if f.name == name), None)

    # Mutation and notification ------------------------------------------

    def set(self, **changes: Any) -> None:
        """Replace the given keys and notify subscribers once."""
        unknown = set(changes) - set(STATE_KEYS)
        if unknown:
            raise KeyError(f"Unknown state keys: {sorted(unknown)}")
        self._state.update(changes)
        self._notify(frozenset(changes))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changed: FrozenSet[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception:
                logger.exception("State listener failed", extra={"changed": sorted(changed)})

    # Snapshots -------------------------------------------------------------

    def snapshot(self, *keys: str) -> StateSnapshot:
        """Deep copy the given keys (all keys when none are given)."""
        selected = keys or STATE_KEYS
        return StateSnapshot({key: copy.deepcopy(self._state[key]) for key in selected})

    def restore(self, snapshot: StateSnapshot) -> None:
        self.set(**snapshot.values)

    def reset(self) -> None:
        self._state = _initial_state()
        self._notify(frozenset(STATE_KEYS))


__all__ = ["STATE_KEYS", "StateSnapshot", "StateStore"]
