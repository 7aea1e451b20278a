"""Optimistic update engine and single-flight initialization guard.

Every workspace mutation follows the same shape: apply the change to the
in-memory :class:`StateStore` right away, persist it, and roll the in-memory
change back if persisting fails. The engine is the one place that knows how
to do that, so a failed write can never leave memory and disk disagreeing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .state import StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceError(Exception):
    """Raised after a failed persist has been rolled back.

    Non-fatal: the in-memory state is already consistent with the store again.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


class InitializationError(Exception):
    """Raised when the initialization loader fails. A later call retries."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InitializationGuard:
    """Run an async loader at most once, even under concurrent callers.

    Late callers await the in-flight run instead of starting another one. If
    the loader fails, the guard is not marked done and the next call runs the
    loader again.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None
        self._done = False
        self.runs = 0

    @property
    def is_done(self) -> bool:
        return self._done

    async def ensure(self, loader: Callable[[], Awaitable[Any]]) -> None:
        if self._done:
            return
        if self._task is None:
            self._task = asyncio.ensure_future(self._run(loader))
        # Shield so one cancelled caller does not cancel the shared run.
        await asyncio.shield(self._task)

    async def _run(self, loader: Callable[[], Awaitable[Any]]) -> None:
        self.runs += 1
        try:
            await loader()
        except Exception as exc:
            self._task = None
            logger.error(f"Initialization failed: {exc}")
            raise InitializationError(f"Initialization failed: {exc}") from exc
        self._done = True

    def reset(self) -> None:
        """Forget a completed initialization (used by wholesale import and tests)."""
        self._task = None
        self._done = False


class OptimisticUpdateEngine:
    """Apply-then-persist with rollback for a :class:`StateStore`."""

    def __init__(self, state: StateStore):
        self.state = state

    async def apply(
        self,
        local_mutation: Callable[[], None],
        persist: Callable[[], Awaitable[T]],
        rollback: Callable[[], None],
        operation: str = "mutation",
    ) -> T:
        """Apply ``local_mutation`` now, await ``persist``, roll back on failure.

        Raises:
            PersistenceError: persist failed; ``rollback`` has already run.
        """
        local_mutation()
        try:
            result = await persist()
        except Exception as exc:
            rollback()
            message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            logger.error(
                f"Persist failed for {operation}, rolled back: {message}",
                extra={"operation": operation},
            )
            self.state.set(sync_error=message)
            raise PersistenceError(message, operation=operation) from exc

        if self.state.sync_error is not None:
            self.state.set(sync_error=None)
        return result

    async def apply_snapshot(
        self,
        keys: tuple[str, ...],
        local_mutation: Callable[[], None],
        persist: Callable[[], Awaitable[T]],
        operation: str = "mutation",
    ) -> T:
        """Like :meth:`apply`, rolling back by restoring a snapshot of ``keys``."""
        snapshot = self.state.snapshot(*keys)
        return await self.apply(
            local_mutation,
            persist,
            lambda: self.state.restore(snapshot),
            operation=operation,
        )


__all__ = [
    "InitializationError",
    "InitializationGuard",
    "OptimisticUpdateEngine",
    "PersistenceError",
]
