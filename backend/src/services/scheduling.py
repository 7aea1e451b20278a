"""Cancel-and-reschedule timers on top of a pluggable scheduler."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Minimal clock + timer interface; tests substitute a manual one."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...

    def now(self) -> float: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(delay, callback)

    def now(self) -> float:
        return self._get_loop().time()


class DebouncedTask:
    """Run ``callback`` once, ``delay`` seconds after the last :meth:`schedule`."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], Any]):
        self._scheduler = scheduler
        self.delay = delay
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        self._handle = self._scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def fire_now(self) -> bool:
        """Run a pending callback immediately. Returns False if nothing was pending."""
        if not self.pending:
            return False
        self.cancel()
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("Debounced callback failed")


class PeriodicTask:
    """Run ``callback`` every ``interval`` seconds until stopped."""

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[[], Any]):
        self._scheduler = scheduler
        self.interval = interval
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._handle is None:
            self._handle = self._scheduler.call_later(self.interval, self._tick)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick(self) -> None:
        # Re-arm first so a failing callback does not stop the timer.
        self._handle = self._scheduler.call_later(self.interval, self._tick)
        try:
            self._callback()
        except Exception:
            logger.exception("Periodic callback failed")


__all__ = ["DebouncedTask", "LoopScheduler", "PeriodicTask", "Scheduler", "TimerHandle"]
