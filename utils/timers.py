"""
Cancellable timers and a race-with-timeout helper on top of the running event loop.

Handles:
- One-shot timers that can be cancelled any number of times
- Named timer groups (one per session) cleared in a single call
- Racing an awaitable against a deadline
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

from config import logger

T = TypeVar("T")


class CancellableTimer:
    """
    One-shot timer scheduled with loop.call_later.

    Coroutine callbacks are wrapped in a task; the task is cancelled as well if
    the timer is cancelled before the coroutine finishes.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[], Any], name: str = "timer"):
        self.name = name
        self._callback = callback
        self._loop = asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = self._loop.call_later(
            max(0.0, delay_seconds), self._fire
        )
        self._task: Optional[asyncio.Task] = None
        self._fired = False
        self._cancelled = False

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        self._fired = True
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                self._task = asyncio.ensure_future(result)
                self._task.add_done_callback(self._log_task_error)
        except Exception as e:
            logger.error(f"[TIMER] {self.name} callback failed: {e}")

    def _log_task_error(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[TIMER] {self.name} callback failed: {exc}")

    def cancel(self) -> None:
        """Idempotent; safe after the timer fired."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def pending(self) -> bool:
        return self._handle is not None and not self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired


class TimerGroup:
    """Named timers owned by one session. Starting a name replaces the old timer."""

    def __init__(self, owner: str = ""):
        self.owner = owner
        self._timers: Dict[str, CancellableTimer] = {}

    def start(self, name: str, delay_seconds: float, callback: Callable[[], Any]) -> CancellableTimer:
        self.cancel(name)

        # A fired timer leaves the group, so its callback can safely cancel siblings
        def _fire():
            if self._timers.get(name) is timer:
                del self._timers[name]
            return callback()

        timer = CancellableTimer(delay_seconds, _fire, name=f"{self.owner}:{name}")
        self._timers[name] = timer
        return timer

    def cancel(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()

    def cancel_many(self, names: Set[str]) -> None:
        for name in names:
            self.cancel(name)

    def cancel_all(self) -> None:
        for name in list(self._timers):
            self.cancel(name)

    def is_pending(self, name: str) -> bool:
        timer = self._timers.get(name)
        return timer is not None and timer.pending

    def pending_names(self) -> Set[str]:
        return {name for name, timer in self._timers.items() if timer.pending}


async def race_with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """
    Await `awaitable` but give up after `timeout_seconds`.

    Raises asyncio.TimeoutError on expiry; the loser is cancelled.
    """
    return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
