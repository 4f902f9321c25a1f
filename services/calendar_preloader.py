"""
Calendar preloading so the conversation never waits on the calendar API.

Handles:
- Starting a background fetch as soon as a call connects
- Capping concurrent fetches across all calls
- Sharing one in-flight fetch per session between callers
- Keeping the last good appointment list when a refresh fails or times out
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Dict, Any, List, Protocol

from config import (
    logger,
    PRELOAD_MAX_CONCURRENT,
    PRELOAD_TIMEOUT_SECONDS,
    PRELOAD_POLL_INTERVAL_SECONDS,
    PRELOAD_FILLERS,
)
from models.session import CallerInfo
from services.session_store import SessionStore
from utils.timers import race_with_timeout


class AppointmentFetcher(Protocol):
    async def fetch_appointments(
        self, caller_info: CallerInfo, force_refresh: bool = False
    ) -> List[Dict[str, Any]]: ...


@dataclass
class PendingPreload:
    task: asyncio.Task
    start_time: float
    caller_info: CallerInfo


class CalendarPreloader:
    def __init__(
        self,
        sessions: SessionStore,
        fetcher: AppointmentFetcher,
        max_concurrent: int = PRELOAD_MAX_CONCURRENT,
        timeout_seconds: float = PRELOAD_TIMEOUT_SECONDS,
        poll_interval: float = PRELOAD_POLL_INTERVAL_SECONDS,
    ):
        self._sessions = sessions
        self._fetcher = fetcher
        self.max_concurrent = max_concurrent
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval
        self._active = 0
        self._pending: Dict[str, PendingPreload] = {}

    @property
    def active_preloads(self) -> int:
        return self._active

    def is_preloading(self, session_id: str) -> bool:
        return session_id in self._pending

    # =========================================================================
    # PRELOAD
    # =========================================================================

    async def start_preloading(self, session_id: str, caller_info: CallerInfo) -> List[Dict[str, Any]]:
        cached = self._sessions.get_cached_appointments(session_id)
        if cached:
            logger.debug(f"[PRELOAD] Using cached appointments for {session_id}")
            return cached

        return await self._join_or_start(session_id, caller_info)

    async def refresh(self, session_id: str, caller_info: CallerInfo) -> List[Dict[str, Any]]:
        """Fetch even when a list is cached; a failed refresh leaves the cached list alone."""
        return await self._join_or_start(session_id, caller_info)

    async def _join_or_start(self, session_id: str, caller_info: CallerInfo) -> List[Dict[str, Any]]:
        entry = self._pending.get(session_id)
        if entry is None:
            entry = PendingPreload(
                task=asyncio.ensure_future(self._run_preload(session_id, caller_info)),
                start_time=time.monotonic(),
                caller_info=caller_info,
            )
            self._pending[session_id] = entry
        else:
            logger.debug(f"[PRELOAD] Joining in-flight preload for {session_id}")

        # Shielded so a cancelled turn does not kill the shared fetch
        return await asyncio.shield(entry.task)

    async def _run_preload(self, session_id: str, caller_info: CallerInfo) -> List[Dict[str, Any]]:
        acquired = False
        try:
            while self._active >= self.max_concurrent:
                logger.debug(f"[PRELOAD] Budget exhausted ({self._active}/{self.max_concurrent}), {session_id} waiting")
                await asyncio.sleep(self.poll_interval)
            self._active += 1
            acquired = True

            started = time.perf_counter()
            logger.info(f"[PRELOAD] 🚀 Fetching calendar for {session_id} ({self._active}/{self.max_concurrent} active)")
            appointments = await race_with_timeout(
                self._fetcher.fetch_appointments(caller_info, force_refresh=True),
                self.timeout_seconds,
            )
            self._sessions.store_fetched_appointments(session_id, appointments)
            logger.info(
                f"[PRELOAD] ✅ {len(appointments)} appointments for {session_id} "
                f"in {int((time.perf_counter() - started) * 1000)}ms"
            )
            return list(appointments)
        except asyncio.TimeoutError:
            logger.warning(f"[PRELOAD] ⏱️ Fetch timed out after {self.timeout_seconds}s for {session_id}, keeping cache")
            return self._sessions.get_cached_appointments(session_id)
        except Exception as e:
            logger.error(f"[PRELOAD] ❌ Fetch failed for {session_id}: {e}, keeping cache")
            return self._sessions.get_cached_appointments(session_id)
        finally:
            if acquired:
                self._active -= 1
            entry = self._pending.get(session_id)
            if entry is not None and entry.task is asyncio.current_task():
                del self._pending[session_id]

    # =========================================================================
    # READ PATH
    # =========================================================================

    async def get_appointments(self, session_id: str, caller_info: CallerInfo) -> List[Dict[str, Any]]:
        cached = self._sessions.get_cached_appointments(session_id)
        if cached:
            return cached

        entry = self._pending.get(session_id)
        if entry is not None:
            try:
                return await asyncio.shield(entry.task)
            except Exception as e:
                logger.warning(f"[PRELOAD] In-flight preload for {session_id} failed: {e}, starting fresh")

        return await self.start_preloading(session_id, caller_info)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    def cancel_preload(self, session_id: str) -> None:
        """Forget the in-flight entry; the fetch itself settles on its own."""
        if self._pending.pop(session_id, None) is not None:
            logger.info(f"[PRELOAD] Dropped in-flight preload for {session_id}")

    def cleanup(self) -> None:
        self._pending.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_preloads": self._active,
            "pending_sessions": list(self._pending),
            "max_concurrent": self.max_concurrent,
            "timeout_seconds": self.timeout_seconds,
        }

    @staticmethod
    def get_filler_phrase() -> str:
        """Short holding phrase for a turn that arrives while the preload is still running."""
        return random.choice(PRELOAD_FILLERS)
