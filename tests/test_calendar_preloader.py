import asyncio

from config import PRELOAD_FILLERS
from models.session import CallerInfo
from services.calendar_preloader import CalendarPreloader
from services.session_store import SessionStore
from tests.fakes import FakeFetcher, appointment

DENTAL = appointment("evt-1", "Dental checkup", "2026-10-20T10:00:00+05:00", "2026-10-20T10:45:00+05:00")
BUSINESS = appointment("evt-2", "Business meeting", "2026-10-21T14:00:00+05:00", "2026-10-21T15:00:00+05:00")


def _store(*session_ids):
    sessions = SessionStore()
    for sid in session_ids:
        sessions.create_session(sid, CallerInfo(name="Ali", phone_number="+923001234567"))
    return sessions


def test_preload_stores_appointments_in_session() -> None:
    async def _run():
        sessions = _store("call-1")
        preloader = CalendarPreloader(sessions, FakeFetcher([DENTAL, BUSINESS]))
        result = await preloader.start_preloading("call-1", CallerInfo())
        assert [a["id"] for a in result] == ["evt-1", "evt-2"]
        assert len(sessions.get_cached_appointments("call-1")) == 2
        assert not preloader.is_preloading("call-1")

    asyncio.run(_run())


def test_concurrent_fetches_never_exceed_budget() -> None:
    async def _run():
        ids = [f"call-{i}" for i in range(7)]
        sessions = _store(*ids)
        fetcher = FakeFetcher([DENTAL], delay=0.03)
        preloader = CalendarPreloader(sessions, fetcher, max_concurrent=3, poll_interval=0.005)

        await asyncio.gather(*(preloader.start_preloading(sid, CallerInfo()) for sid in ids))

        assert fetcher.calls == 7
        assert fetcher.max_in_flight <= 3
        assert preloader.active_preloads == 0
        assert all(sessions.get_cached_appointments(sid) for sid in ids)

    asyncio.run(_run())


def test_single_in_flight_fetch_per_session() -> None:
    async def _run():
        sessions = _store("call-1")
        fetcher = FakeFetcher([DENTAL], delay=0.03)
        preloader = CalendarPreloader(sessions, fetcher)

        first = asyncio.ensure_future(preloader.start_preloading("call-1", CallerInfo()))
        await asyncio.sleep(0)
        assert preloader.is_preloading("call-1")
        second = await preloader.get_appointments("call-1", CallerInfo())
        assert await first == second
        assert fetcher.calls == 1

    asyncio.run(_run())


def test_cached_list_skips_fetch() -> None:
    async def _run():
        sessions = _store("call-1")
        sessions.store_fetched_appointments("call-1", [DENTAL])
        fetcher = FakeFetcher([BUSINESS])
        preloader = CalendarPreloader(sessions, fetcher)
        result = await preloader.get_appointments("call-1", CallerInfo())
        assert [a["id"] for a in result] == ["evt-1"]
        assert fetcher.calls == 0

    asyncio.run(_run())


def test_failed_refresh_keeps_cached_list() -> None:
    async def _run():
        sessions = _store("call-1")
        sessions.store_fetched_appointments("call-1", [DENTAL, BUSINESS])
        fetcher = FakeFetcher(error=ConnectionError("calendar down"))
        preloader = CalendarPreloader(sessions, fetcher)

        result = await preloader.refresh("call-1", CallerInfo())

        assert fetcher.calls == 1
        assert [a["id"] for a in result] == ["evt-1", "evt-2"]
        assert [a["id"] for a in sessions.get_cached_appointments("call-1")] == ["evt-1", "evt-2"]

    asyncio.run(_run())


def test_timed_out_refresh_keeps_cached_list() -> None:
    async def _run():
        sessions = _store("call-1")
        sessions.store_fetched_appointments("call-1", [DENTAL])
        fetcher = FakeFetcher([BUSINESS], delay=0.2)
        preloader = CalendarPreloader(sessions, fetcher, timeout_seconds=0.02)

        result = await preloader.refresh("call-1", CallerInfo())

        assert [a["id"] for a in result] == ["evt-1"]
        assert [a["id"] for a in sessions.get_cached_appointments("call-1")] == ["evt-1"]
        assert preloader.active_preloads == 0

    asyncio.run(_run())


def test_successful_refresh_replaces_cached_list() -> None:
    async def _run():
        sessions = _store("call-1")
        sessions.store_fetched_appointments("call-1", [DENTAL])
        preloader = CalendarPreloader(sessions, FakeFetcher([BUSINESS]))
        await preloader.refresh("call-1", CallerInfo())
        assert [a["id"] for a in sessions.get_cached_appointments("call-1")] == ["evt-2"]

    asyncio.run(_run())


def test_stats_filler_and_cancel() -> None:
    async def _run():
        sessions = _store("call-1")
        preloader = CalendarPreloader(sessions, FakeFetcher([DENTAL], delay=0.05), max_concurrent=2)
        task = asyncio.ensure_future(preloader.start_preloading("call-1", CallerInfo()))
        await asyncio.sleep(0.01)

        stats = preloader.get_stats()
        assert stats["pending_sessions"] == ["call-1"]
        assert stats["max_concurrent"] == 2
        assert preloader.get_filler_phrase() in PRELOAD_FILLERS

        preloader.cancel_preload("call-1")
        assert not preloader.is_preloading("call-1")
        await task

    asyncio.run(_run())
