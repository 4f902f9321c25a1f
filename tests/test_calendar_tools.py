import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from models.session import CallerInfo, PendingEdit
from models.tool_args import (
    CancelAppointmentArgs,
    CheckCalendarArgs,
    CreateAppointmentArgs,
    EndCallArgs,
    ShiftAppointmentArgs,
)
from services.audit_queue import BackgroundAuditLogger
from services.calendar_preloader import CalendarPreloader
from services.notification_service import OFFICE, TEAMMATE
from services.session_store import SessionStore
from tools.calendar_tools import (
    ToolContext,
    cancel_appointment,
    check_calendar,
    create_appointment,
    end_call,
    shift_appointment,
)
from tests.fakes import FakeAuditStore, FakeCalendar, FakeNotifier, appointment

TZ = "Asia/Karachi"
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=ZoneInfo(TZ))


def _appointments():
    return [
        appointment("evt-1", "Dental checkup", "2026-10-20T10:00:00+05:00", "2026-10-20T10:45:00+05:00"),
        appointment("evt-2", "Business meeting", "2026-10-21T14:00:00+05:00", "2026-10-21T15:00:00+05:00"),
    ]


def _context(appointments=None, calendar=None, notifier=None, store=None):
    sessions = SessionStore()
    sessions.create_session("call-1", CallerInfo(name="Ali", phone_number="+923001234567"))
    calendar = calendar or FakeCalendar(_appointments() if appointments is None else appointments)
    ctx = ToolContext(
        session_id="call-1",
        sessions=sessions,
        preloader=CalendarPreloader(sessions, calendar),
        calendar=calendar,
        audit=BackgroundAuditLogger(store or FakeAuditStore()),
        notifier=notifier if notifier is not None else FakeNotifier(),
        tz=TZ,
        now_fn=lambda: NOW,
    )
    return ctx, calendar


def _confirm(ctx: ToolContext) -> None:
    pending = ctx.sessions.get_pending_edit(ctx.session_id)
    ctx.sessions.set_pending_edit(ctx.session_id, replace(pending, confirmed=True, awaiting_confirmation=False))


def test_check_calendar_lists_appointments() -> None:
    async def _run():
        ctx, calendar = _context()
        result = await check_calendar(CheckCalendarArgs(), ctx)
        assert result["status"] == "ok"
        assert result["count"] == 2
        assert result["appointments"].startswith("1. Dental checkup on Tuesday, October 20 at 10:00 AM")

        await check_calendar(CheckCalendarArgs(), ctx)
        assert calendar.calls == 1
        await check_calendar(CheckCalendarArgs(refresh=True), ctx)
        assert calendar.calls == 2

    asyncio.run(_run())


def test_shift_without_date_or_time_asks_for_both() -> None:
    async def _run():
        ctx, calendar = _context()
        result = await shift_appointment(ShiftAppointmentArgs(selection="dental"), ctx)
        assert result["status"] == "need_date_time"
        assert result["missing"] == "date_time"
        assert ctx.sessions.get_pending_edit("call-1").appointment_id == "evt-1"
        assert calendar.updates == []

    asyncio.run(_run())


def test_date_only_shift_asks_for_time_then_merges() -> None:
    async def _run():
        ctx, calendar = _context()
        first = await shift_appointment(ShiftAppointmentArgs(selection="dental", new_date_time="Friday"), ctx)
        assert first["status"] == "need_date_time"
        assert first["missing"] == "time"
        assert first["hasPartialDate"] is True
        assert first["hasPartialTime"] is False

        # Caller only adds the time; the pending edit supplies the appointment and the day
        second = await shift_appointment(ShiftAppointmentArgs(selection="it", new_time="3pm"), ctx)
        assert second["status"] == "confirmation_required"
        assert second["appointmentName"] == "Dental checkup"
        assert second["newDate"] == "Friday, October 23"
        assert second["newTime"] == "3:00 PM"
        assert calendar.updates == []

    asyncio.run(_run())


def test_shift_requires_read_back_and_yes() -> None:
    async def _run():
        store = FakeAuditStore()
        notifier = FakeNotifier()
        ctx, calendar = _context(store=store, notifier=notifier)
        args = ShiftAppointmentArgs(selection="dental", new_date_time="Friday 3pm", confirmation_received=True)

        # A claimed confirmation before any read-back does not count
        first = await shift_appointment(args, ctx)
        assert first["status"] == "confirmation_required"
        assert ctx.sessions.get_pending_edit("call-1").awaiting_confirmation is True
        assert calendar.updates == []

        _confirm(ctx)
        second = await shift_appointment(args, ctx)
        assert second["status"] == "shifted"
        assert len(calendar.updates) == 1
        update = calendar.updates[0]
        assert update["id"] == "evt-1"
        assert update["start"] == datetime(2026, 10, 23, 15, 0, tzinfo=ZoneInfo(TZ))
        assert update["end"] - update["start"] == timedelta(minutes=45)
        assert ctx.sessions.get_pending_edit("call-1") is None
        assert notifier.sent[0]["recipient"] == OFFICE

        await ctx.audit.flush()
        row = store.rows[0]
        assert row["operation"] == "shift"
        assert row["success"] is True
        assert row["appointment_id"] == "evt-1"
        assert row["after_state"]["start"].startswith("2026-10-23T15:00")

    asyncio.run(_run())


def test_changed_target_needs_a_fresh_read_back() -> None:
    async def _run():
        ctx, calendar = _context()
        await shift_appointment(ShiftAppointmentArgs(selection="dental", new_date_time="Friday 3pm"), ctx)
        _confirm(ctx)

        result = await shift_appointment(
            ShiftAppointmentArgs(selection="dental", new_date_time="Saturday 4pm", confirmation_received=True), ctx
        )
        assert result["status"] == "confirmation_required"
        assert result["newDate"] == "Saturday, October 24"
        assert calendar.updates == []

    asyncio.run(_run())


def test_same_day_shift_notifies_teammate() -> None:
    async def _run():
        notifier = FakeNotifier()
        today = [appointment("evt-7", "Team standup", "2026-10-19T14:00:00+05:00", "2026-10-19T14:30:00+05:00")]
        ctx, calendar = _context(appointments=today, notifier=notifier)
        args = ShiftAppointmentArgs(selection="standup", new_date_time="today 5pm", confirmation_received=True)
        await shift_appointment(args, ctx)
        _confirm(ctx)
        result = await shift_appointment(args, ctx)

        assert result["status"] == "shifted"
        assert notifier.sent[0]["recipient"] == TEAMMATE
        assert notifier.sent[0]["message"].startswith("Ali (+92 300 1234567) moved 'Team standup'")

    asyncio.run(_run())


def test_notification_failure_is_recorded_not_raised() -> None:
    async def _run():
        store = FakeAuditStore()
        ctx, calendar = _context(store=store, notifier=FakeNotifier(error=ConnectionError("sms gateway down")))
        args = ShiftAppointmentArgs(selection="dental", new_date_time="Friday 3pm", confirmation_received=True)
        await shift_appointment(args, ctx)
        _confirm(ctx)
        result = await shift_appointment(args, ctx)

        assert result["status"] == "shifted"
        assert len(calendar.updates) == 1
        await ctx.audit.flush()
        row = store.rows[0]
        assert row["success"] is True
        assert row["error_count"] == 1
        assert row["errors"][0]["component"] == "notification"
        assert row["change_metadata"]["notification"]["sent"] is False

    asyncio.run(_run())


def test_calendar_write_failure_is_audited() -> None:
    async def _run():
        store = FakeAuditStore()
        calendar = FakeCalendar(_appointments(), write_error=RuntimeError("quota exceeded"))
        ctx, _ = _context(calendar=calendar, store=store)
        args = ShiftAppointmentArgs(selection="dental", new_date_time="Friday 3pm", confirmation_received=True)
        await shift_appointment(args, ctx)
        _confirm(ctx)
        result = await shift_appointment(args, ctx)

        assert result["status"] == "error"
        await ctx.audit.flush()
        assert store.rows[0]["success"] is False
        assert store.rows[0]["errors"][0]["component"] == "calendar"

    asyncio.run(_run())


def test_unknown_selection_returns_list() -> None:
    async def _run():
        ctx, calendar = _context()
        result = await shift_appointment(ShiftAppointmentArgs(selection="yoga", new_date_time="Friday 3pm"), ctx)
        assert result["status"] == "appointment_not_found"
        assert "Business meeting" in result["appointments"]

    asyncio.run(_run())


def test_cancel_requires_read_back_and_yes() -> None:
    async def _run():
        store = FakeAuditStore()
        notifier = FakeNotifier()
        ctx, calendar = _context(store=store, notifier=notifier)
        args = CancelAppointmentArgs(selection="business meeting", confirmation_received=True)

        first = await cancel_appointment(args, ctx)
        assert first["status"] == "confirmation_required"
        assert calendar.cancels == []

        _confirm(ctx)
        second = await cancel_appointment(args, ctx)
        assert second["status"] == "cancelled"
        assert calendar.cancels == ["evt-2"]
        assert notifier.sent[0]["recipient"] == OFFICE
        assert [a["id"] for a in ctx.sessions.get_cached_appointments("call-1")] == ["evt-1"]

        await ctx.audit.flush()
        assert len(store.rows) == 1
        assert store.rows[0]["operation"] == "cancel"
        assert store.rows[0]["success"] is True

    asyncio.run(_run())


def test_post_change_refresh_respects_preload_budget() -> None:
    async def _run():
        ctx, calendar = _context()
        ctx.preloader = CalendarPreloader(ctx.sessions, calendar, max_concurrent=1, poll_interval=0.005)
        await check_calendar(CheckCalendarArgs(), ctx)

        # Another caller's preload holds the only fetch slot
        ctx.sessions.create_session("call-2", CallerInfo(name="Sara"))
        calendar.delay = 0.03
        other = asyncio.ensure_future(ctx.preloader.start_preloading("call-2", CallerInfo(name="Sara")))
        await asyncio.sleep(0)
        assert ctx.preloader.active_preloads == 1

        args = CancelAppointmentArgs(selection="business meeting", confirmation_received=True)
        await cancel_appointment(args, ctx)
        _confirm(ctx)
        result = await cancel_appointment(args, ctx)
        await other

        assert result["status"] == "cancelled"
        assert calendar.max_in_flight == 1
        assert [a["id"] for a in ctx.sessions.get_cached_appointments("call-1")] == ["evt-1"]

    asyncio.run(_run())


def test_declined_cancel_does_not_run() -> None:
    async def _run():
        ctx, calendar = _context()
        args = CancelAppointmentArgs(selection="business", confirmation_received=True)
        await cancel_appointment(args, ctx)
        pending = ctx.sessions.get_pending_edit("call-1")
        ctx.sessions.set_pending_edit("call-1", replace(pending, confirmed=False, awaiting_confirmation=False))

        result = await cancel_appointment(args, ctx)
        assert result["status"] == "confirmation_required"
        assert calendar.cancels == []

    asyncio.run(_run())


def test_create_appointment() -> None:
    async def _run():
        store = FakeAuditStore()
        ctx, calendar = _context(store=store)
        partial = await create_appointment(CreateAppointmentArgs(summary="Haircut", date_time="tomorrow"), ctx)
        assert partial["status"] == "need_date_time"
        assert partial["missing"] == "time"

        result = await create_appointment(
            CreateAppointmentArgs(summary="Haircut", date_time="tomorrow at 4pm", duration_minutes=30), ctx
        )
        assert result["status"] == "created"
        created = calendar.creates[0]
        assert created["summary"] == "Haircut"
        assert created["start"]["dateTime"] == "2026-10-20T16:00:00+05:00"
        assert created["end"]["dateTime"] == "2026-10-20T16:30:00+05:00"

        await ctx.audit.flush()
        assert store.rows[0]["operation"] == "create"

    asyncio.run(_run())


def test_end_call_marks_session_ending() -> None:
    async def _run():
        ctx, _ = _context()
        result = await end_call(EndCallArgs(reason="done"), ctx)
        assert result["status"] == "ending"
        assert ctx.sessions.get_session("call-1").is_ending

    asyncio.run(_run())


def test_pending_edit_for_other_action_is_not_reused() -> None:
    async def _run():
        ctx, _ = _context()
        ctx.sessions.set_pending_edit(
            "call-1", PendingEdit(appointment_id="evt-1", appointment_name="Dental checkup", action="cancel")
        )
        result = await shift_appointment(ShiftAppointmentArgs(selection="it", new_time="3pm"), ctx)
        assert result["status"] == "appointment_not_found"

    asyncio.run(_run())
