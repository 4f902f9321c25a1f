"""
Calendar capabilities exposed to the conversation model.

Handles:
- Listing the caller's appointments
- Moving and cancelling appointments behind an explicit read-back and "yes"
- Creating appointments
- Ending the call
- Auditing and staff notification for every mutation

Every handler returns a JSON-serializable dict; the conversation engine turns
it into the tool message the model reads.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, List
from zoneinfo import ZoneInfo

from config import logger, DEFAULT_TZ, DEFAULT_MIN, FAREWELL_REPLY
from models.audit import AuditRecord
from models.session import CallSession, PendingEdit
from models.tool_args import (
    CheckCalendarArgs,
    ShiftAppointmentArgs,
    CancelAppointmentArgs,
    CreateAppointmentArgs,
    EndCallArgs,
    _sanitize_tool_arg,
)
from services.audit_queue import BackgroundAuditLogger
from services.calendar_preloader import CalendarPreloader
from services.notification_service import Notifier, OFFICE, recipient_for_shift
from services.session_store import SessionStore
from tools.registry import CapabilityRegistry
from utils.appointment_matcher import find_appointment_by_selection
from utils.date_parser import parse_date_time
from utils.formatting_utils import (
    parse_event_time,
    spoken_date,
    spoken_time,
    spoken_datetime,
    format_appointment_list,
)
from utils.phone_utils import speakable_phone


@dataclass
class ToolContext:
    """Per-invocation dependencies handed to every capability handler."""
    session_id: str
    sessions: SessionStore
    preloader: CalendarPreloader
    calendar: Any
    audit: BackgroundAuditLogger
    notifier: Optional[Notifier] = None
    tz: str = DEFAULT_TZ
    now_fn: Optional[Callable[[], datetime]] = None

    def now(self) -> datetime:
        if self.now_fn is not None:
            return self.now_fn()
        return datetime.now(ZoneInfo(self.tz))


# =============================================================================
# HELPERS
# =============================================================================

def _appointment_times(appointment: Dict[str, Any], tz: str) -> tuple[Optional[datetime], Optional[datetime]]:
    start = parse_event_time(appointment.get("start"), tz)
    end = parse_event_time(appointment.get("end"), tz)
    if start is not None and end is None:
        end = start + timedelta(minutes=DEFAULT_MIN)
    return start, end


def _snapshot(appointment: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "summary": appointment.get("summary"),
        "start": (appointment.get("start") or {}).get("dateTime"),
        "end": (appointment.get("end") or {}).get("dateTime"),
    }


def _find_by_id(appointments: List[Dict[str, Any]], appointment_id: str) -> Optional[Dict[str, Any]]:
    for appt in appointments:
        if appt.get("id") == appointment_id:
            return appt
    return None


async def _load_appointments(ctx: ToolContext, session: CallSession) -> List[Dict[str, Any]]:
    return await ctx.preloader.get_appointments(ctx.session_id, session.caller_info)


def _resolve_appointment(
    selection: Optional[str],
    appointments: List[Dict[str, Any]],
    pending: Optional[PendingEdit],
    action: str,
) -> tuple[Optional[Dict[str, Any]], str]:
    match = find_appointment_by_selection(selection or "", appointments)
    if match.found:
        return match.appointment, match.strategy
    # The caller may only be adding the missing half ("make it 3pm")
    if pending is not None and pending.action == action:
        appointment = _find_by_id(appointments, pending.appointment_id)
        if appointment is not None:
            return appointment, "pending_edit"
    return None, "not_found"


def _not_found(selection: Optional[str], appointments: List[Dict[str, Any]], tz: str) -> Dict[str, Any]:
    return {
        "status": "appointment_not_found",
        "selection": selection,
        "appointments": format_appointment_list(appointments, tz),
        "message": "No appointment matched. Read the list to the caller and ask which one they mean.",
    }


async def _refresh_cache(ctx: ToolContext, session: CallSession) -> None:
    # Goes through the preloader so the fetch counts against the shared budget
    await ctx.preloader.refresh(ctx.session_id, session.caller_info)


async def _notify(ctx: ToolContext, record: AuditRecord, role: str, message: str) -> None:
    if ctx.notifier is None:
        record.change_metadata["notification"] = {"recipient": role, "sent": False, "reason": "no notifier"}
        return
    try:
        result = await ctx.notifier.notify(role, message)
        record.change_metadata["notification"] = {"recipient": role, "sent": True, "result": result}
    except Exception as e:
        logger.warning(f"[NOTIFY] ⚠️ Notification to {role} failed: {e}")
        record.add_error("notification", str(e))
        record.change_metadata["notification"] = {"recipient": role, "sent": False}


def _caller_label(session: CallSession) -> str:
    info = session.caller_info
    if info.phone_number:
        phone = speakable_phone(info.phone_number)
        return f"{info.name} ({phone})" if info.name else phone
    return info.name or "A caller"


def _audit(ctx: ToolContext, record: AuditRecord, success: bool) -> None:
    record.finish(success)
    ctx.audit.log_appointment_change(record)


# =============================================================================
# CAPABILITIES
# =============================================================================

async def check_calendar(args: CheckCalendarArgs, ctx: ToolContext) -> Dict[str, Any]:
    session = ctx.sessions.require_session(ctx.session_id)
    if args.refresh:
        appointments = await ctx.preloader.refresh(ctx.session_id, session.caller_info)
    else:
        appointments = await _load_appointments(ctx, session)
    return {
        "status": "ok",
        "count": len(appointments),
        "appointments": format_appointment_list(appointments, ctx.tz),
    }


async def shift_appointment(args: ShiftAppointmentArgs, ctx: ToolContext) -> Dict[str, Any]:
    session = ctx.sessions.require_session(ctx.session_id)
    appointments = await _load_appointments(ctx, session)
    pending = ctx.sessions.get_pending_edit(ctx.session_id)

    appointment, strategy = _resolve_appointment(args.selection, appointments, pending, "shift")
    if appointment is None:
        return _not_found(args.selection, appointments, ctx.tz)

    if pending is None or pending.action != "shift" or pending.appointment_id != appointment.get("id"):
        pending = PendingEdit(
            appointment_id=appointment.get("id"),
            appointment_name=appointment.get("summary") or "appointment",
            action="shift",
        )

    phrase = " ".join(p for p in (_sanitize_tool_arg(args.new_date_time), _sanitize_tool_arg(args.new_time)) if p)
    parsed = parse_date_time(phrase, now=ctx.now())
    new_date = parsed.date or pending.new_date
    new_time = parsed.time or pending.new_time
    if (new_date, new_time) != (pending.new_date, pending.new_time):
        # A changed target needs a fresh read-back
        pending = replace(pending, new_date=new_date, new_time=new_time, awaiting_confirmation=False, confirmed=False)

    missing = pending.missing()
    if missing:
        ctx.sessions.set_pending_edit(ctx.session_id, pending)
        ask = {"date_time": "the new date and time", "date": "which day", "time": "what time"}[missing]
        return {
            "status": "need_date_time",
            "appointmentName": pending.appointment_name,
            "missing": missing,
            "hasPartialDate": pending.new_date is not None,
            "hasPartialTime": pending.new_time is not None,
            "message": f"Ask the caller {ask} they want for the {pending.appointment_name}.",
        }

    new_start = datetime.combine(pending.new_date, pending.new_time).replace(tzinfo=ZoneInfo(ctx.tz))
    if not (args.confirmation_received and pending.confirmed):
        ctx.sessions.set_pending_edit(ctx.session_id, replace(pending, awaiting_confirmation=True))
        return {
            "status": "confirmation_required",
            "appointmentName": pending.appointment_name,
            "newDate": spoken_date(new_start),
            "newTime": spoken_time(new_start),
            "message": (
                f"Read back: move {pending.appointment_name} to {spoken_datetime(new_start)}. "
                "Ask the caller to confirm before changing anything."
            ),
        }

    orig_start, orig_end = _appointment_times(appointment, ctx.tz)
    duration = (orig_end - orig_start) if orig_start and orig_end else timedelta(minutes=DEFAULT_MIN)
    new_end = new_start + duration

    record = AuditRecord(
        session_id=ctx.session_id,
        operation="shift",
        appointment_id=appointment.get("id"),
        caller_id=session.caller_info.phone_number,
        before_state=_snapshot(appointment),
        change_metadata={"selection": args.selection, "match_strategy": strategy},
    )
    try:
        await ctx.calendar.update_appointment(appointment.get("id"), new_start, new_end, ctx.tz)
    except Exception as e:
        logger.error(f"[TOOLS] ❌ Shift failed for {appointment.get('id')}: {e}")
        record.add_error("calendar", str(e))
        _audit(ctx, record, success=False)
        return {
            "status": "error",
            "message": "The calendar could not be updated right now. Apologize and offer to try again.",
        }

    record.after_state = {
        "summary": appointment.get("summary"),
        "start": new_start.isoformat(),
        "end": new_end.isoformat(),
    }
    role = recipient_for_shift(orig_start or new_start, new_start, now=ctx.now())
    await _notify(
        ctx,
        record,
        role,
        f"{_caller_label(session)} moved '{pending.appointment_name}' "
        f"from {spoken_datetime(orig_start) if orig_start else 'its original time'} to {spoken_datetime(new_start)}.",
    )
    _audit(ctx, record, success=True)
    ctx.sessions.clear_pending_edit(ctx.session_id)
    await _refresh_cache(ctx, session)
    logger.info(f"[TOOLS] ✅ Shifted {appointment.get('id')} to {new_start.isoformat()}")

    return {
        "status": "shifted",
        "appointmentName": pending.appointment_name,
        "newDate": spoken_date(new_start),
        "newTime": spoken_time(new_start),
        "message": f"{pending.appointment_name} is now on {spoken_datetime(new_start)}. Ask if there is anything else.",
    }


async def cancel_appointment(args: CancelAppointmentArgs, ctx: ToolContext) -> Dict[str, Any]:
    session = ctx.sessions.require_session(ctx.session_id)
    appointments = await _load_appointments(ctx, session)
    pending = ctx.sessions.get_pending_edit(ctx.session_id)

    appointment, strategy = _resolve_appointment(args.selection, appointments, pending, "cancel")
    if appointment is None:
        return _not_found(args.selection, appointments, ctx.tz)

    name = appointment.get("summary") or "appointment"
    start, _ = _appointment_times(appointment, ctx.tz)
    same_target = (
        pending is not None and pending.action == "cancel" and pending.appointment_id == appointment.get("id")
    )
    if not (args.confirmation_received and same_target and pending.confirmed):
        ctx.sessions.set_pending_edit(
            ctx.session_id,
            PendingEdit(appointment_id=appointment.get("id"), appointment_name=name, action="cancel",
                        awaiting_confirmation=True),
        )
        when = f" on {spoken_datetime(start)}" if start else ""
        return {
            "status": "confirmation_required",
            "appointmentName": name,
            "message": f"Read back: cancel {name}{when}. Ask the caller to confirm before cancelling.",
        }

    record = AuditRecord(
        session_id=ctx.session_id,
        operation="cancel",
        appointment_id=appointment.get("id"),
        caller_id=session.caller_info.phone_number,
        before_state=_snapshot(appointment),
        change_metadata={"selection": args.selection, "match_strategy": strategy},
    )
    try:
        await ctx.calendar.cancel_appointment(appointment.get("id"))
    except Exception as e:
        logger.error(f"[TOOLS] ❌ Cancel failed for {appointment.get('id')}: {e}")
        record.add_error("calendar", str(e))
        _audit(ctx, record, success=False)
        return {
            "status": "error",
            "message": "The appointment could not be cancelled right now. Apologize and offer to try again.",
        }

    record.after_state = {"summary": name, "status": "cancelled"}
    when = spoken_datetime(start) if start else "its scheduled time"
    await _notify(ctx, record, OFFICE, f"{_caller_label(session)} cancelled '{name}' on {when}.")
    _audit(ctx, record, success=True)
    ctx.sessions.clear_pending_edit(ctx.session_id)
    await _refresh_cache(ctx, session)
    logger.info(f"[TOOLS] ✅ Cancelled {appointment.get('id')}")

    return {
        "status": "cancelled",
        "appointmentName": name,
        "message": f"{name} has been cancelled. Ask if there is anything else.",
    }


async def create_appointment(args: CreateAppointmentArgs, ctx: ToolContext) -> Dict[str, Any]:
    session = ctx.sessions.require_session(ctx.session_id)
    parsed = parse_date_time(args.date_time, now=ctx.now())
    if not parsed.is_complete:
        missing = "date_time" if not (parsed.has_date or parsed.has_time) else ("date" if not parsed.has_date else "time")
        return {
            "status": "need_date_time",
            "missing": missing,
            "hasPartialDate": parsed.has_date,
            "hasPartialTime": parsed.has_time,
            "message": "Ask the caller for the missing day or time.",
        }

    start = parsed.to_datetime(ctx.tz)
    end = start + timedelta(minutes=args.duration_minutes or DEFAULT_MIN)
    record = AuditRecord(
        session_id=ctx.session_id,
        operation="create",
        caller_id=session.caller_info.phone_number,
        change_metadata={"summary": args.summary},
    )
    try:
        created = await ctx.calendar.create_appointment(args.summary, start, end, ctx.tz)
    except Exception as e:
        logger.error(f"[TOOLS] ❌ Create failed: {e}")
        record.add_error("calendar", str(e))
        _audit(ctx, record, success=False)
        return {
            "status": "error",
            "message": "The appointment could not be created right now. Apologize and offer to try again.",
        }

    record.appointment_id = created.get("id")
    record.after_state = _snapshot(created)
    await _notify(ctx, record, OFFICE, f"{_caller_label(session)} booked '{args.summary}' on {spoken_datetime(start)}.")
    _audit(ctx, record, success=True)
    await _refresh_cache(ctx, session)

    return {
        "status": "created",
        "appointmentName": args.summary,
        "newDate": spoken_date(start),
        "newTime": spoken_time(start),
        "message": f"{args.summary} is booked for {spoken_datetime(start)}. Ask if there is anything else.",
    }


async def end_call(args: EndCallArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.sessions.mark_ending(ctx.session_id)
    logger.info(f"[TOOLS] 👋 end_call for {ctx.session_id} reason={args.reason or 'caller finished'}")
    return {"status": "ending", "message": FAREWELL_REPLY}


# =============================================================================
# REGISTRY
# =============================================================================

def build_calendar_registry() -> CapabilityRegistry:
    registry = CapabilityRegistry()
    registry.capability(
        "check_calendar",
        "List the caller's upcoming appointments. Use refresh=true only if the caller says the list is out of date.",
        CheckCalendarArgs,
    )(check_calendar)
    registry.capability(
        "shift_appointment",
        """
Move an existing appointment to a new date and time.

RULES:
1. Pass whatever date/time the caller gave, even if only a day or only a time.
2. When the result is confirmation_required, read the change back and wait for the caller.
3. Set confirmation_received=true ONLY after the caller said yes to that read-back.
""",
        ShiftAppointmentArgs,
        mutating=True,
        task_type="shift",
    )(shift_appointment)
    registry.capability(
        "cancel_appointment",
        """
Cancel an existing appointment.

RULES:
1. The first call reads the appointment back; ask the caller to confirm.
2. Set confirmation_received=true ONLY after the caller said yes to that read-back.
""",
        CancelAppointmentArgs,
        mutating=True,
        task_type="cancel",
    )(cancel_appointment)
    registry.capability(
        "create_appointment",
        "Book a new appointment once the caller has given a title, a day and a time.",
        CreateAppointmentArgs,
        mutating=True,
        task_type="create",
    )(create_appointment)
    registry.capability(
        "end_call",
        "End the call when the caller is done or says goodbye.",
        EndCallArgs,
        terminal=True,
    )(end_call)
    return registry
