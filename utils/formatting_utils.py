"""
General formatting utilities for speech and display.
"""

from __future__ import annotations

from datetime import datetime, date, time as dtime
from typing import Optional, Dict, Any, List
from zoneinfo import ZoneInfo

from dateutil import parser as dtparser


def parse_event_time(value: Optional[Dict[str, Any]], tz: Optional[str] = None) -> Optional[datetime]:
    """
    Parse a calendar `{dateTime, timeZone}` block into an aware datetime.
    All-day events (date only) start at midnight.
    """
    if not value:
        return None
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    dt = dtparser.isoparse(raw) if isinstance(raw, str) else raw
    if isinstance(dt, date) and not isinstance(dt, datetime):
        dt = datetime.combine(dt, dtime(0, 0))
    zone = value.get("timeZone") or tz
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(zone or "UTC"))
    elif zone:
        dt = dt.astimezone(ZoneInfo(zone))
    return dt


def spoken_time(dt: datetime) -> str:
    return dt.strftime("%I:%M %p").lstrip("0")


def spoken_date(d: date) -> str:
    return f"{d.strftime('%A, %B')} {d.day}"


def spoken_datetime(dt: datetime) -> str:
    return f"{spoken_date(dt)} at {spoken_time(dt)}"


def describe_appointment(appointment: Dict[str, Any], tz: Optional[str] = None) -> str:
    """'Dental checkup on Tuesday, October 20 at 10:00 AM'"""
    summary = appointment.get("summary") or "Untitled appointment"
    start = parse_event_time(appointment.get("start"), tz)
    if start is None:
        return summary
    return f"{summary} on {spoken_datetime(start)}"


def format_appointment_list(appointments: List[Dict[str, Any]], tz: Optional[str] = None) -> str:
    """Numbered list for the system prompt and check_calendar results."""
    if not appointments:
        return "No upcoming appointments found."
    return "\n".join(
        f"{i}. {describe_appointment(appt, tz)}" for i, appt in enumerate(appointments, start=1)
    )
