"""
Pydantic models for tool function arguments.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field


class CheckCalendarArgs(BaseModel):
    refresh: bool = Field(False, description="Fetch a fresh list instead of the cached one")


class ShiftAppointmentArgs(BaseModel):
    selection: str = Field(..., description="Which appointment, as the caller described it")
    new_date_time: Optional[str] = Field(
        None, description="New date and/or time in natural language, e.g. 'Friday 3pm'"
    )
    new_time: Optional[str] = Field(None, description="New time only, e.g. '3pm'")
    confirmation_received: bool = Field(
        False, description="True only after the caller said yes to the read-back"
    )


class CancelAppointmentArgs(BaseModel):
    selection: str = Field(..., description="Which appointment, as the caller described it")
    confirmation_received: bool = Field(
        False, description="True only after the caller said yes to the read-back"
    )


class CreateAppointmentArgs(BaseModel):
    summary: str
    date_time: str = Field(..., description="Date and time in natural language")
    duration_minutes: Optional[int] = Field(None, ge=5, le=600)


class EndCallArgs(BaseModel):
    reason: Optional[str] = None


def _sanitize_tool_arg(value: Optional[str]) -> Optional[str]:
    """Sanitize tool arguments - removes None, empty strings, and 'null' literals."""
    if not value:
        return None
    value = value.strip()
    return value if value.lower() not in ("null", "none") else None
