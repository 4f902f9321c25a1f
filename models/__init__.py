"""
Data models for the voice calendar agent.
"""

from .session import (
    CallerInfo,
    PendingEdit,
    ConversationState,
    CallSession,
)
from .audit import AuditRecord
from .tool_args import (
    CheckCalendarArgs,
    ShiftAppointmentArgs,
    CancelAppointmentArgs,
    CreateAppointmentArgs,
    EndCallArgs,
    _sanitize_tool_arg,
)

__all__ = [
    "CallerInfo",
    "PendingEdit",
    "ConversationState",
    "CallSession",
    "AuditRecord",
    "CheckCalendarArgs",
    "ShiftAppointmentArgs",
    "CancelAppointmentArgs",
    "CreateAppointmentArgs",
    "EndCallArgs",
    "_sanitize_tool_arg",
]
