"""
Per-call session state.

Handles:
- Caller identity and negotiated language
- Capped conversation transcript
- Cached appointment list and the pending partial edit
- Conversation-state flags merged across turns
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import date, time as dtime
from typing import Optional, Dict, Any, List

from config import MAX_TRANSCRIPT_MESSAGES


# =============================================================================
# CALLER IDENTITY
# =============================================================================

@dataclass
class CallerInfo:
    name: Optional[str] = None
    phone_number: Optional[str] = None
    call_sid: Optional[str] = None

    def cache_key(self) -> str:
        return f"{self.phone_number or 'unknown'}_{self.name or 'unknown'}"


# =============================================================================
# PENDING EDIT
# =============================================================================

@dataclass
class PendingEdit:
    """
    A partially specified change the caller is still describing.

    Date and time arrive in any order across turns; the mutating capability
    only runs once both are known and the caller has said yes to the read-back.
    """
    appointment_id: str
    appointment_name: str
    action: str  # "shift" | "cancel"
    new_date: Optional[date] = None
    new_time: Optional[dtime] = None
    awaiting_confirmation: bool = False
    confirmed: bool = False

    def missing(self) -> Optional[str]:
        if self.action != "shift":
            return None
        if self.new_date is None and self.new_time is None:
            return "date_time"
        if self.new_date is None:
            return "date"
        if self.new_time is None:
            return "time"
        return None


# =============================================================================
# CONVERSATION STATE
# =============================================================================

@dataclass(frozen=True)
class ConversationState:
    task_completed: bool = False
    assistance_offered: bool = False
    is_response_to_assistance: bool = False
    end_call_eligible: bool = False
    last_task_type: Optional[str] = None

    def merge(self, **updates: Any) -> "ConversationState":
        return replace(self, **updates)


# =============================================================================
# SESSION
# =============================================================================

@dataclass
class CallSession:
    session_id: str
    caller_info: CallerInfo = field(default_factory=CallerInfo)
    language: str = "en-US"
    workflow_type: Optional[str] = "appointment"
    transcript: List[Dict[str, Any]] = field(default_factory=list)
    cached_appointments: List[Dict[str, Any]] = field(default_factory=list)
    pending_edit: Optional[PendingEdit] = None
    conversation_state: ConversationState = field(default_factory=ConversationState)
    last_user_text: str = ""
    is_ending: bool = False
    turn_count: int = 0
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def append_message(self, message: Dict[str, Any]) -> None:
        self.transcript.append(message)
        overflow = len(self.transcript) - MAX_TRANSCRIPT_MESSAGES
        if overflow > 0:
            del self.transcript[:overflow]
        self.last_activity = time.time()

    def idle_seconds(self) -> float:
        return time.time() - self.last_activity
