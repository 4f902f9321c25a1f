"""
In-memory session store keyed by call-stream id.

Handles:
- Creating and tearing down one session per call
- Accessors that guard cached appointments against being wiped by failed fetches
- Pending partial edits and conversation-state updates
- Sweeping idle sessions
"""

from __future__ import annotations

import time
from typing import Optional, Dict, Any, List

from config import logger, DEFAULT_LANGUAGE, SESSION_IDLE_TIMEOUT_SECONDS
from models.session import CallSession, CallerInfo, PendingEdit, ConversationState


class SessionNotFoundError(LookupError):
    """Raised when a call id has no live session."""


class SessionStore:
    def __init__(self):
        self._sessions: Dict[str, CallSession] = {}

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_session(
        self,
        session_id: str,
        caller_info: Optional[CallerInfo] = None,
        language: str = DEFAULT_LANGUAGE,
        workflow_type: Optional[str] = "appointment",
    ) -> CallSession:
        existing = self._sessions.get(session_id)
        if existing is not None:
            logger.warning(f"[SESSION] Session {session_id} already exists, reusing it")
            return existing
        session = CallSession(
            session_id=session_id,
            caller_info=caller_info or CallerInfo(),
            language=language,
            workflow_type=workflow_type,
        )
        self._sessions[session_id] = session
        logger.info(f"[SESSION] ✅ Created session {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[CallSession]:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> CallSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def end_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(
            f"[SESSION] 🧹 Ended session {session_id} after {int(time.time() - session.created_at)}s, "
            f"{session.turn_count} turns"
        )
        return True

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def active_count(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def cleanup_expired(self, max_idle_seconds: int = SESSION_IDLE_TIMEOUT_SECONDS) -> List[str]:
        expired = [sid for sid, s in self._sessions.items() if s.idle_seconds() > max_idle_seconds]
        for sid in expired:
            self.end_session(sid)
        if expired:
            logger.info(f"[SESSION] Swept {len(expired)} idle sessions")
        return expired

    # =========================================================================
    # CACHED APPOINTMENTS
    # =========================================================================

    def get_cached_appointments(self, session_id: str) -> List[Dict[str, Any]]:
        session = self._sessions.get(session_id)
        return list(session.cached_appointments) if session else []

    def store_fetched_appointments(self, session_id: str, appointments: List[Dict[str, Any]]) -> bool:
        """
        Record the result of a SUCCESSFUL fetch. Failed or timed-out fetches
        must not call this; they leave the last known good list in place.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.cached_appointments = list(appointments)
        session.last_activity = time.time()
        return True

    # =========================================================================
    # PENDING EDIT
    # =========================================================================

    def get_pending_edit(self, session_id: str) -> Optional[PendingEdit]:
        session = self._sessions.get(session_id)
        return session.pending_edit if session else None

    def set_pending_edit(self, session_id: str, pending: PendingEdit) -> None:
        session = self.require_session(session_id)
        session.pending_edit = pending

    def clear_pending_edit(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.pending_edit = None

    # =========================================================================
    # TRANSCRIPT & CONVERSATION STATE
    # =========================================================================

    def append_message(self, session_id: str, message: Dict[str, Any]) -> None:
        self.require_session(session_id).append_message(message)

    def get_conversation_state(self, session_id: str) -> ConversationState:
        session = self._sessions.get(session_id)
        return session.conversation_state if session else ConversationState()

    def set_conversation_state(self, session_id: str, state: ConversationState) -> None:
        self.require_session(session_id).conversation_state = state

    def reset_conversation_state(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.conversation_state = ConversationState()

    def mark_ending(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.is_ending = True

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "ending_sessions": sum(1 for s in self._sessions.values() if s.is_ending),
        }
