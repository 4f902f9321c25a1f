"""
Service modules package.

This package contains the call-handling services:
- Session store and turn-taking
- Calendar preloading and the Google Calendar fetcher
- Audit queue and its Supabase store
- Model and notifier adapters

The conversation engine and call orchestrator depend on `tools` and are
imported from their modules directly.
"""

from .session_store import SessionStore, SessionNotFoundError
from .turn_taking import TurnTakingEngine, TurnTakingState
from .calendar_preloader import CalendarPreloader
from .calendar_service import GoogleCalendarService, CalendarServiceError
from .audit_store import SupabaseAuditStore
from .audit_queue import BackgroundAuditLogger, parse_time_range
from .notification_service import SupabaseOutboxNotifier, recipient_for_shift
from .llm_service import OpenAIToolModel, ModelOutput, ToolCall, ModelInvocationError

__all__ = [
    "SessionStore",
    "SessionNotFoundError",
    "TurnTakingEngine",
    "TurnTakingState",
    "CalendarPreloader",
    "GoogleCalendarService",
    "CalendarServiceError",
    "SupabaseAuditStore",
    "BackgroundAuditLogger",
    "parse_time_range",
    "SupabaseOutboxNotifier",
    "recipient_for_shift",
    "OpenAIToolModel",
    "ModelOutput",
    "ToolCall",
    "ModelInvocationError",
]
