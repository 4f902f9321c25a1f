"""
Per-process orchestration context and per-call handler.

Handles:
- Building every long-lived service once at process start
- Starting a call: session, silence detection and background calendar preload
- Forwarding transport speech signals to the turn-taking engine
- Running conversation turns and speaking the reply
- Hanging up and fire-and-forget teardown
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Protocol, Set

from config import (
    logger,
    DEFAULT_TZ,
    DEFAULT_LANGUAGE,
    SESSION_IDLE_TIMEOUT_SECONDS,
    create_openai_client,
    create_supabase_client,
)
from models.session import CallerInfo, CallSession
from services.audit_queue import BackgroundAuditLogger
from services.audit_store import SupabaseAuditStore
from services.calendar_preloader import CalendarPreloader
from services.calendar_service import GoogleCalendarService
from services.conversation_engine import ConversationEngine, TurnResult
from services.llm_service import OpenAIToolModel, ToolCallingModel
from services.notification_service import Notifier, SupabaseOutboxNotifier
from services.session_store import SessionStore
from services.turn_taking import TurnTakingEngine
from tools.calendar_tools import build_calendar_registry
from tools.registry import CapabilityRegistry
from utils.call_logger import CallLogger, create_call_logger

SESSION_SWEEP_INTERVAL_SECONDS = 300


class CallTransport(Protocol):
    async def say(self, text: str) -> None:
        """Speak `text` and return once playback has finished."""
        ...

    async def hangup(self) -> None: ...


# =============================================================================
# ORCHESTRATION CONTEXT
# =============================================================================

@dataclass
class OrchestrationContext:
    sessions: SessionStore
    turn_taking: TurnTakingEngine
    preloader: CalendarPreloader
    audit: BackgroundAuditLogger
    calendar: Any
    registry: CapabilityRegistry
    model: ToolCallingModel
    notifier: Optional[Notifier] = None
    tz: str = DEFAULT_TZ
    now_fn: Optional[Callable[[], datetime]] = None
    engine: ConversationEngine = field(init=False)
    _sweeper: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.engine = ConversationEngine(
            sessions=self.sessions,
            registry=self.registry,
            model=self.model,
            preloader=self.preloader,
            calendar=self.calendar,
            audit=self.audit,
            notifier=self.notifier,
            tz=self.tz,
            now_fn=self.now_fn,
        )

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_idle_sessions())
        logger.info("[CONTEXT] ✅ Orchestration context started")

    async def aclose(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        for session_id in self.sessions.session_ids():
            self.turn_taking.cleanup_session(session_id)
        self.preloader.cleanup()
        await self.audit.flush()
        logger.info(f"[CONTEXT] 🧹 Closed; audit queue status: {self.audit.get_queue_status()}")

    async def _sweep_idle_sessions(self) -> None:
        while True:
            await asyncio.sleep(SESSION_SWEEP_INTERVAL_SECONDS)
            for session_id in self.sessions.cleanup_expired(SESSION_IDLE_TIMEOUT_SECONDS):
                self.turn_taking.cleanup_session(session_id)
                self.preloader.cancel_preload(session_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "sessions": self.sessions.get_stats(),
            "turn_taking_sessions": self.turn_taking.active_sessions(),
            "preload": self.preloader.get_stats(),
            "audit_queue": self.audit.get_queue_status(),
        }


def build_context() -> OrchestrationContext:
    """Wire the production collaborators (Google Calendar, Supabase, OpenAI)."""
    supabase = create_supabase_client()
    sessions = SessionStore()
    calendar = GoogleCalendarService()
    return OrchestrationContext(
        sessions=sessions,
        turn_taking=TurnTakingEngine(),
        preloader=CalendarPreloader(sessions, calendar),
        audit=BackgroundAuditLogger(SupabaseAuditStore(supabase)),
        calendar=calendar,
        registry=build_calendar_registry(),
        model=OpenAIToolModel(create_openai_client()),
        notifier=SupabaseOutboxNotifier(supabase),
    )


# =============================================================================
# CALL ORCHESTRATOR
# =============================================================================

class CallOrchestrator:
    def __init__(self, context: OrchestrationContext):
        self.context = context
        self._transports: Dict[str, CallTransport] = {}
        self._call_loggers: Dict[str, CallLogger] = {}
        self._background: Set[asyncio.Task] = set()
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        context.turn_taking.set_speak_callback(self.speak)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start_call(
        self,
        session_id: str,
        transport: CallTransport,
        caller_info: Optional[CallerInfo] = None,
        language: str = DEFAULT_LANGUAGE,
        workflow_type: Optional[str] = "appointment",
    ) -> CallSession:
        ctx = self.context
        session = ctx.sessions.create_session(session_id, caller_info, language, workflow_type)
        ctx.turn_taking.initialize_session(session_id, workflow_type)
        self._transports[session_id] = transport

        call_logger = create_call_logger(session_id)
        self._call_loggers[session_id] = call_logger
        call_logger.log_call_start(session.caller_info.phone_number, session.caller_info.name, workflow_type)

        # Warm the calendar while the greeting plays
        self._spawn(ctx.preloader.start_preloading(session_id, session.caller_info))
        return session

    def end_call(self, session_id: str, reason: str = "completed") -> None:
        """Tear down without waiting on in-flight work; safe to call more than once."""
        ctx = self.context
        ctx.turn_taking.cleanup_session(session_id)
        ctx.preloader.cancel_preload(session_id)
        session = ctx.sessions.get_session(session_id)
        turns = session.turn_count if session else 0
        ended = ctx.sessions.end_session(session_id)
        self._transports.pop(session_id, None)
        self._turn_locks.pop(session_id, None)
        call_logger = self._call_loggers.pop(session_id, None)
        if ended and call_logger:
            call_logger.log_call_end(reason, turns)

    async def _hangup(self, session_id: str) -> None:
        transport = self._transports.get(session_id)
        if transport is not None:
            try:
                await transport.hangup()
            except Exception as e:
                logger.error(f"[CALL] ❌ Hangup failed for {session_id}: {e}")
        self.end_call(session_id, reason="agent_hangup")

    # =========================================================================
    # TRANSPORT SIGNALS
    # =========================================================================

    def handle_speech_started(self, session_id: str) -> None:
        self.context.turn_taking.on_speech_started(session_id)

    def handle_speech_ended(self, session_id: str) -> None:
        self.context.turn_taking.on_speech_ended(session_id)

    def handle_assistant_speaking(self, session_id: str, speaking: bool) -> None:
        """Playback state reported by the transport itself (e.g. its own greeting)."""
        if speaking:
            self.context.turn_taking.on_assistant_speaking_start(session_id)
        else:
            self.context.turn_taking.on_assistant_speaking_end(session_id)

    async def handle_transcript(self, session_id: str, text: str) -> Optional[TurnResult]:
        text = (text or "").strip()
        if not text:
            return None
        # One turn at a time per call, in arrival order
        lock = self._turn_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            return await self._run_turn_and_reply(session_id, text)

    async def _run_turn_and_reply(self, session_id: str, text: str) -> Optional[TurnResult]:
        ctx = self.context
        session = ctx.sessions.get_session(session_id)
        if session is not None and session.is_ending:
            logger.debug(f"[CALL] Ignoring transcript for ending session {session_id}")
            return None

        if session is not None and not session.cached_appointments and ctx.preloader.is_preloading(session_id):
            await self.speak(session_id, ctx.preloader.get_filler_phrase())

        result = await ctx.engine.run_turn(session_id, text, self._call_loggers.get(session_id))
        await self.speak(session_id, result.response)
        if result.end_call:
            await self._hangup(session_id)
        return result

    async def speak(self, session_id: str, text: str) -> None:
        if not text:
            return
        transport = self._transports.get(session_id)
        if transport is None:
            logger.warning(f"[CALL] No transport for {session_id}, dropping utterance")
            return
        turn_taking = self.context.turn_taking
        turn_taking.on_assistant_speaking_start(session_id)
        try:
            await transport.say(text)
        except Exception as e:
            logger.error(f"[CALL] ❌ Speaking failed for {session_id}: {e}")
            call_logger = self._call_loggers.get(session_id)
            if call_logger:
                call_logger.log_error("transport", str(e))
        finally:
            turn_taking.on_assistant_speaking_end(session_id)
