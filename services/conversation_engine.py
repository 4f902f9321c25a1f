"""
Conversation state machine for one caller turn.

Handles:
- Agent node: bounded prompt, model call, conversation-state flags
- Tool node: typed capability dispatch with error-content results
- Routing between agent, tools, end of turn and end of call
- Ending the call when the caller turns down an offer of more help
- Classifying the caller's reply to a pending read-back

Nothing raised in here reaches the caller; every path ends in a spoken reply.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Iterable
from zoneinfo import ZoneInfo

from config import (
    logger,
    ASSISTANT_NAME,
    DEFAULT_TZ,
    HISTORY_WINDOW,
    RECURSION_LIMIT,
    FAREWELL_REPLY,
    MODEL_FAILURE_REPLY,
    TURN_FAILURE_REPLY,
    SESSION_MISSING_REPLY,
)
from models.session import CallSession, ConversationState
from prompts.agent_prompts import CALENDAR_AGENT_PROMPT, render_pending_edit
from services.llm_service import ModelOutput, ToolCall, ToolCallingModel
from services.session_store import SessionStore
from tools.calendar_tools import ToolContext
from tools.registry import CapabilityRegistry, UnknownCapabilityError
from utils.call_logger import CallLogger
from utils.classifiers import (
    classify_confirmation,
    declines_further_help,
    is_goodbye,
    offers_assistance,
    CONFIRM,
    DENY,
)
from utils.formatting_utils import format_appointment_list, spoken_date
from utils.latency_metrics import TurnMetrics

ROUTE_TOOLS = "tools"
ROUTE_END_CALL = "end_call"
ROUTE_END_TURN = "end_turn"

TERMINAL_CAPABILITIES = frozenset({"end_call"})


@dataclass
class TurnResult:
    response: str
    end_call: bool = False
    tool_calls: List[str] = field(default_factory=list)
    processing_ms: int = 0


# =============================================================================
# PURE HELPERS
# =============================================================================

def window_history(transcript: List[Dict[str, Any]], window: int = HISTORY_WINDOW) -> List[Dict[str, Any]]:
    """Last `window` messages, never starting on a tool result whose call was cut off."""
    recent = list(transcript[-window:]) if window > 0 else []
    while recent and recent[0].get("role") == "tool":
        recent.pop(0)
    return recent


def track_conversation_state(
    previous: ConversationState,
    response_text: str,
    task_types: Iterable[str],
) -> ConversationState:
    """
    Recompute the turn flags from the agent's output.

    `previous` is the state at the start of the caller turn, so a turn that
    answers an earlier offer stays marked as a response even after the agent
    has called tools within it.
    """
    offered = offers_assistance(response_text)
    task_types = [t for t in task_types if t]
    task_completed = previous.task_completed or bool(task_types)
    is_response = previous.assistance_offered and not offered
    return previous.merge(
        task_completed=task_completed,
        assistance_offered=previous.assistance_offered or offered,
        is_response_to_assistance=is_response,
        end_call_eligible=task_completed and is_response,
        last_task_type=task_types[-1] if task_types else previous.last_task_type,
    )


def caller_declined_more_help(state: ConversationState, user_text: str) -> bool:
    """The agent's last reply offered more help and the caller said no."""
    last_reply_offered = state.assistance_offered and not state.is_response_to_assistance
    return last_reply_offered and declines_further_help(user_text)


def route_after_agent(output: ModelOutput, terminal: Iterable[str] = TERMINAL_CAPABILITIES) -> str:
    terminal = set(terminal)
    if output.tool_calls:
        if any(call.name in terminal for call in output.tool_calls):
            return ROUTE_END_CALL
        return ROUTE_TOOLS
    if is_goodbye(output.content):
        return ROUTE_END_CALL
    return ROUTE_END_TURN


def build_system_prompt(session: CallSession, tz: str, now: datetime) -> str:
    info = session.caller_info
    caller_label = info.name or info.phone_number or "unknown caller"
    return CALENDAR_AGENT_PROMPT.format(
        agent_name=ASSISTANT_NAME,
        today=spoken_date(now),
        timezone=tz,
        caller_label=caller_label,
        appointment_list=format_appointment_list(session.cached_appointments, tz),
        pending_edit=render_pending_edit(session.pending_edit),
    )


# =============================================================================
# ENGINE
# =============================================================================

class ConversationEngine:
    def __init__(
        self,
        sessions: SessionStore,
        registry: CapabilityRegistry,
        model: ToolCallingModel,
        preloader,
        calendar,
        audit,
        notifier=None,
        tz: str = DEFAULT_TZ,
        now_fn: Optional[Callable[[], datetime]] = None,
        recursion_limit: int = RECURSION_LIMIT,
        history_window: int = HISTORY_WINDOW,
    ):
        self._sessions = sessions
        self._registry = registry
        self._model = model
        self._preloader = preloader
        self._calendar = calendar
        self._audit = audit
        self._notifier = notifier
        self.tz = tz
        self._now_fn = now_fn
        self.recursion_limit = recursion_limit
        self.history_window = history_window

    def now(self) -> datetime:
        return self._now_fn() if self._now_fn else datetime.now(ZoneInfo(self.tz))

    def _tool_context(self, session_id: str) -> ToolContext:
        return ToolContext(
            session_id=session_id,
            sessions=self._sessions,
            preloader=self._preloader,
            calendar=self._calendar,
            audit=self._audit,
            notifier=self._notifier,
            tz=self.tz,
            now_fn=self.now,
        )

    # =========================================================================
    # TURN
    # =========================================================================

    async def run_turn(self, session_id: str, user_text: str, call_logger: Optional[CallLogger] = None) -> TurnResult:
        metrics = TurnMetrics()
        metrics.mark("user_eou")
        session = self._sessions.get_session(session_id)
        if session is None:
            logger.error(f"[GRAPH] ❌ No session for {session_id}")
            return TurnResult(response=SESSION_MISSING_REPLY)

        try:
            result = await self._run_turn(session, user_text, metrics, call_logger)
        except Exception as e:
            logger.error(f"[GRAPH] ❌ Turn failed for {session_id}: {e}")
            if call_logger:
                call_logger.log_error("conversation_engine", str(e))
            result = TurnResult(response=TURN_FAILURE_REPLY)

        metrics.mark("reply_ready")
        result.processing_ms = metrics.total_ms()
        metrics.log_turn(session_id, extra=f"route={'end_call' if result.end_call else 'reply'}")
        if call_logger:
            call_logger.log_turn(result.processing_ms, len(result.tool_calls), result.end_call)
        return result

    async def _run_turn(
        self,
        session: CallSession,
        user_text: str,
        metrics: TurnMetrics,
        call_logger: Optional[CallLogger],
    ) -> TurnResult:
        session.turn_count += 1
        session.last_user_text = user_text
        awaiting_read_back = session.pending_edit is not None and session.pending_edit.awaiting_confirmation
        self._apply_confirmation(session, user_text)
        session.append_message({"role": "user", "content": user_text})

        ctx = self._tool_context(session.session_id)
        start_state = session.conversation_state
        tool_names: List[str] = []

        # A "no" to a read-back is a denial, not the end of the call
        if not awaiting_read_back and caller_declined_more_help(start_state, user_text):
            return self._end_naturally(session, start_state)

        if not session.cached_appointments:
            await self._preloader.get_appointments(session.session_id, session.caller_info)

        for step in range(self.recursion_limit):
            if step == 0:
                metrics.mark("llm_start")
            output = await self._agent_node(session, start_state, tool_names, metrics)
            route = route_after_agent(output, self._terminal_names())
            logger.debug(f"[GRAPH] step={step} route={route} tools={[c.name for c in output.tool_calls]}")

            if route == ROUTE_TOOLS:
                await self._tool_node(ctx, output.tool_calls, metrics, call_logger)
                metrics.mark("tools_done")
                continue
            if route == ROUTE_END_CALL:
                return await self._end_call(ctx, session, output, tool_names)
            return TurnResult(response=output.content.strip() or TURN_FAILURE_REPLY, tool_calls=tool_names)

        logger.warning(f"[GRAPH] ⚠️ Recursion limit {self.recursion_limit} reached for {session.session_id}")
        return TurnResult(response=TURN_FAILURE_REPLY, tool_calls=tool_names)

    def _task_types(self, tool_names: List[str]) -> List[str]:
        return [self._registry.task_type(name) for name in tool_names if self._registry.is_mutating(name)]

    def _terminal_names(self) -> List[str]:
        return [name for name in self._registry.names() if self._registry.is_terminal(name)] or list(TERMINAL_CAPABILITIES)

    def _apply_confirmation(self, session: CallSession, user_text: str) -> None:
        pending = session.pending_edit
        if pending is None or not pending.awaiting_confirmation:
            return
        verdict = classify_confirmation(user_text)
        if verdict == CONFIRM:
            self._sessions.set_pending_edit(
                session.session_id, replace(pending, confirmed=True, awaiting_confirmation=False)
            )
            logger.info(f"[GRAPH] ✅ Caller confirmed {pending.action} of '{pending.appointment_name}'")
        elif verdict == DENY:
            self._sessions.set_pending_edit(
                session.session_id, replace(pending, confirmed=False, awaiting_confirmation=False)
            )
            logger.info(f"[GRAPH] Caller declined {pending.action} of '{pending.appointment_name}'")

    # =========================================================================
    # NODES
    # =========================================================================

    async def _agent_node(
        self,
        session: CallSession,
        start_state: ConversationState,
        tool_names: List[str],
        metrics: TurnMetrics,
    ) -> ModelOutput:
        prompt = build_system_prompt(session, self.tz, self.now())
        history = window_history(session.transcript, self.history_window)
        metrics.model_calls += 1
        try:
            output = await self._model.invoke(prompt, history, self._registry.openai_tool_specs())
        except Exception as e:
            logger.error(f"[GRAPH] ❌ Model call failed: {e}")
            output = ModelOutput(content=MODEL_FAILURE_REPLY)
        metrics.mark("llm_done")

        session.append_message(output.to_message())
        tool_names.extend(call.name for call in output.tool_calls)
        self._sessions.set_conversation_state(
            session.session_id,
            track_conversation_state(start_state, output.content, self._task_types(tool_names)),
        )
        return output

    async def _tool_node(
        self,
        ctx: ToolContext,
        tool_calls: List[ToolCall],
        metrics: TurnMetrics,
        call_logger: Optional[CallLogger],
    ) -> None:
        for call in tool_calls:
            started = time.perf_counter()
            success = False
            try:
                result = await self._registry.invoke(call.name, call.arguments, ctx)
                content = json.dumps(result, default=str)
                success = True
            except UnknownCapabilityError:
                logger.warning(f"[TOOLS] Unknown tool requested: {call.name}")
                content = f"Unknown tool: {call.name}"
            except Exception as e:
                logger.error(f"[TOOLS] ❌ {call.name} failed: {e}")
                content = f"Error executing {call.name}: {e}"

            metrics.tool_calls += 1
            self._sessions.append_message(
                ctx.session_id, {"role": "tool", "tool_call_id": call.id, "content": content}
            )
            if call_logger:
                call_logger.log_tool_call(
                    call.name,
                    int((time.perf_counter() - started) * 1000),
                    success,
                    args=call.arguments,
                    result=content,
                )

    def _end_naturally(self, session: CallSession, start_state: ConversationState) -> TurnResult:
        self._sessions.set_conversation_state(
            session.session_id,
            track_conversation_state(start_state, FAREWELL_REPLY, []),
        )
        self._sessions.mark_ending(session.session_id)
        self._sessions.append_message(session.session_id, {"role": "assistant", "content": FAREWELL_REPLY})
        logger.info(f"[GRAPH] 👋 Caller needs nothing else, ending call {session.session_id}")
        return TurnResult(response=FAREWELL_REPLY, end_call=True)

    async def _end_call(
        self,
        ctx: ToolContext,
        session: CallSession,
        output: ModelOutput,
        tool_names: List[str],
    ) -> TurnResult:
        farewell = output.content.strip()
        terminal = [call for call in output.tool_calls if self._registry.is_terminal(call.name)]
        if terminal:
            call = terminal[0]
            try:
                result = await self._registry.invoke(call.name, call.arguments, ctx)
                farewell = farewell or result.get("message", "")
            except Exception as e:
                logger.error(f"[GRAPH] ❌ {call.name} failed, ending anyway: {e}")
        self._sessions.mark_ending(session.session_id)

        farewell = farewell or FAREWELL_REPLY
        if terminal:
            # Close out the call request so the transcript stays well formed
            self._sessions.append_message(
                session.session_id,
                {"role": "tool", "tool_call_id": terminal[0].id, "content": json.dumps({"status": "ending"})},
            )
        logger.info(f"[GRAPH] 👋 Ending call {session.session_id}")
        return TurnResult(response=farewell, end_call=True, tool_calls=tool_names)
