"""
Turn-taking and silence detection per call.

Handles:
- Speech start/end signals from the transport
- Assistant speaking windows and the post-speech grace period
- One silence prompt per silence, then a timeout message that restarts the clock
- Per-workflow timing profiles

Silence monitoring is never armed while the assistant is speaking or the
grace period is running.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, Awaitable

from config import (
    logger,
    DEFAULT_TIMING,
    WORKFLOW_TIMING,
    SILENCE_PROMPTS,
    WORKFLOW_SILENCE_PROMPTS,
    TIMEOUT_MESSAGE,
)
from utils.timers import TimerGroup

SpeakCallback = Callable[[str, str], Awaitable[None]]

SILENCE_TIMER = "silence"
TIMEOUT_TIMER = "timeout"
GRACE_TIMER = "grace"


@dataclass
class TurnTakingState:
    session_id: str
    workflow_type: Optional[str] = None
    is_speaking: bool = False
    is_listening: bool = True
    assistant_speaking: bool = False
    grace_period_active: bool = False
    silence_start_time: Optional[float] = None
    has_prompted_for_silence: bool = False
    prompt_playing: bool = False
    prompt_index: int = 0
    timers: TimerGroup = field(default_factory=TimerGroup)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "workflow_type": self.workflow_type,
            "is_speaking": self.is_speaking,
            "is_listening": self.is_listening,
            "assistant_speaking": self.assistant_speaking,
            "grace_period_active": self.grace_period_active,
            "silence_start_time": self.silence_start_time,
            "has_prompted_for_silence": self.has_prompted_for_silence,
            "prompt_playing": self.prompt_playing,
            "pending_timers": sorted(self.timers.pending_names()),
        }


class TurnTakingEngine:
    def __init__(
        self,
        speak: Optional[SpeakCallback] = None,
        default_timing: Optional[Dict[str, int]] = None,
        workflow_timing: Optional[Dict[str, Dict[str, int]]] = None,
    ):
        self._speak_cb = speak
        self._default_timing = dict(default_timing or DEFAULT_TIMING)
        self._workflow_timing = dict(WORKFLOW_TIMING if workflow_timing is None else workflow_timing)
        self._states: Dict[str, TurnTakingState] = {}

    def set_speak_callback(self, speak: SpeakCallback) -> None:
        self._speak_cb = speak

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def initialize_session(self, session_id: str, workflow_type: Optional[str] = None) -> TurnTakingState:
        previous = self._states.pop(session_id, None)
        if previous is not None:
            previous.timers.cancel_all()
        state = TurnTakingState(
            session_id=session_id,
            workflow_type=workflow_type,
            timers=TimerGroup(owner=session_id),
        )
        self._states[session_id] = state
        logger.info(f"[VAD] 🎤 Initialized silence detection for {session_id} (workflow: {workflow_type or 'default'})")
        return state

    def cleanup_session(self, session_id: str) -> None:
        state = self._states.pop(session_id, None)
        if state is None:
            return
        state.timers.cancel_all()
        logger.info(f"[VAD] 🧹 Cleaned up session {session_id}")

    def update_workflow_type(self, session_id: str, workflow_type: Optional[str]) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.workflow_type = workflow_type
        logger.info(f"[VAD] Workflow for {session_id} is now {workflow_type or 'default'}")

    def get_workflow_timing(self, workflow_type: Optional[str]) -> Dict[str, int]:
        timing = dict(self._default_timing)
        if workflow_type and workflow_type in self._workflow_timing:
            timing.update(self._workflow_timing[workflow_type])
        return timing

    def get_session_state(self, session_id: str) -> Optional[Dict[str, Any]]:
        state = self._states.get(session_id)
        return state.snapshot() if state else None

    def active_sessions(self) -> int:
        return len(self._states)

    # =========================================================================
    # TRANSPORT SIGNALS
    # =========================================================================

    def on_speech_started(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.timers.cancel_all()
        state.is_speaking = True
        state.is_listening = False
        state.silence_start_time = None
        state.has_prompted_for_silence = False
        state.grace_period_active = False
        logger.debug(f"[VAD] 🗣️ Speech started for {session_id}")

    def on_speech_ended(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.is_speaking = False
        state.is_listening = True
        if state.assistant_speaking or state.grace_period_active:
            logger.debug(f"[VAD] ⏸️ Skipping silence monitoring for {session_id} (assistant speaking or grace)")
            return
        self._start_silence_monitoring(state)

    def on_assistant_speaking_start(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.assistant_speaking = True
        state.grace_period_active = False
        if state.prompt_playing:
            # Our own silence prompt; the timeout clock keeps running from the start of silence
            state.timers.cancel_many({SILENCE_TIMER, GRACE_TIMER})
        else:
            state.timers.cancel_many({SILENCE_TIMER, TIMEOUT_TIMER, GRACE_TIMER})
        logger.debug(f"[VAD] 🤖 Assistant started speaking for {session_id}")

    def on_assistant_speaking_end(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.assistant_speaking = False
        if state.prompt_playing:
            return
        self._start_grace_period(state)
        logger.debug(f"[VAD] 🤖 Assistant stopped speaking for {session_id}")

    # =========================================================================
    # TIMER CALLBACKS
    # =========================================================================

    def _start_silence_monitoring(self, state: TurnTakingState) -> None:
        if state.assistant_speaking or state.grace_period_active:
            return
        timing = self.get_workflow_timing(state.workflow_type)
        sid = state.session_id
        state.silence_start_time = asyncio.get_running_loop().time()
        state.timers.start(SILENCE_TIMER, timing["silence_ms"] / 1000, lambda: self._on_silence(sid))
        state.timers.start(TIMEOUT_TIMER, timing["timeout_ms"] / 1000, lambda: self._on_timeout(sid))

    def _start_grace_period(self, state: TurnTakingState) -> None:
        state.grace_period_active = True
        grace_ms = self.get_workflow_timing(state.workflow_type)["grace_ms"]
        sid = state.session_id
        state.timers.start(GRACE_TIMER, grace_ms / 1000, lambda: self._on_grace_expired(sid))

    def _on_grace_expired(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        state.grace_period_active = False
        if not state.is_speaking and not state.assistant_speaking:
            self._start_silence_monitoring(state)

    def _silence_prompt(self, state: TurnTakingState) -> str:
        prompt = WORKFLOW_SILENCE_PROMPTS.get(state.workflow_type or "")
        if prompt:
            return prompt
        prompt = SILENCE_PROMPTS[state.prompt_index % len(SILENCE_PROMPTS)]
        state.prompt_index += 1
        return prompt

    async def _on_silence(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None or state.is_speaking or state.assistant_speaking:
            return
        if state.has_prompted_for_silence:
            return
        state.has_prompted_for_silence = True
        logger.info(f"[VAD] 🔇 Silence detected for {session_id}, prompting caller")
        await self._speak(session_id, self._silence_prompt(state))

    async def _on_timeout(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None or state.is_speaking:
            return
        logger.info(f"[VAD] ⏰ Conversation timeout for {session_id}")
        await self._speak(session_id, TIMEOUT_MESSAGE)

        # Session may have been torn down while the message played
        state = self._states.get(session_id)
        if state is None:
            return
        state.has_prompted_for_silence = False
        if not state.is_speaking and not state.assistant_speaking:
            self._start_grace_period(state)

    async def _speak(self, session_id: str, text: str) -> None:
        if self._speak_cb is None:
            logger.warning(f"[VAD] No speak callback registered, dropping prompt for {session_id}")
            return
        state = self._states.get(session_id)
        if state is not None:
            state.prompt_playing = True
        try:
            await self._speak_cb(session_id, text)
        except Exception as e:
            logger.error(f"[VAD] Failed to speak prompt for {session_id}: {e}")
        finally:
            if state is not None:
                state.prompt_playing = False
