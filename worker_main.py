"""
LiveKit Worker Entry Point for Cloud Run Jobs.

WHY THIS ARCHITECTURE:
======================
Cloud Run Jobs are task-driven and run until the task completes, which suits a
worker that holds WebSocket connections to LiveKit Cloud. The worker runs
agents.AgentServer directly under asyncio.run() for a single event loop and
predictable shutdown.

LiveKit provides the telephony transport only: speech-to-text, text-to-speech
and VAD. Turns are decided by the call orchestrator, which receives the
session's speech and transcript events and speaks through AgentSession.say.

USAGE:
======
Cloud Run Job: CMD ["python", "worker_main.py"]
Local dev:     python worker_main.py
"""

from __future__ import annotations

import os
import sys
import signal
import asyncio
import logging
from typing import Set

# Configure logging for LiveKit SDK
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S"
)

from livekit import api
from livekit.agents import (
    Agent,
    AgentServer,
    AgentSession,
    AutoSubscribe,
    JobContext,
    JobProcess,
)
from livekit.agents.voice.room_io import RoomOptions
from livekit.rtc import ParticipantKind
from livekit.plugins import (
    openai as openai_plugin,
    silero,
    deepgram as deepgram_plugin,
    cartesia as cartesia_plugin,
)

# Local imports
import http_service
from config import (
    logger,
    LIVEKIT_AGENT_NAME,
    ENVIRONMENT,
    GOOGLE_OAUTH_TOKEN_PATH,
    DEFAULT_PHONE_REGION,
    ASSISTANT_NAME,
)
from models.session import CallerInfo
from services.call_orchestrator import CallOrchestrator, build_context
from utils.phone_utils import normalize_caller_number

GREETING = f"Hi, this is {ASSISTANT_NAME}. I can check, move or cancel your appointments. What would you like to do?"

# =============================================================================
# SIGNAL HANDLING: Graceful shutdown for Cloud Run
# =============================================================================

_shutdown_event = asyncio.Event()


def _handle_sigterm(signum, frame):
    sig_name = signal.Signals(signum).name
    logger.info(f"[WORKER] Received {sig_name}, initiating graceful shutdown...")
    _shutdown_event.set()


# =============================================================================
# TRANSPORT
# =============================================================================

class LiveKitTransport:
    """Speaks through the AgentSession and hangs up by deleting the room."""

    def __init__(self, ctx: JobContext, session: AgentSession):
        self._ctx = ctx
        self._session = session

    async def say(self, text: str) -> None:
        handle = self._session.say(text, allow_interruptions=True)
        await handle.wait_for_playout()

    async def hangup(self) -> None:
        logger.info(f"[RTC] 📴 Hanging up room {self._ctx.room.name}")
        await self._ctx.api.room.delete_room(api.DeleteRoomRequest(room=self._ctx.room.name))


def _pick_stt():
    if os.getenv("DEEPGRAM_API_KEY"):
        return deepgram_plugin.STT(model="nova-2-general", language="en")
    return openai_plugin.STT(model="gpt-4o-transcribe", language="en")


def _pick_tts():
    if os.getenv("CARTESIA_API_KEY"):
        return cartesia_plugin.TTS(
            model="sonic-2",
            voice=os.getenv("CARTESIA_VOICE_ID", "9626c31c-bec5-4cca-baa8-f8ba9e84c8bc"),
        )
    return openai_plugin.TTS(model="gpt-4o-mini-tts", voice=os.getenv("OPENAI_TTS_VOICE", "alloy"))


def _caller_info(participant, room_name: str) -> CallerInfo:
    phone = None
    if participant.kind == ParticipantKind.PARTICIPANT_KIND_SIP:
        attrs = participant.attributes or {}
        raw = attrs.get("sip.phoneNumber") or attrs.get("sip.callingNumber")
        phone = normalize_caller_number(raw, DEFAULT_PHONE_REGION)
        logger.info(f"📞 [SIP] Inbound call from ***{(phone or '')[-4:]}")
    return CallerInfo(name=participant.name or None, phone_number=phone, call_sid=room_name)


# =============================================================================
# PREWARM: Called once when the worker process starts
# =============================================================================

def prewarm(proc: JobProcess):
    logger.info(f"[PREWARM] Worker identity: {LIVEKIT_AGENT_NAME}")

    try:
        proc.userdata["vad"] = silero.VAD.load(min_speech_duration=0.1, min_silence_duration=0.3)
        logger.info("[PREWARM] ✓ Silero VAD loaded")
    except Exception as e:
        logger.error(f"[PREWARM] ✗ VAD load failed: {e}")

    if GOOGLE_OAUTH_TOKEN_PATH and os.path.exists(GOOGLE_OAUTH_TOKEN_PATH):
        logger.info(f"[PREWARM] ✓ OAuth token found: {GOOGLE_OAUTH_TOKEN_PATH}")
    else:
        logger.warning("[PREWARM] ⚠ OAuth token not found (calendar features may fail)")

    # One orchestration context per worker process
    orchestrator = CallOrchestrator(build_context())
    proc.userdata["orchestrator"] = orchestrator
    http_service.register_context(orchestrator.context)
    logger.info("[PREWARM] ✓ Orchestration context built")


# =============================================================================
# CREATE AGENT SERVER
# =============================================================================

server = AgentServer(
    load_threshold=1.0,
    setup_fnc=prewarm,
    port=8080,
    host="0.0.0.0",
)


# =============================================================================
# RTC SESSION
# =============================================================================

@server.rtc_session(agent_name=LIVEKIT_AGENT_NAME)
async def session_entrypoint(ctx: JobContext):
    orchestrator: CallOrchestrator = ctx.proc.userdata["orchestrator"]
    await orchestrator.context.start()

    await ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)
    participant = await ctx.wait_for_participant()
    session_id = ctx.room.name
    logger.info(f"[RTC] session_entrypoint invoked for room={session_id} participant={participant.identity}")

    vad = ctx.proc.userdata.get("vad") or silero.VAD.load()
    session = AgentSession(stt=_pick_stt(), tts=_pick_tts(), vad=vad, allow_interruptions=True)
    pending: Set[asyncio.Task] = set()

    def _track(task: asyncio.Task) -> None:
        pending.add(task)
        task.add_done_callback(pending.discard)

    # MUST be registered BEFORE session.start()
    @session.on("user_state_changed")
    def _on_user_state(ev):
        if ev.new_state == "speaking":
            orchestrator.handle_speech_started(session_id)
        elif ev.old_state == "speaking":
            orchestrator.handle_speech_ended(session_id)

    @session.on("agent_state_changed")
    def _on_agent_state(ev):
        if ev.new_state == "speaking":
            orchestrator.handle_assistant_speaking(session_id, True)
        elif ev.old_state == "speaking":
            orchestrator.handle_assistant_speaking(session_id, False)

    @session.on("user_input_transcribed")
    def _on_transcript(ev):
        if not ev.is_final:
            return
        _track(asyncio.create_task(orchestrator.handle_transcript(session_id, ev.transcript)))

    @ctx.room.on("participant_disconnected")
    def _on_participant_left(p):
        if p.identity == participant.identity:
            orchestrator.end_call(session_id, reason="caller_hangup")

    async def _on_shutdown():
        orchestrator.end_call(session_id, reason="room_closed")

    ctx.add_shutdown_callback(_on_shutdown)

    await session.start(
        room=ctx.room,
        agent=Agent(instructions="Speak exactly what you are asked to say."),
        room_options=RoomOptions(close_on_disconnect=True),
    )

    transport = LiveKitTransport(ctx, session)
    await orchestrator.start_call(session_id, transport, _caller_info(participant, session_id))
    _track(asyncio.create_task(orchestrator.speak(session_id, GREETING)))


# =============================================================================
# MAIN: Clean asyncio entry point
# =============================================================================

async def main():
    logger.info("[WORKER] Starting LiveKit worker...")
    logger.info(f"[WORKER] Agent name: {LIVEKIT_AGENT_NAME}")
    logger.info(f"[WORKER] Environment: {ENVIRONMENT}")

    try:
        await server.run()
    except asyncio.CancelledError:
        logger.info("[WORKER] Worker cancelled, shutting down...")
    except Exception:
        logger.exception("[WORKER] Worker crashed with exception")
        raise
    finally:
        logger.info("[WORKER] Worker stopped")


if __name__ == "__main__":
    signal.signal(signal.SIGTERM, _handle_sigterm)
    signal.signal(signal.SIGINT, _handle_sigterm)

    logger.info("=" * 60)
    logger.info(" LIVEKIT WORKER - CLOUD RUN JOB MODE")
    logger.info("=" * 60)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("[WORKER] Interrupted by user")
    except SystemExit as e:
        logger.info(f"[WORKER] System exit: {e.code}")
    except Exception:
        logger.exception("[WORKER] Fatal error")
        sys.exit(1)

    logger.info("[WORKER] Process exiting cleanly")
