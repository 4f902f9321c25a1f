"""
Configuration and constants for the voice calendar agent.

Contains all environment variables, API configurations, and tuning parameters.
Clients that need credentials are built by factory functions so importing this
module never requires a populated environment.
"""

from __future__ import annotations

import os
import logging
from typing import Dict, List
from dotenv import load_dotenv

# =============================================================================
# Load Environment
# =============================================================================

load_dotenv(".env.local")

# Mute noisy transport debug logs (reduces log-bloat in production)
logging.getLogger("hpack").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# =============================================================================
# STRUCTURED LOGGER
# =============================================================================

logger = logging.getLogger("voice_calendar_agent")
logger.setLevel(logging.DEBUG)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(handler)

# Latency debug mode - logs detailed timing per turn
LATENCY_DEBUG = os.getenv("LATENCY_DEBUG", "0") == "1"

# =============================================================================
# ENVIRONMENT & APPLICATION CONFIG
# =============================================================================

ENVIRONMENT = (os.getenv("ENVIRONMENT") or "development").strip().lower()

# Telephony agent identity (must match SIP trunk dispatch rules)
LIVEKIT_AGENT_NAME = os.getenv("LIVEKIT_AGENT_NAME", "telephony_agent")

DEFAULT_TZ = os.getenv("DEFAULT_TIMEZONE", "Asia/Karachi")
DEFAULT_MIN = int(os.getenv("DEFAULT_APPT_MINUTES", "60"))
DEFAULT_PHONE_REGION = os.getenv("DEFAULT_PHONE_REGION", "PK")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en-US")
ASSISTANT_NAME = os.getenv("ASSISTANT_NAME", "Sarah")

# =============================================================================
# 🎙️ TURN-TAKING (VAD) TIMING: milliseconds
# =============================================================================
"""
TURN-TAKING TUNING GUIDE:
- silence_ms: caller silence before a single "are you still there" prompt
- timeout_ms: caller silence before the timeout message is spoken
- grace_ms: window after the agent stops talking where silence is not monitored
"""

VAD_SILENCE_MS = int(os.getenv("VAD_SILENCE_MS", "3000"))
VAD_TIMEOUT_MS = int(os.getenv("VAD_TIMEOUT_MS", "8000"))
VAD_GRACE_MS = int(os.getenv("VAD_GRACE_MS", "1000"))

DEFAULT_TIMING: Dict[str, int] = {
    "silence_ms": VAD_SILENCE_MS,
    "timeout_ms": VAD_TIMEOUT_MS,
    "grace_ms": VAD_GRACE_MS,
}

# Per-workflow overrides; anything missing falls back to DEFAULT_TIMING
WORKFLOW_TIMING: Dict[str, Dict[str, int]] = {
    "delay_notification": {"silence_ms": 4500, "timeout_ms": 10000, "grace_ms": 1500},
    "customer_delay_response": {"silence_ms": 3000, "timeout_ms": 8000, "grace_ms": 1000},
    "appointment": {"silence_ms": 3000, "timeout_ms": 8000, "grace_ms": 1000},
}

SILENCE_PROMPTS: List[str] = [
    "Are you still there?",
    "I'm still here if you need anything.",
    "Take your time, I'm listening.",
    "Is there anything I can help you with?",
]

WORKFLOW_SILENCE_PROMPTS: Dict[str, str] = {
    "appointment": "I'm waiting for your response. What would you like to do?",
}

TIMEOUT_MESSAGE = (
    "I haven't heard from you for a while. If you need help, "
    "just say something and I'll be happy to assist you."
)

# =============================================================================
# ⚡ CALENDAR PRELOAD
# =============================================================================

PRELOAD_MAX_CONCURRENT = int(os.getenv("PRELOAD_MAX_CONCURRENT", "3"))
PRELOAD_TIMEOUT_SECONDS = float(os.getenv("PRELOAD_TIMEOUT_SECONDS", "30"))
PRELOAD_POLL_INTERVAL_SECONDS = float(os.getenv("PRELOAD_POLL_INTERVAL", "0.5"))

PRELOAD_FILLERS: List[str] = [
    "One moment while I pull up your calendar.",
    "Let me just check your calendar.",
    "Bear with me a second.",
]

# =============================================================================
# 🗂️ AUDIT QUEUE
# =============================================================================

AUDIT_BATCH_SIZE = int(os.getenv("AUDIT_BATCH_SIZE", "10"))
AUDIT_FALLBACK_MAX = int(os.getenv("AUDIT_FALLBACK_MAX", "1000"))
AUDIT_TABLE = os.getenv("AUDIT_TABLE", "appointment_audit_log")
METRICS_TABLE = os.getenv("METRICS_TABLE", "system_metrics")
NOTIFICATIONS_TABLE = os.getenv("NOTIFICATIONS_TABLE", "staff_notifications")

# =============================================================================
# 🧠 CONVERSATION / MODEL
# =============================================================================

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.3"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "15"))
LLM_STREAMING = os.getenv("LLM_STREAMING", "1") == "1"

HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "6"))
MAX_TRANSCRIPT_MESSAGES = int(os.getenv("MAX_TRANSCRIPT_MESSAGES", "20"))
RECURSION_LIMIT = int(os.getenv("RECURSION_LIMIT", "10"))
SESSION_IDLE_TIMEOUT_SECONDS = int(os.getenv("SESSION_IDLE_TIMEOUT", "3600"))

MODEL_FAILURE_REPLY = "I'm having trouble processing your request. Could you please try again?"
TURN_FAILURE_REPLY = (
    "I understand you want to manage your appointments. Let me help you with that."
)
SESSION_MISSING_REPLY = (
    "I'm sorry, I lost track of our conversation. "
    "Could you tell me again what you'd like to do?"
)
FAREWELL_REPLY = "Thank you for calling. Goodbye, have a great day!"

# =============================================================================
# 📅 CALENDAR CONFIGURATION
# =============================================================================

GOOGLE_OAUTH_TOKEN_PATH = os.getenv("GOOGLE_OAUTH_TOKEN", "./google_token.json")
GOOGLE_SERVICE_ACCOUNT_PATH = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
GOOGLE_DELEGATED_USER = os.getenv("GCAL_DELEGATED_USER")
GOOGLE_CALENDAR_ID_DEFAULT = os.getenv("GOOGLE_CALENDAR_ID", "primary")

CALENDAR_LOOKAHEAD_DAYS = int(os.getenv("CALENDAR_LOOKAHEAD_DAYS", "90"))
CALENDAR_MAX_RESULTS = int(os.getenv("CALENDAR_MAX_RESULTS", "20"))
CALENDAR_CACHE_TTL = int(os.getenv("CALENDAR_CACHE_TTL", "30"))
CALENDAR_MAX_RETRIES = int(os.getenv("CALENDAR_MAX_RETRIES", "3"))

# =============================================================================
# SUPABASE CONFIGURATION
# =============================================================================

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")


def create_supabase_client():
    """Build the Supabase client used by the audit store and the notifier outbox."""
    from supabase import create_client

    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)


# =============================================================================
# OPENAI CONFIGURATION
# =============================================================================

def create_openai_client():
    """Async OpenAI client for the tool-calling conversation model."""
    from openai import AsyncOpenAI

    return AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
