"""
CallLogger - structured lifecycle events for a single call.

Every event is one JSON line on stdout (Cloud Logging compatible) correlated
by session_id. Calendar mutations are persisted separately through the
audit queue; this module only covers operational visibility.

Usage:
    from utils.call_logger import create_call_logger

    call_logger = create_call_logger(session_id)
    call_logger.log_call_start(caller_phone="+13105551234")
    call_logger.log_tool_call("shift_appointment", latency_ms=420, success=True)
    call_logger.log_call_end(reason="caller_hangup")
"""

from __future__ import annotations

import os
import re
import json
import time
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any


# =============================================================================
# STRUCTURED JSON LOGGER
# =============================================================================

class StructuredLogger:
    """
    Google Cloud Logging compatible structured JSON logger.
    All logs include session_id, agent_id, environment, timestamp.
    """

    def __init__(self, name: str = "call_events"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.INFO)

        # Avoid duplicate handlers
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def log(self, level: str, message: str, **fields):
        """Emit a structured JSON log entry."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": level.upper(),
            "message": message,
            "agent_id": os.getenv("LIVEKIT_AGENT_NAME", "telephony_agent"),
            "environment": os.getenv("ENVIRONMENT", "development"),
        }
        log_entry.update({k: v for k, v in fields.items() if v is not None})

        log_line = json.dumps(log_entry, default=str)
        level_no = getattr(logging, level.upper(), logging.INFO)
        self._logger.log(level_no, log_line)


_structured_logger = StructuredLogger()


# =============================================================================
# PHONE SANITIZATION
# =============================================================================

def mask_phone(phone: Optional[str]) -> str:
    """
    Mask phone number for safe logging.
    Example: +13105551234 -> ***1234
    """
    if not phone:
        return "unknown"

    digits = re.sub(r"\D", "", phone)

    if len(digits) >= 4:
        return f"***{digits[-4:]}"
    return "***"


def sanitize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove or mask sensitive data from payload before logging.
    """
    sensitive_keys = {
        "api_key", "apikey", "secret", "password", "token",
        "authorization", "credential",
    }

    sanitized = {}
    for key, value in payload.items():
        key_lower = key.lower()

        if any(s in key_lower for s in sensitive_keys):
            sanitized[key] = "[REDACTED]"
        elif "phone" in key_lower and isinstance(value, str):
            sanitized[key] = mask_phone(value)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_payload(value)
        else:
            sanitized[key] = value

    return sanitized


# =============================================================================
# CALL LOGGER
# =============================================================================

class CallLogger:
    """Per-call event emitter; cheap enough to call on the hot path."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._started = time.monotonic()

    def _emit(self, level: str, event_type: str, payload: Dict[str, Any]):
        _structured_logger.log(
            level,
            f"[{event_type.upper()}]",
            session_id=self.session_id,
            event_type=event_type,
            **sanitize_payload(payload),
        )

    def log_call_start(self, caller_phone: Optional[str], caller_name: Optional[str] = None,
                       workflow_type: Optional[str] = None):
        self._emit("INFO", "call_start", {
            "caller_phone": caller_phone,
            "caller_name": caller_name,
            "workflow_type": workflow_type,
        })

    def log_call_end(self, reason: str, turns: int = 0):
        self._emit("INFO", "call_end", {
            "reason": reason,
            "turns": turns,
            "duration_seconds": int(time.monotonic() - self._started),
        })

    def log_turn(self, latency_ms: int, tool_calls: int, end_call: bool):
        self._emit("INFO", "turn", {
            "latency_ms": latency_ms,
            "tool_calls": tool_calls,
            "end_call": end_call,
        })

    def log_tool_call(self, tool: str, latency_ms: int, success: bool,
                      args: Optional[Dict[str, Any]] = None, result: Optional[str] = None):
        payload: Dict[str, Any] = {"tool": tool, "latency_ms": latency_ms, "success": success}
        if args:
            payload["args"] = args
        if result:
            payload["result"] = result[:200]
        self._emit("INFO", "tool_call", payload)

    def log_error(self, component: str, error: str, recovered: bool = True):
        self._emit("ERROR", "error", {
            "component": component,
            "error": error,
            "recovered": recovered,
        })


def create_call_logger(session_id: str) -> CallLogger:
    return CallLogger(session_id=session_id)
