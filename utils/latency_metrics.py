"""
Latency tracking for conversation turns.
"""

from __future__ import annotations

import time
from typing import Dict

from config import LATENCY_DEBUG, logger


class TurnMetrics:
    """
    Lightweight latency tracker for one conversation turn.
    Logs structured timing data when LATENCY_DEBUG=1.

    Usage:
        metrics = TurnMetrics()
        metrics.mark("user_eou")
        metrics.mark("llm_start")
        metrics.mark("llm_done")
        metrics.mark("tools_done")
        metrics.mark("reply_ready")
        metrics.log_turn(session_id)
    """

    ORDERED_LABELS = ["user_eou", "llm_start", "llm_done", "tools_done", "reply_ready"]

    def __init__(self):
        self.reset()

    def reset(self):
        self._start = time.perf_counter()
        self._marks: Dict[str, float] = {}
        self.tool_calls = 0
        self.model_calls = 0

    def mark(self, label: str):
        """Record a timestamp for a labeled event (last write wins)."""
        self._marks[label] = time.perf_counter() - self._start

    def total_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)

    def log_turn(self, session_id: str = "", extra: str = ""):
        """Emit a single structured log line with all latency data."""
        if not LATENCY_DEBUG:
            return

        parts = []
        for label in self.ORDERED_LABELS:
            if label in self._marks:
                parts.append(f"{label}={self._marks[label]*1000:.0f}ms")

        log_line = (
            f"[LATENCY] session={session_id} {' | '.join(parts)} "
            f"| model_calls={self.model_calls} tool_calls={self.tool_calls}"
        )
        if extra:
            log_line += f" | {extra}"

        logger.info(log_line)
