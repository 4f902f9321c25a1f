"""
Minimal HTTP Service for Cloud Run (Optional).

Health and stats endpoints for external monitoring. The LiveKit worker runs as
a separate Cloud Run Job (worker_main.py); when it shares a process with this
app it registers its orchestration context so /stats can report live queues.
"""

from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI

from services.call_orchestrator import OrchestrationContext

# Minimal app with no docs endpoint (reduces attack surface)
app = FastAPI(docs_url=None, redoc_url=None)

_context: Optional[OrchestrationContext] = None


def register_context(context: Optional[OrchestrationContext]) -> None:
    global _context
    _context = context


@app.get("/healthz")
def health_check():
    return {"status": "ok", "service": "voice-calendar-agent-http"}


@app.get("/stats")
def stats():
    """Session, preload and audit queue counters for the registered context."""
    if _context is None:
        return {"status": "no_context", "worker": "runs as separate Cloud Run Job"}
    return {"status": "ok", **_context.get_stats()}


@app.get("/")
def root():
    return {
        "service": "voice-calendar-agent-http",
        "worker": "runs as separate Cloud Run Job",
        "healthz": "/healthz",
        "stats": "/stats",
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
