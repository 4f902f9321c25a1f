"""
Audit record for a single calendar mutation attempt.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List


@dataclass
class AuditRecord:
    session_id: str
    operation: str  # "shift" | "cancel" | "create"
    appointment_id: Optional[str] = None
    caller_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    change_metadata: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    success: bool = False
    started_at: float = field(default_factory=time.perf_counter)
    processing_time_ms: Optional[int] = None

    def add_error(self, component: str, error: str) -> None:
        self.errors.append({
            "component": component,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def finish(self, success: bool) -> "AuditRecord":
        self.success = success
        self.processing_time_ms = int((time.perf_counter() - self.started_at) * 1000)
        return self

    def to_document(self) -> Dict[str, Any]:
        """Row shape written to the audit table."""
        return {
            "session_id": self.session_id,
            "caller_id": self.caller_id,
            "appointment_id": self.appointment_id,
            "operation": self.operation,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "change_metadata": self.change_metadata,
            "processing_time": self.processing_time_ms,
            "success": self.success,
            "errors": list(self.errors),
            "error_count": len(self.errors),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
