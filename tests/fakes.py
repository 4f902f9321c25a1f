from __future__ import annotations

import asyncio
from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.session import CallerInfo
from services.llm_service import ModelOutput, ToolCall


def appointment(appt_id: str, summary: str, start: str, end: str, tz: str = "Asia/Karachi") -> Dict[str, Any]:
    return {
        "id": appt_id,
        "summary": summary,
        "start": {"dateTime": start, "timeZone": tz},
        "end": {"dateTime": end, "timeZone": tz},
    }


class FakeFetcher:
    """Calendar fetcher with scripted latency/failures and a live-call counter."""

    def __init__(
        self,
        appointments: Optional[List[Dict[str, Any]]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.appointments = list(appointments or [])
        self.delay = delay
        self.error = error
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_appointments(self, caller_info: CallerInfo, force_refresh: bool = False) -> List[Dict[str, Any]]:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return deepcopy(self.appointments)
        finally:
            self.in_flight -= 1


class FakeCalendar(FakeFetcher):
    """Fetcher plus the write side; records every mutation call."""

    def __init__(self, appointments: Optional[List[Dict[str, Any]]] = None, write_error: Optional[Exception] = None):
        super().__init__(appointments)
        self.write_error = write_error
        self.updates: List[Dict[str, Any]] = []
        self.cancels: List[str] = []
        self.creates: List[Dict[str, Any]] = []

    async def update_appointment(self, appointment_id: str, start: datetime, end: datetime, tz: Optional[str] = None):
        if self.write_error is not None:
            raise self.write_error
        self.updates.append({"id": appointment_id, "start": start, "end": end, "tz": tz})
        for appt in self.appointments:
            if appt["id"] == appointment_id:
                appt["start"] = {"dateTime": start.isoformat(), "timeZone": tz}
                appt["end"] = {"dateTime": end.isoformat(), "timeZone": tz}
                return deepcopy(appt)
        return {"id": appointment_id}

    async def cancel_appointment(self, appointment_id: str):
        if self.write_error is not None:
            raise self.write_error
        self.cancels.append(appointment_id)
        self.appointments = [a for a in self.appointments if a["id"] != appointment_id]
        return {"id": appointment_id, "status": "cancelled"}

    async def create_appointment(self, summary: str, start: datetime, end: datetime, tz: Optional[str] = None,
                                 description: Optional[str] = None):
        if self.write_error is not None:
            raise self.write_error
        created = appointment(f"new-{len(self.creates) + 1}", summary, start.isoformat(), end.isoformat(), tz or "UTC")
        self.creates.append(created)
        self.appointments.append(created)
        return deepcopy(created)


class FakeAuditStore:
    def __init__(self, delay: float = 0.0, fail_batches: int = 0, fail_metrics: bool = False,
                 fail_reads: bool = False):
        self.delay = delay
        self.fail_batches = fail_batches
        self.fail_metrics = fail_metrics
        self.fail_reads = fail_reads
        self.batches: List[List[Dict[str, Any]]] = []
        self.metrics: List[Dict[str, Any]] = []
        self.metric_rows: List[Dict[str, Any]] = []
        self.error_rows: List[Dict[str, Any]] = []

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [row for batch in self.batches for row in batch]

    async def insert_audit_batch(self, rows: List[Dict[str, Any]]) -> int:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise ConnectionError("store unavailable")
        self.batches.append(list(rows))
        return len(rows)

    async def insert_metric(self, row: Dict[str, Any]) -> None:
        if self.fail_metrics:
            raise ConnectionError("metrics table unavailable")
        self.metrics.append(row)

    def _maybe_fail(self) -> None:
        if self.fail_reads:
            raise ConnectionError("read failed")

    async def fetch_by_appointment(self, appointment_id: str, limit: int) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return [r for r in self.rows if r.get("appointment_id") == appointment_id][:limit]

    async def fetch_by_session(self, session_id: str) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return [r for r in self.rows if r.get("session_id") == session_id]

    async def fetch_metrics_since(self, since_iso: str) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return list(self.metric_rows)

    async def fetch_errors_since(self, since_iso: str, limit: int) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return list(self.error_rows)[:limit]


class ScriptedModel:
    """Returns queued outputs in order; records every prompt it was given."""

    def __init__(self, outputs: Optional[List[Any]] = None):
        self.outputs: List[Any] = list(outputs or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *outputs: Any) -> None:
        self.outputs.extend(outputs)

    async def invoke(self, system_prompt: str, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> ModelOutput:
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages), "tools": tools})
        if not self.outputs:
            return ModelOutput(content="Is there anything else I can help you with?")
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output


def say(text: str) -> ModelOutput:
    return ModelOutput(content=text)


def call(name: str, call_id: str = "call_1", **arguments: Any) -> ModelOutput:
    return ModelOutput(tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


class FakeNotifier:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.sent: List[Dict[str, str]] = []

    async def notify(self, recipient_role: str, message: str) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.sent.append({"recipient": recipient_role, "message": message})
        return {"sent": True, "recipient": recipient_role}


class FakeTransport:
    def __init__(self, on_say=None, playback: float = 0.0):
        self.spoken: List[str] = []
        self.hung_up = False
        self._on_say = on_say
        self.playback = playback

    async def say(self, text: str) -> None:
        self.spoken.append(text)
        if self._on_say is not None:
            self._on_say(text)
        await asyncio.sleep(self.playback)

    async def hangup(self) -> None:
        self.hung_up = True
