"""
Supabase-backed durable store for audit records and system metrics.

Handles:
- Bulk inserts of audit rows and single metric inserts
- Filtered/sorted reads by appointment, session and time window

The supabase client is synchronous; every call runs in a worker thread with a
hard timeout so the event loop never blocks on the database.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Dict, List, Protocol

from config import logger, AUDIT_TABLE, METRICS_TABLE

AUDIT_DB_TIMEOUT_SEC = float(os.getenv("AUDIT_DB_TIMEOUT_SEC", "6.0"))


class AuditStore(Protocol):
    async def insert_audit_batch(self, rows: List[Dict[str, Any]]) -> int: ...

    async def insert_metric(self, row: Dict[str, Any]) -> None: ...

    async def fetch_by_appointment(self, appointment_id: str, limit: int) -> List[Dict[str, Any]]: ...

    async def fetch_by_session(self, session_id: str) -> List[Dict[str, Any]]: ...

    async def fetch_metrics_since(self, since_iso: str) -> List[Dict[str, Any]]: ...

    async def fetch_errors_since(self, since_iso: str, limit: int) -> List[Dict[str, Any]]: ...


class SupabaseAuditStore:
    def __init__(
        self,
        client: Any,
        audit_table: str = AUDIT_TABLE,
        metrics_table: str = METRICS_TABLE,
        timeout_seconds: float = AUDIT_DB_TIMEOUT_SEC,
    ):
        self._client = client
        self.audit_table = audit_table
        self.metrics_table = metrics_table
        self.timeout_seconds = timeout_seconds

    async def _execute(self, build_query: Callable[[], Any]) -> List[Dict[str, Any]]:
        result = await asyncio.wait_for(
            asyncio.to_thread(lambda: build_query().execute()),
            timeout=self.timeout_seconds,
        )
        return result.data or []

    async def insert_audit_batch(self, rows: List[Dict[str, Any]]) -> int:
        data = await self._execute(lambda: self._client.table(self.audit_table).insert(rows))
        logger.debug(f"[AUDIT] Supabase inserted {len(data)} rows into {self.audit_table}")
        return len(data)

    async def insert_metric(self, row: Dict[str, Any]) -> None:
        await self._execute(lambda: self._client.table(self.metrics_table).insert(row))

    async def fetch_by_appointment(self, appointment_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self._execute(
            lambda: self._client.table(self.audit_table)
            .select("*")
            .eq("appointment_id", appointment_id)
            .order("timestamp", desc=True)
            .limit(limit)
        )

    async def fetch_by_session(self, session_id: str) -> List[Dict[str, Any]]:
        return await self._execute(
            lambda: self._client.table(self.audit_table)
            .select("*")
            .eq("session_id", session_id)
            .order("timestamp", desc=False)
        )

    async def fetch_metrics_since(self, since_iso: str) -> List[Dict[str, Any]]:
        return await self._execute(
            lambda: self._client.table(self.metrics_table)
            .select("metric_type, duration, success, timestamp")
            .gte("timestamp", since_iso)
        )

    async def fetch_errors_since(self, since_iso: str, limit: int) -> List[Dict[str, Any]]:
        return await self._execute(
            lambda: self._client.table(self.audit_table)
            .select("*")
            .gt("error_count", 0)
            .gte("timestamp", since_iso)
            .order("timestamp", desc=True)
            .limit(limit)
        )
