"""
Zero-latency audit logging for calendar mutations.

Handles:
- Synchronous enqueue that never waits on the database
- Background batch draining with a best-effort metric per batch
- A bounded fallback queue for records the store could not take
- Best-effort read queries for operators

Fallback overflow policy: the oldest records are kept and new arrivals beyond
capacity are dropped.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Set, Union

from config import logger, AUDIT_BATCH_SIZE, AUDIT_FALLBACK_MAX
from models.audit import AuditRecord
from services.audit_store import AuditStore

_TIME_RANGE_PAT = re.compile(r"^\s*(\d+)\s*([smhd])\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_time_range(time_range: str) -> timedelta:
    """'10s' / '30m' / '1h' / '2d' to a timedelta; anything else is one hour."""
    match = _TIME_RANGE_PAT.match(time_range or "")
    if not match:
        return timedelta(hours=1)
    return timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()])


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BackgroundAuditLogger:
    def __init__(
        self,
        store: AuditStore,
        batch_size: int = AUDIT_BATCH_SIZE,
        fallback_max: int = AUDIT_FALLBACK_MAX,
    ):
        self._store = store
        self.batch_size = batch_size
        self.fallback_max = fallback_max
        self._queue: List[Dict[str, Any]] = []
        self._fallback: List[Dict[str, Any]] = []
        self._processing = False
        self._drain_tasks: Set[asyncio.Task] = set()
        self.dropped_count = 0

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    def enqueue(self, record: Union[AuditRecord, Dict[str, Any]]) -> Dict[str, Any]:
        """Queue a record and return immediately; draining happens on a later tick."""
        entry = record.to_document() if isinstance(record, AuditRecord) else dict(record)
        now = datetime.now(timezone.utc)
        entry.setdefault("timestamp", now.isoformat())
        entry.update(
            queued_at=now.isoformat(),
            retry_count=0,
            status="queued",
            last_error=None,
            last_retry_at=None,
        )
        self._queue.append(entry)
        self._schedule_drain()
        return {"queued": True, "entry_id": int(now.timestamp() * 1000)}

    def log_appointment_change(self, record: AuditRecord) -> Dict[str, Any]:
        ack = self.enqueue(record)
        logger.debug(
            f"[AUDIT] Queued {record.operation} for appointment={record.appointment_id} "
            f"success={record.success} errors={len(record.errors)}"
        )
        return ack

    def _schedule_drain(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[AUDIT] No running loop; record will drain on next flush")
            return
        loop.call_soon(self._spawn_drain)

    def _spawn_drain(self) -> None:
        if self._processing:
            return
        task = asyncio.ensure_future(self.process_queue())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def process_queue(self) -> None:
        if self._processing or not (self._queue or self._fallback):
            return
        self._processing = True
        batch: List[Dict[str, Any]] = []
        from_fallback = False
        try:
            while self._queue or self._fallback:
                # Fallback records only get another chance once the primary queue is empty
                from_fallback = not self._queue
                source = self._fallback if from_fallback else self._queue
                batch = source[: self.batch_size]
                del source[: self.batch_size]
                if from_fallback:
                    logger.info(f"[AUDIT] 🔄 Retrying {len(batch)} fallback entries ({len(self._fallback)} left)")
                await self._process_batch(batch)
                batch = []
        except Exception as e:
            logger.error(f"[AUDIT] ❌ Background logging failed: {e}")
            self._handle_failed_batch(batch, from_fallback, e)
        finally:
            self._processing = False

    async def _process_batch(self, batch: List[Dict[str, Any]]) -> None:
        started = time.perf_counter()
        processed_at = _utcnow_iso()
        rows = [{**entry, "processed_at": processed_at, "status": "processed"} for entry in batch]

        inserted = await self._store.insert_audit_batch(rows)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[AUDIT] 📊 Logged {inserted} audit entries in {duration_ms}ms")

        await self._log_performance_metric({
            "metric_type": "batch_audit_logging",
            "timestamp": _utcnow_iso(),
            "duration": duration_ms,
            "success": True,
            "metadata": {"batch_size": len(batch), "inserted_count": inserted},
        })

    async def _log_performance_metric(self, metric: Dict[str, Any]) -> None:
        try:
            await self._store.insert_metric(metric)
        except Exception as e:
            logger.warning(f"[AUDIT] ⚠️ Performance metric logging failed: {e}")

    def _handle_failed_batch(self, batch: List[Dict[str, Any]], from_fallback: bool, error: Exception) -> None:
        failed_at = _utcnow_iso()

        def _tag(entry: Dict[str, Any]) -> Dict[str, Any]:
            return {
                **entry,
                "retry_count": (entry.get("retry_count") or 0) + 1,
                "last_error": str(error),
                "last_retry_at": failed_at,
            }

        moved = [_tag(e) for e in batch]
        if from_fallback:
            # Retried records go back in front of the rest of the fallback queue
            self._fallback[:0] = moved
            moved = []
        moved.extend(_tag(e) for e in self._queue)
        self._queue.clear()

        room = max(0, self.fallback_max - len(self._fallback))
        kept, dropped = moved[:room], moved[room:]
        self._fallback.extend(kept)
        if dropped:
            self.dropped_count += len(dropped)
            logger.warning(f"[AUDIT] Fallback queue full ({self.fallback_max}), dropped {len(dropped)} newest entries")
        logger.warning(f"[AUDIT] ⚠️ Moved {len(kept)} entries to fallback queue (size={len(self._fallback)})")

    async def force_process_queue(self) -> None:
        logger.info("[AUDIT] 🔧 Force processing queue...")
        await self.process_queue()

    async def flush(self) -> None:
        """Wait for in-flight drains, then drain whatever is left once."""
        if self._drain_tasks:
            await asyncio.gather(*list(self._drain_tasks), return_exceptions=True)
        await self.process_queue()

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            "main_queue_size": len(self._queue),
            "fallback_queue_size": len(self._fallback),
            "is_processing": self._processing,
            "total_queued": len(self._queue) + len(self._fallback),
            "fallback_max": self.fallback_max,
            "batch_size": self.batch_size,
            "dropped_count": self.dropped_count,
        }

    def fallback_entries(self) -> List[Dict[str, Any]]:
        return list(self._fallback)

    # =========================================================================
    # READ PATH (best effort)
    # =========================================================================

    async def get_appointment_audit(self, appointment_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            return await self._store.fetch_by_appointment(appointment_id, limit)
        except Exception as e:
            logger.error(f"[AUDIT] Audit trail retrieval failed for appointment={appointment_id}: {e}")
            return []

    async def get_session_audit(self, session_id: str) -> List[Dict[str, Any]]:
        try:
            return await self._store.fetch_by_session(session_id)
        except Exception as e:
            logger.error(f"[AUDIT] Session audit retrieval failed for session={session_id}: {e}")
            return []

    async def get_performance_metrics(self, time_range: str = "1h") -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - parse_time_range(time_range)
        try:
            rows = await self._store.fetch_metrics_since(since.isoformat())
        except Exception as e:
            logger.error(f"[AUDIT] Performance metrics retrieval failed: {e}")
            return []

        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for row in rows:
            groups[row.get("metric_type") or "unknown"].append(row)

        summary = []
        for metric_type, items in groups.items():
            durations = [r["duration"] for r in items if r.get("duration") is not None]
            summary.append({
                "metric_type": metric_type,
                "count": len(items),
                "avg_duration": (sum(durations) / len(durations)) if durations else None,
                "success_rate": sum(1 for r in items if r.get("success")) / len(items),
            })
        return summary

    async def get_error_analysis(self, time_range: str = "24h", limit: int = 100) -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - parse_time_range(time_range)
        try:
            return await self._store.fetch_errors_since(since.isoformat(), limit)
        except Exception as e:
            logger.error(f"[AUDIT] Error analysis failed: {e}")
            return []
