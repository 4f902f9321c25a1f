"""
Staff notifications for calendar changes.

Handles:
- Routing a change to the right recipient role (teammate vs. office)
- Writing notifications to a Supabase outbox table picked up by the
  messaging worker

Delivery failures are raised to the caller, which records them in the audit
record without aborting the calendar change.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from config import logger, NOTIFICATIONS_TABLE

TEAMMATE = "teammate"
OFFICE = "office"


class Notifier(Protocol):
    async def notify(self, recipient_role: str, message: str) -> Dict[str, Any]: ...


class SupabaseOutboxNotifier:
    def __init__(self, client: Any, table: str = NOTIFICATIONS_TABLE, timeout_seconds: float = 6.0):
        self._client = client
        self.table = table
        self.timeout_seconds = timeout_seconds

    async def notify(self, recipient_role: str, message: str) -> Dict[str, Any]:
        row = {
            "recipient_role": recipient_role,
            "message": message,
            "status": "pending",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        result = await asyncio.wait_for(
            asyncio.to_thread(lambda: self._client.table(self.table).insert(row).execute()),
            timeout=self.timeout_seconds,
        )
        data = result.data or []
        message_id = data[0].get("id") if data else None
        logger.info(f"[NOTIFY] 📨 Queued notification for {recipient_role} id={message_id}")
        return {"sent": True, "recipient": recipient_role, "message_id": message_id}


def recipient_for_shift(original_start: datetime, new_start: datetime, now: Optional[datetime] = None) -> str:
    """Same-day moves go straight to the teammate; anything else goes to the office."""
    today = (now or datetime.now(original_start.tzinfo)).date()
    if original_start.date() == today and new_start.date() == today:
        return TEAMMATE
    return OFFICE
