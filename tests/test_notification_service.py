import asyncio
from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from services.notification_service import OFFICE, TEAMMATE, SupabaseOutboxNotifier, recipient_for_shift

TZ = ZoneInfo("Asia/Karachi")
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=TZ)


class FakeTable:
    def __init__(self, name, rows):
        self.name = name
        self.rows = rows
        self._pending = None

    def insert(self, row):
        self._pending = row
        return self

    def execute(self):
        self.rows.append((self.name, self._pending))
        return SimpleNamespace(data=[{"id": len(self.rows), **self._pending}])


class FakeSupabase:
    def __init__(self):
        self.rows = []

    def table(self, name):
        return FakeTable(name, self.rows)


def test_outbox_notifier_inserts_pending_row() -> None:
    async def _run():
        client = FakeSupabase()
        notifier = SupabaseOutboxNotifier(client, table="staff_notifications")
        result = await notifier.notify(OFFICE, "Ali cancelled 'Business meeting'.")

        assert result == {"sent": True, "recipient": OFFICE, "message_id": 1}
        table, row = client.rows[0]
        assert table == "staff_notifications"
        assert row["recipient_role"] == OFFICE
        assert row["status"] == "pending"

    asyncio.run(_run())


def test_same_day_moves_go_to_teammate() -> None:
    original = datetime(2026, 10, 19, 14, 0, tzinfo=TZ)
    assert recipient_for_shift(original, datetime(2026, 10, 19, 17, 0, tzinfo=TZ), now=NOW) == TEAMMATE


def test_other_moves_go_to_office() -> None:
    today = datetime(2026, 10, 19, 14, 0, tzinfo=TZ)
    tomorrow = datetime(2026, 10, 20, 14, 0, tzinfo=TZ)
    assert recipient_for_shift(today, tomorrow, now=NOW) == OFFICE
    assert recipient_for_shift(tomorrow, today, now=NOW) == OFFICE
    assert recipient_for_shift(tomorrow, tomorrow, now=NOW) == OFFICE
