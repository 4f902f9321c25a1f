"""
Google Calendar access for the caller's appointments.

Handles:
- OAuth user token or service-account credentials
- Listing upcoming events with a short per-caller TTL cache
- Creating, moving and cancelling events
- Retrying rate-limit and server errors with exponential backoff and jitter

The Google client is synchronous; calls run in worker threads.
"""

from __future__ import annotations

import os
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Callable, TypeVar
from zoneinfo import ZoneInfo

from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import (
    logger,
    DEFAULT_TZ,
    GOOGLE_OAUTH_TOKEN_PATH,
    GOOGLE_SERVICE_ACCOUNT_PATH,
    GOOGLE_DELEGATED_USER,
    GOOGLE_CALENDAR_ID_DEFAULT,
    CALENDAR_LOOKAHEAD_DAYS,
    CALENDAR_MAX_RESULTS,
    CALENDAR_MAX_RETRIES,
)
from models.session import CallerInfo
from utils.cache import TTLCache

_SCOPES = ["https://www.googleapis.com/auth/calendar"]
_RETRYABLE_STATUS = {403, 429, 500, 502, 503, 504}
_RETRYABLE_HINTS = ("quota", "rate limit", "backend", "temporary")

T = TypeVar("T")


class CalendarServiceError(RuntimeError):
    """Calendar provider failure after retries."""


def _to_iso(dt: datetime, tz: str | None) -> tuple[str, str]:
    """Return (iso, tz_name) with timezone applied."""
    tzname = tz or (getattr(dt.tzinfo, "key", None)) or "UTC"
    aware = dt.astimezone(ZoneInfo(tzname)) if dt.tzinfo else dt.replace(tzinfo=ZoneInfo(tzname))
    return aware.isoformat(), tzname


def _build_calendar_client():
    """Authenticated Google Calendar v3 client from local credentials."""
    creds = None
    if GOOGLE_OAUTH_TOKEN_PATH and os.path.exists(GOOGLE_OAUTH_TOKEN_PATH):
        # Use user OAuth token (personal calendar)
        creds = Credentials.from_authorized_user_file(GOOGLE_OAUTH_TOKEN_PATH, scopes=_SCOPES)
    elif GOOGLE_SERVICE_ACCOUNT_PATH and os.path.exists(GOOGLE_SERVICE_ACCOUNT_PATH):
        # Fallback to service account (Workspace/shared calendar)
        creds = service_account.Credentials.from_service_account_file(GOOGLE_SERVICE_ACCOUNT_PATH, scopes=_SCOPES)
        if GOOGLE_DELEGATED_USER:
            creds = creds.with_subject(GOOGLE_DELEGATED_USER)
    else:
        raise CalendarServiceError("No GOOGLE_OAUTH_TOKEN or GOOGLE_APPLICATION_CREDENTIALS available")

    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def normalize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    start = event.get("start") or {}
    end = event.get("end") or {}
    return {
        "id": event.get("id"),
        "summary": event.get("summary") or "Untitled appointment",
        "description": event.get("description") or "",
        "start": {"dateTime": start.get("dateTime") or start.get("date"), "timeZone": start.get("timeZone")},
        "end": {"dateTime": end.get("dateTime") or end.get("date"), "timeZone": end.get("timeZone")},
        "status": event.get("status"),
        "location": event.get("location") or "",
    }


def _should_retry(error: Exception) -> bool:
    if isinstance(error, HttpError):
        status = getattr(error.resp, "status", None)
        try:
            if int(status) in _RETRYABLE_STATUS:
                return True
        except (TypeError, ValueError):
            pass
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(hint in message for hint in _RETRYABLE_HINTS)


class GoogleCalendarService:
    def __init__(
        self,
        calendar_id: str = GOOGLE_CALENDAR_ID_DEFAULT,
        tz: str = DEFAULT_TZ,
        client_factory: Callable[[], Any] = _build_calendar_client,
        cache: Optional[TTLCache] = None,
        max_retries: int = CALENDAR_MAX_RETRIES,
    ):
        self.calendar_id = calendar_id
        self.tz = tz
        self._client_factory = client_factory
        self._client = None
        self._cache = cache or TTLCache()
        self.max_retries = max_retries

    def _service(self):
        if self._client is None:
            self._client = self._client_factory()
            logger.info("[CALENDAR] ✅ Google Calendar client ready")
        return self._client

    async def _execute_with_retry(self, operation: Callable[[], T], name: str) -> T:
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(operation)
            except Exception as e:
                attempt += 1
                if not _should_retry(e) or attempt >= self.max_retries:
                    logger.error(f"[CALENDAR] ❌ {name} failed after {attempt} attempts: {e}")
                    raise CalendarServiceError(f"{name} failed: {e}") from e
                delay = (2 ** (attempt - 1)) + random.random()
                logger.warning(f"[CALENDAR] 🔄 {name} failed (attempt {attempt}/{self.max_retries}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

    # =========================================================================
    # READ
    # =========================================================================

    async def fetch_appointments(self, caller_info: CallerInfo, force_refresh: bool = False) -> List[Dict[str, Any]]:
        key = caller_info.cache_key()
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("[CALENDAR] Using cached calendar data")
                return cached

        now = datetime.now(timezone.utc)
        time_min = now.isoformat()
        time_max = (now + timedelta(days=CALENDAR_LOOKAHEAD_DAYS)).isoformat()

        def _list():
            return (
                self._service().events()
                .list(
                    calendarId=self.calendar_id,
                    timeMin=time_min,
                    timeMax=time_max,
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=CALENDAR_MAX_RESULTS,
                )
                .execute()
            )

        started = time.perf_counter()
        response = await self._execute_with_retry(_list, "fetch_appointments")
        appointments = [normalize_event(e) for e in response.get("items", [])]
        self._cache.set(key, appointments)
        logger.info(
            f"[CALENDAR] 📅 Fetched {len(appointments)} events in {int((time.perf_counter() - started) * 1000)}ms"
        )
        return appointments

    # =========================================================================
    # WRITE
    # =========================================================================

    async def create_appointment(
        self,
        summary: str,
        start: datetime,
        end: datetime,
        tz: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        start_iso, tzname = _to_iso(start, tz or self.tz)
        end_iso, _ = _to_iso(end, tzname)
        body = {
            "summary": summary,
            "description": description or "",
            "start": {"dateTime": start_iso, "timeZone": tzname},
            "end": {"dateTime": end_iso, "timeZone": tzname},
            "reminders": {"useDefault": True},
        }
        created = await self._execute_with_retry(
            lambda: self._service().events().insert(calendarId=self.calendar_id, body=body).execute(),
            "create_appointment",
        )
        self._cache.invalidate()
        logger.info(f"[CALENDAR] ✅ Created event id={created.get('id')}")
        return normalize_event(created)

    async def update_appointment(
        self,
        appointment_id: str,
        start: datetime,
        end: datetime,
        tz: Optional[str] = None,
    ) -> Dict[str, Any]:
        start_iso, tzname = _to_iso(start, tz or self.tz)
        end_iso, _ = _to_iso(end, tzname)
        body = {
            "start": {"dateTime": start_iso, "timeZone": tzname},
            "end": {"dateTime": end_iso, "timeZone": tzname},
        }
        updated = await self._execute_with_retry(
            lambda: self._service().events()
            .patch(calendarId=self.calendar_id, eventId=appointment_id, body=body)
            .execute(),
            "update_appointment",
        )
        self._cache.invalidate()
        logger.info(f"[CALENDAR] ✅ Moved event id={appointment_id} to {start_iso}")
        return normalize_event(updated)

    async def cancel_appointment(self, appointment_id: str) -> Dict[str, Any]:
        await self._execute_with_retry(
            lambda: self._service().events().delete(calendarId=self.calendar_id, eventId=appointment_id).execute(),
            "cancel_appointment",
        )
        self._cache.invalidate()
        logger.info(f"[CALENDAR] ✅ Cancelled event id={appointment_id}")
        return {"id": appointment_id, "status": "cancelled"}
