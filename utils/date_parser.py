"""
Natural-language date/time parsing for spoken reschedule requests.

Handles:
- Relative days ("today", "tomorrow", "day after tomorrow", "next week")
- Weekdays ("Friday", "this Friday", "next Friday")
- Day + month in either order ("29 September", "Sept 29th", "the 4th of March")
- ISO dates ("2026-10-23", "2026-10-23T15:00")
- Times ("3pm", "3:30 p.m.", "15:30", "noon", "at 4", "morning")

Date and time are reported separately so callers can tell a date-only
answer from a time-only answer and ask for the missing half.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as dtparser
from dateutil.relativedelta import relativedelta, MO, TU, WE, TH, FR, SA, SU

# Words that show up as stray tool arguments and must never become a date
CONTEXT_WORDS = {"later", "may", "could", "should"}

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

WEEKDAYS = {
    "monday": MO, "tuesday": TU, "wednesday": WE, "thursday": TH,
    "friday": FR, "saturday": SA, "sunday": SU,
}

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

PERIOD_HOURS = {"morning": 9, "afternoon": 14, "evening": 18}

_MONTH_ALT = "|".join(sorted(MONTHS, key=len, reverse=True))
_WEEKDAY_ALT = "|".join(WEEKDAYS)
_NUMBER_ALT = "|".join(NUMBER_WORDS)

_ISO_PAT = re.compile(r"\b\d{4}-\d{2}-\d{2}(?:[t ]\d{1,2}:\d{2}(?::\d{2})?)?\b", re.IGNORECASE)
_DAY_MONTH_PAT = re.compile(
    rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_ALT})\b", re.IGNORECASE
)
_MONTH_DAY_PAT = re.compile(
    rf"\b({_MONTH_ALT})\.?\s+(?:the\s+)?(\d{{1,2}})(?:st|nd|rd|th)?\b", re.IGNORECASE
)
_NEXT_WEEKDAY_PAT = re.compile(rf"\bnext\s+({_WEEKDAY_ALT})\b", re.IGNORECASE)
_WEEKDAY_PAT = re.compile(rf"\b(?:this\s+|on\s+)?({_WEEKDAY_ALT})\b", re.IGNORECASE)

_AMPM_PAT = re.compile(r"\b(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?\s*m\b\.?", re.IGNORECASE)
_WORD_AMPM_PAT = re.compile(rf"\b({_NUMBER_ALT})\s*(?:o'?clock\s*)?([ap])\.?\s*m\b\.?", re.IGNORECASE)
_PERIOD_PAT = re.compile(
    r"\b(\d{1,2})(?:[:.](\d{2}))?\s+(?:o'?clock\s+)?in the (morning|afternoon|evening)\b",
    re.IGNORECASE,
)
_24H_PAT = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_AT_HOUR_PAT = re.compile(r"\bat\s+(\d{1,2})(?:\s*o'?clock)?\b(?!\s*(?:st|nd|rd|th|:))", re.IGNORECASE)
_OCLOCK_PAT = re.compile(rf"\b(\d{{1,2}}|{_NUMBER_ALT})\s*o'?clock\b", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedDateTime:
    date: Optional[date] = None
    time: Optional[dtime] = None

    @property
    def has_date(self) -> bool:
        return self.date is not None

    @property
    def has_time(self) -> bool:
        return self.time is not None

    @property
    def is_complete(self) -> bool:
        return self.has_date and self.has_time

    def merged_with(self, other: "ParsedDateTime") -> "ParsedDateTime":
        """Fill any missing half from `other` (self wins on conflicts)."""
        return ParsedDateTime(date=self.date or other.date, time=self.time or other.time)

    def to_datetime(self, tz: str) -> Optional[datetime]:
        if not self.is_complete:
            return None
        return datetime.combine(self.date, self.time).replace(tzinfo=ZoneInfo(tz))


def _to_hour(raw: str) -> int:
    raw = raw.lower()
    return NUMBER_WORDS[raw] if raw in NUMBER_WORDS else int(raw)


def _apply_meridiem(hour: int, meridiem: str) -> Optional[int]:
    if hour < 1 or hour > 12:
        return None
    if meridiem.lower() == "p" and hour != 12:
        return hour + 12
    if meridiem.lower() == "a" and hour == 12:
        return 0
    return hour


def _bare_hour(hour: int) -> Optional[int]:
    """'at 4' on a calendar call means 4 PM; 8 through 12 stay as said."""
    if hour < 1 or hour > 23:
        return None
    if 1 <= hour <= 7:
        return hour + 12
    return hour


def extract_time(text: str) -> Optional[dtime]:
    """Pull a clock time out of free text, or None if none was said."""
    if not text:
        return None
    lowered = text.lower()

    match = _AMPM_PAT.search(lowered)
    if match:
        hour = _apply_meridiem(int(match.group(1)), match.group(3))
        minute = int(match.group(2) or 0)
        if hour is not None and minute < 60:
            return dtime(hour, minute)

    match = _WORD_AMPM_PAT.search(lowered)
    if match:
        hour = _apply_meridiem(_to_hour(match.group(1)), match.group(2))
        if hour is not None:
            return dtime(hour, 0)

    match = _PERIOD_PAT.search(lowered)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2) or 0)
        if match.group(3) != "morning" and hour < 12:
            hour += 12
        if hour < 24 and minute < 60:
            return dtime(hour, minute)

    match = _24H_PAT.search(lowered)
    if match:
        raw_hour, minute = match.group(1), int(match.group(2))
        hour = int(raw_hour)
        # "3:30" with no am/pm reads like "at 3"; "03:30" is a literal 24 h time
        if len(raw_hour) == 1:
            hour = _bare_hour(hour) if hour else hour
        return dtime(hour, minute)

    if re.search(r"\b(noon|midday)\b", lowered):
        return dtime(12, 0)
    if re.search(r"\bmidnight\b", lowered):
        return dtime(0, 0)

    match = _OCLOCK_PAT.search(lowered) or _AT_HOUR_PAT.search(lowered)
    if match:
        hour = _bare_hour(_to_hour(match.group(1)))
        if hour is not None:
            return dtime(hour, 0)

    for period, hour in PERIOD_HOURS.items():
        if re.search(rf"\b{period}\b", lowered):
            return dtime(hour, 0)

    return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _day_month(day: int, month: int, today: date) -> Optional[date]:
    target = _safe_date(today.year, month, day)
    if target is None:
        return None
    if target < today:
        target = _safe_date(today.year + 1, month, day)
    return target


def extract_date(text: str, now: Optional[datetime] = None) -> Optional[date]:
    """Pull a calendar date out of free text, relative to `now`."""
    if not text:
        return None
    lowered = text.lower()
    today = (now or datetime.now()).date()

    match = _ISO_PAT.search(lowered)
    if match:
        try:
            return dtparser.isoparse(match.group(0).upper()).date()
        except ValueError:
            pass

    if re.search(r"\bday after tomorrow\b", lowered):
        return today + timedelta(days=2)
    if re.search(r"\btomorrow\b", lowered):
        return today + timedelta(days=1)
    if re.search(r"\b(today|tonight|this (morning|afternoon|evening))\b", lowered):
        return today

    match = _DAY_MONTH_PAT.search(lowered)
    if match:
        return _day_month(int(match.group(1)), MONTHS[match.group(2).lower()], today)
    match = _MONTH_DAY_PAT.search(lowered)
    if match:
        return _day_month(int(match.group(2)), MONTHS[match.group(1).lower()], today)

    match = _NEXT_WEEKDAY_PAT.search(lowered)
    if match:
        weekday = WEEKDAYS[match.group(1).lower()]
        return today + timedelta(days=1) + relativedelta(weekday=weekday(+1))

    match = _WEEKDAY_PAT.search(lowered)
    if match:
        weekday = WEEKDAYS[match.group(1).lower()]
        return today + relativedelta(weekday=weekday(+1))

    if re.search(r"\bnext week\b", lowered):
        return today + timedelta(days=7)

    return None


def parse_date_time(text: Optional[str], now: Optional[datetime] = None) -> ParsedDateTime:
    """
    Parse a spoken date/time phrase.

    Either half may be missing; context words such as "later" or "may" on
    their own yield an empty result.
    """
    if not text or text.strip().lower() in CONTEXT_WORDS:
        return ParsedDateTime()

    parsed_time = extract_time(text)
    iso = _ISO_PAT.search(text)
    if iso and parsed_time is None and re.search(r"[tT ]\d{1,2}:\d{2}", iso.group(0)):
        try:
            parsed_time = dtparser.isoparse(iso.group(0).upper().replace(" ", "T")).time()
        except ValueError:
            pass

    return ParsedDateTime(date=extract_date(text, now), time=parsed_time)
