from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from utils.date_parser import extract_date, extract_time, parse_date_time

# Monday
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=ZoneInfo("Asia/Karachi"))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("3pm", time(15, 0)),
        ("3:30 p.m.", time(15, 30)),
        ("at 10 am", time(10, 0)),
        ("12 pm", time(12, 0)),
        ("12am", time(0, 0)),
        ("15:30", time(15, 30)),
        ("3:30", time(15, 30)),
        ("7:45", time(19, 45)),
        ("9:15", time(9, 15)),
        ("03:30", time(3, 30)),
        ("13:05", time(13, 5)),
        ("noon", time(12, 0)),
        ("at 4", time(16, 0)),
        ("at 9", time(9, 0)),
        ("four o'clock", time(16, 0)),
        ("two pm", time(14, 0)),
        ("10 in the evening", time(22, 0)),
        ("sometime in the morning", time(9, 0)),
    ],
)
def test_extract_time(text: str, expected: time) -> None:
    assert extract_time(text) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("today", date(2026, 10, 19)),
        ("tomorrow", date(2026, 10, 20)),
        ("day after tomorrow", date(2026, 10, 21)),
        ("Friday", date(2026, 10, 23)),
        ("this friday", date(2026, 10, 23)),
        ("on monday", date(2026, 10, 19)),
        ("next monday", date(2026, 10, 26)),
        ("29 October", date(2026, 10, 29)),
        ("Oct 25th", date(2026, 10, 25)),
        ("the 4th of March", date(2027, 3, 4)),
        ("2026-11-02", date(2026, 11, 2)),
        ("next week", date(2026, 10, 26)),
    ],
)
def test_extract_date(text: str, expected: date) -> None:
    assert extract_date(text, NOW) == expected


def test_full_phrase_is_complete() -> None:
    parsed = parse_date_time("Friday 3pm", NOW)
    assert parsed.is_complete
    assert parsed.to_datetime("Asia/Karachi") == datetime(2026, 10, 23, 15, 0, tzinfo=ZoneInfo("Asia/Karachi"))


def test_date_only_and_time_only_are_reported_separately() -> None:
    date_only = parse_date_time("tomorrow", NOW)
    assert date_only.has_date and not date_only.has_time
    assert date_only.to_datetime("Asia/Karachi") is None

    time_only = parse_date_time("make it 3pm", NOW)
    assert time_only.has_time and not time_only.has_date

    merged = time_only.merged_with(date_only)
    assert merged.is_complete
    assert merged.date == date(2026, 10, 20)


def test_iso_datetime_carries_time() -> None:
    parsed = parse_date_time("2026-10-23T15:00", NOW)
    assert parsed.date == date(2026, 10, 23)
    assert parsed.time == time(15, 0)


@pytest.mark.parametrize("text", [None, "", "later", "May", "could"])
def test_context_words_are_not_dates(text) -> None:
    parsed = parse_date_time(text, NOW)
    assert not parsed.has_date and not parsed.has_time


def test_clock_time_without_meridiem_reads_as_afternoon() -> None:
    parsed = parse_date_time("move it to Friday at 3:30", now=NOW)
    assert parsed.date == date(2026, 10, 23)
    assert parsed.time == time(15, 30)
