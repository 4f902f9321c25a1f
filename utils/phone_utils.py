"""
Phone number utilities for caller identification.
"""

from __future__ import annotations

import re
from typing import Optional

import phonenumbers

from config import logger, DEFAULT_PHONE_REGION


def normalize_sip_user_to_e164(raw: Optional[str]) -> Optional[str]:
    """Best-effort normalization for SIP headers like sip.phoneNumber/sip.fromUser."""
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None

    # Strip common SIP URI wrappers
    s = s.replace("sip:", "")
    if "@" in s:
        s = s.split("@", 1)[0]

    # Keep only digits and '+'
    s = re.sub(r"[^\d+]", "", s)
    if not s:
        return None

    # Convert 00-prefixed international numbers
    if s.startswith("00"):
        s = "+" + s[2:]

    return s


def normalize_caller_number(raw: Optional[str], default_region: str = DEFAULT_PHONE_REGION) -> Optional[str]:
    """
    Caller id to E.164, or None when it is not a valid number
    (anonymous callers, SIP test users).
    """
    candidate = normalize_sip_user_to_e164(raw)
    if not candidate:
        return None
    attempts = [candidate] if candidate.startswith("+") else [candidate, "+" + candidate]
    for attempt in attempts:
        try:
            num = phonenumbers.parse(attempt, default_region)
        except phonenumbers.NumberParseException:
            continue
        if phonenumbers.is_valid_number(num):
            return phonenumbers.format_number(num, phonenumbers.PhoneNumberFormat.E164)
    logger.debug(f"[PHONE] Could not normalize caller id: {raw!r}")
    return None


def speakable_phone(e164: Optional[str]) -> str:
    """
    Human-readable grouping for staff notifications.

    Examples:
        +923351897839 -> "+92 335 1897839"
        +13105551234  -> "+1 310-555-1234"
    """
    if not e164:
        return "unknown"
    try:
        num = phonenumbers.parse(e164, None)
    except phonenumbers.NumberParseException:
        return e164
    return phonenumbers.format_number(num, phonenumbers.PhoneNumberFormat.INTERNATIONAL)
