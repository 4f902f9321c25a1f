"""
Utility modules for the voice calendar agent.
"""

from .cache import TTLCache
from .latency_metrics import TurnMetrics
from .phone_utils import (
    normalize_sip_user_to_e164,
    normalize_caller_number,
    speakable_phone,
)
from .formatting_utils import describe_appointment, format_appointment_list
from .call_logger import CallLogger, create_call_logger
from .timers import CancellableTimer, TimerGroup, race_with_timeout
from .classifiers import classify_confirmation, declines_further_help, is_goodbye, offers_assistance
from .date_parser import ParsedDateTime, parse_date_time
from .appointment_matcher import MatchResult, find_appointment_by_selection

__all__ = [
    "TTLCache",
    "TurnMetrics",
    "normalize_sip_user_to_e164",
    "normalize_caller_number",
    "speakable_phone",
    "describe_appointment",
    "format_appointment_list",
    "CallLogger",
    "create_call_logger",
    "CancellableTimer",
    "TimerGroup",
    "race_with_timeout",
    "classify_confirmation",
    "declines_further_help",
    "is_goodbye",
    "offers_assistance",
    "ParsedDateTime",
    "parse_date_time",
    "MatchResult",
    "find_appointment_by_selection",
]
