"""
Pure text classifiers used by the conversation layer.

Handles:
- Caller confirmation vs. denial
- Sentence-terminal goodbyes in the agent's own reply
- "Anything else?" style assistance offers
- The caller turning down further help
"""

from __future__ import annotations

import re

# =============================================================================
# REGEX PATTERNS FOR CONFIRMATION DETECTION
# =============================================================================

YES_PAT = re.compile(
    r"\b(yes|yeah|yep|yup|correct|right|that's right|that is right|ok|okay|sure|"
    r"go ahead|do it|please do|sounds good|confirm(?:ed)?|perfect|absolutely)\b",
    re.IGNORECASE,
)

NO_PAT = re.compile(
    r"\b(no|nope|wrong|incorrect|not correct|that's wrong|don't|do not|cancel that|never mind|wait)\b",
    re.IGNORECASE,
)

GOODBYE_PAT = re.compile(
    r"\b(goodbye|good bye|bye bye|bye|have a (?:great|good|nice|wonderful) day|"
    r"see you later|talk to you later)\b[\s.!]*$",
    re.IGNORECASE,
)

DECLINE_PAT = re.compile(
    r"\b(no|nope|nah|no thanks|no thank you|nothing(?: else| more)?|that's (?:all|it|everything)|"
    r"that is (?:all|it)|that will be all|that'll be all|i'm (?:good|fine|all set|done)|"
    r"i am (?:good|fine|all set|done)|all set|all good|we're done|that's fine)\b",
    re.IGNORECASE,
)

# Anything that sounds like a new request keeps the call going
FURTHER_REQUEST_PAT = re.compile(
    r"\b(but|also|another|actually|move|shift|cancel|reschedule|book|change|check|when|what|which|"
    r"can you|could you|i need|i want|i'd like)\b|\?",
    re.IGNORECASE,
)

ASSISTANCE_PHRASES = ("anything else", "help you with", "assistance", "anything more")

CONFIRM = "confirm"
DENY = "deny"
UNCLEAR = "unclear"


def classify_confirmation(text: str) -> str:
    """
    Classify a caller reply to a read-back.

    Returns "confirm", "deny" or "unclear". Mixed signals ("yes... no wait")
    are unclear so nothing mutates on a hedge.
    """
    if not text or not text.strip():
        return UNCLEAR
    yes = bool(YES_PAT.search(text))
    no = bool(NO_PAT.search(text))
    if yes and not no:
        return CONFIRM
    if no and not yes:
        return DENY
    return UNCLEAR


def is_goodbye(text: str) -> bool:
    """True when the reply ends with an explicit farewell."""
    if not text:
        return False
    return bool(GOODBYE_PAT.search(text.strip()))


def offers_assistance(text: str) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in ASSISTANCE_PHRASES)


def declines_further_help(text: str) -> bool:
    """True for "no, that's all" style answers to an assistance offer."""
    if not text or not text.strip():
        return False
    if FURTHER_REQUEST_PAT.search(text):
        return False
    return bool(DECLINE_PAT.search(text))
