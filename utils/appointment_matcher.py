"""
Resolve a caller's free-text appointment selection against the cached list.

Strategies, first hit wins and earlier list positions win ties:
1. explicit numeric position ("2", "number 2")
2. ordinal words ("the second one", "3rd")
3. exact title
4. substring containment either way
5. fractional word overlap
6. keyword groups ("dentist" for a "Dental" entry)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from config import logger

TRANSCRIPTION_FIXES = [
    (re.compile(r"\b(make|change|move|set) it\b"), "shift"),
    (re.compile(r"\b(dell|dentle|dentel)\b"), "dental"),
    (re.compile(r"\bappoint\b"), "appointment"),
]

ORDINALS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3,
    "fifth": 4, "5th": 4,
}
# Cardinal words only count as positions when nothing else was said ("one", "number two")
CARDINALS = {"one": 0, "two": 1, "three": 2, "four": 3, "five": 4}

STOP_WORDS = {
    "my", "the", "a", "an", "one", "with", "for", "at", "on", "to", "of",
    "appointment", "appointments", "meeting", "meetings", "event", "number",
    "shift", "cancel", "please", "that", "this",
}

KEYWORD_GROUPS = {
    "dental": ["dental", "dentist", "checkup"],
    "school": ["school", "teacher", "parent"],
    "doctor": ["doctor", "medical", "clinic"],
    "business": ["business", "work", "office"],
}

NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MatchResult:
    appointment: Optional[Dict[str, Any]]
    index: int = -1
    strategy: str = NOT_FOUND

    @property
    def found(self) -> bool:
        return self.appointment is not None


def normalize_selection(selection: str) -> str:
    text = re.sub(r"[^\w\s']", " ", (selection or "").lower())
    for pattern, replacement in TRANSCRIPTION_FIXES:
        text = pattern.sub(replacement, text)
    return re.sub(r"\s+", " ", text).strip()


def _content_words(text: str) -> List[str]:
    return [w for w in text.split() if w not in STOP_WORDS and w not in ORDINALS]


def _words_match(a: str, b: str) -> bool:
    if len(a) < 3 or len(b) < 3:
        return a == b
    return a in b or b in a or a[:3] == b[:3]


def _summary(appointment: Dict[str, Any]) -> str:
    return normalize_selection(appointment.get("summary") or "")


def find_appointment_by_selection(
    selection: str, appointments: List[Dict[str, Any]]
) -> MatchResult:
    if not selection or not appointments:
        return MatchResult(None)

    term = normalize_selection(selection)
    tokens = term.split()
    core = " ".join(_content_words(term))

    # 1. numeric position
    number = re.fullmatch(r"(?:number )?([1-9])", term)
    if number:
        index = int(number.group(1)) - 1
        if index < len(appointments):
            return MatchResult(appointments[index], index, "index")

    # 2. ordinal words
    for token in tokens:
        if token in ORDINALS and ORDINALS[token] < len(appointments):
            index = ORDINALS[token]
            return MatchResult(appointments[index], index, "ordinal")
    if not core:
        for token in tokens:
            if token in CARDINALS and CARDINALS[token] < len(appointments):
                index = CARDINALS[token]
                return MatchResult(appointments[index], index, "ordinal")

    summaries = [_summary(a) for a in appointments]

    # 3. exact title
    for i, summary in enumerate(summaries):
        if summary and summary == term:
            return MatchResult(appointments[i], i, "exact")

    # 4. substring either direction (generic words ignored)
    if core:
        for i, summary in enumerate(summaries):
            if summary and (core in summary or summary in core):
                return MatchResult(appointments[i], i, "substring")

    # 5. fractional word overlap
    search_words = _content_words(term)
    if search_words:
        for i, summary in enumerate(summaries):
            summary_words = summary.split()
            if not summary_words:
                continue
            matching = [w for w in summary_words if any(_words_match(w, s) for s in search_words)]
            if len(matching) >= max(1, math.ceil(len(summary_words) * 0.4)):
                return MatchResult(appointments[i], i, "word_overlap")

    # 6. keyword groups
    for group, keywords in KEYWORD_GROUPS.items():
        if group in tokens:
            for i, summary in enumerate(summaries):
                if any(keyword in summary for keyword in keywords):
                    return MatchResult(appointments[i], i, "keyword")

    logger.info(f"[MATCH] No appointment matched selection='{selection}'")
    return MatchResult(None)
