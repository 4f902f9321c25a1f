from utils.appointment_matcher import find_appointment_by_selection, normalize_selection
from tests.fakes import appointment

APPOINTMENTS = [
    appointment("evt-1", "Dental checkup", "2026-10-20T10:00:00+05:00", "2026-10-20T10:45:00+05:00"),
    appointment("evt-2", "Business meeting", "2026-10-21T14:00:00+05:00", "2026-10-21T15:00:00+05:00"),
    appointment("evt-3", "Parent teacher conference", "2026-10-22T16:00:00+05:00", "2026-10-22T16:30:00+05:00"),
]


def _match(selection: str):
    return find_appointment_by_selection(selection, APPOINTMENTS)


def test_numeric_position() -> None:
    result = _match("2")
    assert result.appointment["id"] == "evt-2"
    assert result.strategy == "index"
    assert _match("number 3").appointment["id"] == "evt-3"


def test_ordinal_words() -> None:
    assert _match("the second one").appointment["id"] == "evt-2"
    assert _match("3rd").strategy == "ordinal"
    assert _match("one").appointment["id"] == "evt-1"


def test_exact_title() -> None:
    result = _match("Business Meeting")
    assert result.appointment["id"] == "evt-2"
    assert result.strategy == "exact"


def test_transcription_slip_resolves_by_substring() -> None:
    result = _match("dell appointment")
    assert result.appointment["summary"] == "Dental checkup"
    assert result.strategy == "substring"


def test_generic_words_are_ignored() -> None:
    result = _match("my business appointment")
    assert result.appointment["id"] == "evt-2"
    assert result.strategy == "substring"


def test_word_overlap() -> None:
    result = _match("the teacher conference thing")
    assert result.appointment["id"] == "evt-3"
    assert result.strategy == "word_overlap"


def test_keyword_group() -> None:
    appointments = [appointment("evt-9", "Office sync", "2026-10-20T10:00:00+05:00", "2026-10-20T10:30:00+05:00")]
    result = find_appointment_by_selection("business stuff", appointments)
    assert result.appointment["id"] == "evt-9"
    assert result.strategy == "keyword"


def test_earlier_position_wins_ties() -> None:
    appointments = [
        appointment("a", "Dental cleaning", "2026-10-20T10:00:00+05:00", "2026-10-20T10:30:00+05:00"),
        appointment("b", "Dental xray", "2026-10-21T10:00:00+05:00", "2026-10-21T10:30:00+05:00"),
    ]
    assert find_appointment_by_selection("dental", appointments).appointment["id"] == "a"


def test_no_match() -> None:
    result = _match("yoga class")
    assert not result.found
    assert result.strategy == "not_found"
    assert not find_appointment_by_selection("", APPOINTMENTS).found
    assert not find_appointment_by_selection("dental", []).found


def test_normalize_selection() -> None:
    assert normalize_selection("Move it, the DELL appoint!") == "shift the dental appointment"
