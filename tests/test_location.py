# tests/test_location.py
import pytest

from competition_engine.db.enums import Level
from competition_engine.utils.location import NATIONAL_KEY, location_key, normalize, parse_location_key


@pytest.mark.parametrize(
    ("level", "region", "council", "expected"),
    [
        (Level.COUNCIL, "North", "Alpha", "North::Alpha"),
        (Level.COUNCIL, "North", None, "North::unknown"),
        (Level.REGIONAL, "North", "Alpha", "North"),
        (Level.REGIONAL, None, None, "unknown"),
        (Level.NATIONAL, "North", "Alpha", NATIONAL_KEY),
    ],
)
def test_location_key(level, region, council, expected):
    assert location_key(level, region, council) == expected


def test_parse_location_key_inverts_encoding():
    assert parse_location_key(Level.COUNCIL, "North::Alpha") == ("North", "Alpha")
    assert parse_location_key(Level.COUNCIL, "unknown::Alpha") == (None, "Alpha")
    assert parse_location_key(Level.REGIONAL, "North") == ("North", None)
    assert parse_location_key(Level.NATIONAL, NATIONAL_KEY) == (None, None)


def test_normalize_ignores_case_and_whitespace():
    assert normalize("  North ") == "north"
    assert normalize(None) == ""
