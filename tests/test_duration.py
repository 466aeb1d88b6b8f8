import pytest

from live_timing.core.duration import format_race_time, from_string, to_string


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1:35.365", 95_365),
        ("35.365", 35_365),
        ("0.000", 0),
        ("1:00:02.114", 3_602_114),
        ("6:00:00", 21_600_000),
        ("-1.5", 0),
    ],
)
def test_from_string(text, expected):
    assert from_string(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "1:2:3:4", "x:10.0", "1:nan", "inf"])
def test_from_string_rejects_garbage(text):
    assert from_string(text) is None


def test_to_string_picks_shortest_form():
    assert to_string(4_321) == "4.321"
    assert to_string(95_365) == "1:35.365"
    assert to_string(3_602_114) == "1:00:02.114"


def test_format_race_time():
    assert format_race_time(12_255) == "3:24:15"
    assert format_race_time(-5) == "0:00:00"
