import copy

import pytest

from live_timing.replay.race_data import race_data_from_dict

RACE_FILE = {
    "name": "6 Hours of Test",
    "startingGrid": [{"carNumber": "7"}, {"car": {"carNumber": "8"}}, {"carNumber": "51"}],
    "timelineEvents": [
        {"event_time": "0.000", "event_type": "RaceStart"},
        {"event_time": "5.000", "event_type": {"CarEvent": ["7", {"LapCompleted": 1}]}},
        {"event_time": "12.000", "event_type": {"CarEvent": ["8", {"LapCompleted": 1}]}},
    ],
}

LAP_ROWS = [
    {
        "carNumber": "7",
        "lapNumber": 1,
        "lapTime": "5.000",
        "s1": "1.500",
        "s2": "2.000",
        "s3": "1.500",
        "elapsed": "5.000",
        "driverName": "Kamui Kobayashi",
    },
    {"carNumber": "8", "lapNumber": 1, "lapTime": "12.000", "elapsed": 12000},
]


@pytest.fixture
def race_dict():
    return copy.deepcopy(RACE_FILE)


@pytest.fixture
def lap_rows():
    return copy.deepcopy(LAP_ROWS)


@pytest.fixture
def race(race_dict, lap_rows):
    return race_data_from_dict(race_dict, lap_rows)


class FakeTime:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time():
    return FakeTime()
