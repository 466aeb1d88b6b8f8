import pytest

from live_timing.core.timeline import (
    CarEvent,
    CarStart,
    Checkered,
    LapCompleted,
    LapRecord,
    RaceStart,
    Retirement,
    TimelineError,
    UnknownCarEvent,
    UnknownEvent,
    calc_time_limit,
    calc_timeline_events,
    extract_car_updates,
    parse_event,
    parse_events,
)


def test_parse_wire_shapes():
    start = parse_event({"event_time": "0.000", "event_type": "RaceStart"})
    assert start.event_time == 0
    assert start.event_type == RaceStart()

    lap = parse_event({"event_time": "1:35.365", "event_type": {"CarEvent": ["7", {"LapCompleted": 1}]}})
    assert lap.event_time == 95_365
    assert lap.event_type == CarEvent("7", LapCompleted(1))

    nxt = parse_event({"event_time": 100, "event_type": {"CarEvent": [8, {"LapCompleted": [3, {"nextLap": 4}]}]}})
    assert nxt.event_type == CarEvent("8", LapCompleted(3, next_lap=4))

    car_start = parse_event({"event_time": "0.5", "event_type": {"CarEvent": ["51", {"Start": {"currentLap": 1}}]}})
    assert car_start.event_type.kind == CarStart(current_lap=1)

    assert parse_event({"event_time": "1:00", "event_type": {"CarEvent": ["7", "Retirement"]}}).event_type.kind == Retirement()
    assert parse_event({"event_time": "1:00", "event_type": {"CarEvent": ["7", "Checkered"]}}).event_type.kind == Checkered()


def test_unknown_kinds_are_preserved_not_rejected():
    event = parse_event({"event_time": "1.0", "event_type": {"SafetyCar": {"deployed": True}}})
    assert event.event_type == UnknownEvent("SafetyCar")
    car = parse_event({"event_time": "1.0", "event_type": {"CarEvent": ["7", {"Penalty": 5}]}})
    assert car.event_type.kind == UnknownCarEvent("Penalty")
    assert extract_car_updates(event) == []
    assert extract_car_updates(car) == []


def test_raw_payload_passes_through():
    raw = {"event_time": "1:35.365", "event_type": {"CarEvent": ["7", {"LapCompleted": 1}]}, "extra": 1}
    event = parse_event(raw)
    assert event.to_dict() == raw
    # Copy, not alias
    event.to_dict()["extra"] = 2
    assert event.to_dict()["extra"] == 1


@pytest.mark.parametrize(
    "raw",
    [
        {"event_type": "RaceStart"},
        {"event_time": "soon", "event_type": "RaceStart"},
        {"event_time": "1.0", "event_type": {"CarEvent": ["7"]}},
    ],
)
def test_malformed_events_raise(raw):
    with pytest.raises(TimelineError):
        parse_event(raw)


def test_extract_car_updates_touches_only_named_car():
    lap = parse_event({"event_time": "1:35", "event_type": {"CarEvent": ["7", {"LapCompleted": 5}]}})
    assert extract_car_updates(lap) == [{"carNumber": "7", "lastCompletedLap": 5, "currentLap": 6}]
    retired = parse_event({"event_time": "2:00", "event_type": {"CarEvent": ["8", "Retirement"]}})
    assert extract_car_updates(retired) == [{"carNumber": "8", "status": "Retired"}]
    start = parse_event({"event_time": "0", "event_type": "RaceStart"})
    assert extract_car_updates(start) == []


def test_three_laps_for_one_car_yield_three_increments():
    events = parse_events(
        [
            {"event_time": "0.000", "event_type": "RaceStart"},
            {"event_time": "1:50.000", "event_type": {"CarEvent": ["7", {"LapCompleted": 1}]}},
            {"event_time": "3:40.000", "event_type": {"CarEvent": ["7", {"LapCompleted": 2}]}},
            {"event_time": "5:30.000", "event_type": {"CarEvent": ["7", {"LapCompleted": 3}]}},
        ]
    )
    updates = [u for e in events for u in extract_car_updates(e)]
    assert {u["carNumber"] for u in updates} == {"7"}
    assert [u["lastCompletedLap"] for u in updates] == [1, 2, 3]


def test_timeline_from_laps():
    hour = 3_600_000
    laps = [
        LapRecord("7", 1, 110_000),
        LapRecord("8", 1, 112_000),
        LapRecord("7", 2, 6 * hour + 5_000),
        LapRecord("8", 2, 2 * hour),
    ]
    limit = calc_time_limit(laps)
    assert limit == 6 * hour

    events = calc_timeline_events(limit, laps)
    times = [e.event_time for e in events]
    assert times == sorted(times)
    assert events[0].event_type == RaceStart()
    finals = {e.event_type.car_number: e.event_type.kind for e in events if isinstance(e.event_type, CarEvent) and not isinstance(e.event_type.kind, LapCompleted)}
    assert finals == {"7": Checkered(), "8": Retirement()}
    # Lap completion precedes the final event recorded at the same instant
    car8 = [e.event_type.kind for e in events if isinstance(e.event_type, CarEvent) and e.event_type.car_number == "8"]
    assert car8 == [LapCompleted(1), LapCompleted(2), Retirement()]


def test_time_limit_of_no_laps_is_zero():
    assert calc_time_limit([]) == 0
