"""Timeline events: the precomputed, time-ordered race log used for replay.

Events arrive in the externally tagged JSON form produced by the race
preprocessor::

    {"event_time": "0.000", "event_type": "RaceStart"}
    {"event_time": "1:35.365", "event_type": {"CarEvent": ["7", {"LapCompleted": 1}]}}
    {"event_time": "6:00:02.114", "event_type": {"CarEvent": ["7", "Checkered"]}}

Kinds this module does not understand parse to `UnknownEvent` /
`UnknownCarEvent` and contribute no car updates.
"""

from __future__ import annotations

import copy
import functools
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from . import duration


@dataclass(frozen=True)
class CarStart:
    current_lap: Optional[int] = None


@dataclass(frozen=True)
class LapCompleted:
    lap: int
    next_lap: Optional[int] = None


@dataclass(frozen=True)
class Retirement:
    pass


@dataclass(frozen=True)
class Checkered:
    pass


@dataclass(frozen=True)
class UnknownCarEvent:
    name: str


CarEventKind = Union[CarStart, LapCompleted, Retirement, Checkered, UnknownCarEvent]


@dataclass(frozen=True)
class RaceStart:
    pass


@dataclass(frozen=True)
class CarEvent:
    car_number: str
    kind: CarEventKind


@dataclass(frozen=True)
class UnknownEvent:
    name: str


EventType = Union[RaceStart, CarEvent, UnknownEvent]


@dataclass(frozen=True)
class TimelineEvent:
    event_time: int  # milliseconds since race start
    event_type: EventType
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, hash=False, repr=False)

    def to_dict(self) -> dict:
        """Wire form; the original payload when the event was parsed from one."""
        if self.raw is not None:
            return copy.deepcopy(self.raw)
        return {"event_time": duration.to_string(self.event_time), "event_type": _type_to_wire(self.event_type)}


class TimelineError(ValueError):
    pass


# ---- Parsing ----
def _kind_name(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping) and len(value) == 1:
        return str(next(iter(value)))
    return type(value).__name__


def _parse_car_kind(value: Any) -> CarEventKind:
    if value == "Retirement":
        return Retirement()
    if value == "Checkered":
        return Checkered()
    if isinstance(value, Mapping) and len(value) == 1:
        name, body = next(iter(value.items()))
        if name == "LapCompleted":
            # Either a bare lap number or [lap, {"nextLap": n}]
            if isinstance(body, int):
                return LapCompleted(lap=body)
            if isinstance(body, Sequence) and body and isinstance(body[0], int):
                extra = body[1] if len(body) > 1 and isinstance(body[1], Mapping) else {}
                return LapCompleted(lap=body[0], next_lap=extra.get("nextLap"))
        elif name == "Start" and isinstance(body, Mapping):
            return CarStart(current_lap=body.get("currentLap"))
    return UnknownCarEvent(_kind_name(value))


def _parse_type(value: Any) -> EventType:
    if value == "RaceStart":
        return RaceStart()
    if isinstance(value, Mapping) and "CarEvent" in value:
        body = value["CarEvent"]
        if isinstance(body, Sequence) and not isinstance(body, str) and len(body) == 2:
            return CarEvent(car_number=str(body[0]), kind=_parse_car_kind(body[1]))
        raise TimelineError(f"malformed CarEvent payload: {body!r}")
    return UnknownEvent(_kind_name(value))


def parse_event_time(value: Any) -> int:
    if isinstance(value, bool):
        raise TimelineError(f"invalid event_time {value!r}")
    if isinstance(value, (int, float)):
        return max(0, int(value))
    if isinstance(value, str):
        ms = duration.from_string(value)
        if ms is not None:
            return ms
    raise TimelineError(f"invalid event_time {value!r}")


def parse_event(raw: Mapping[str, Any]) -> TimelineEvent:
    if "event_time" not in raw or "event_type" not in raw:
        raise TimelineError(f"timeline event missing event_time/event_type: {raw!r}")
    return TimelineEvent(
        event_time=parse_event_time(raw["event_time"]),
        event_type=_parse_type(raw["event_type"]),
        raw=copy.deepcopy(dict(raw)),
    )


def parse_events(raws: Iterable[Mapping[str, Any]]) -> List[TimelineEvent]:
    return [parse_event(r) for r in raws]


def _kind_to_wire(kind: CarEventKind) -> Any:
    if isinstance(kind, LapCompleted):
        if kind.next_lap is None:
            return {"LapCompleted": kind.lap}
        return {"LapCompleted": [kind.lap, {"nextLap": kind.next_lap}]}
    if isinstance(kind, CarStart):
        return {"Start": {"currentLap": kind.current_lap}}
    if isinstance(kind, UnknownCarEvent):
        return kind.name
    return type(kind).__name__


def _type_to_wire(event_type: EventType) -> Any:
    if isinstance(event_type, CarEvent):
        return {"CarEvent": [event_type.car_number, _kind_to_wire(event_type.kind)]}
    if isinstance(event_type, UnknownEvent):
        return event_type.name
    return "RaceStart"


# ---- Car update extraction ----
@functools.singledispatch
def _car_fields(kind) -> Optional[dict]:
    return None


@_car_fields.register(CarStart)
def _(kind: CarStart) -> Optional[dict]:
    if kind.current_lap is None:
        return None
    return {"currentLap": kind.current_lap}


@_car_fields.register(LapCompleted)
def _(kind: LapCompleted) -> Optional[dict]:
    next_lap = kind.next_lap if kind.next_lap is not None else kind.lap + 1
    return {"lastCompletedLap": kind.lap, "currentLap": next_lap}


@_car_fields.register(Retirement)
def _(kind: Retirement) -> Optional[dict]:
    return {"status": "Retired"}


@_car_fields.register(Checkered)
def _(kind: Checkered) -> Optional[dict]:
    return {"status": "Checkered"}


def extract_car_updates(event: TimelineEvent) -> List[dict]:
    """Sparse per-car updates carried by one event.

    Only the car named by the event is touched; race start and unknown
    kinds yield nothing.
    """
    event_type = event.event_type
    if not isinstance(event_type, CarEvent):
        return []
    fields = _car_fields(event_type.kind)
    if not fields:
        return []
    return [{"carNumber": event_type.car_number, **fields}]


# ---- Timeline from lap records ----
@dataclass(frozen=True)
class LapRecord:
    car_number: str
    lap: int
    elapsed: int  # ms since race start at the end of this lap
    time: Optional[int] = None
    sectors: tuple = ()
    driver: str = ""


_HOUR_MS = 60 * 60 * 1000


def _final_laps(laps: Iterable[LapRecord]) -> Dict[str, LapRecord]:
    final: Dict[str, LapRecord] = {}
    for lap in laps:
        prev = final.get(lap.car_number)
        if prev is None or lap.elapsed >= prev.elapsed:
            final[lap.car_number] = lap
    return final


def calc_time_limit(laps: Iterable[LapRecord]) -> int:
    """Race length: the latest final-lap elapsed time, floored to whole hours."""
    final = _final_laps(laps)
    if not final:
        return 0
    latest = max(lap.elapsed for lap in final.values())
    return (latest // _HOUR_MS) * _HOUR_MS


def calc_timeline_events(time_limit: int, laps: Sequence[LapRecord]) -> List[TimelineEvent]:
    """Race start, every lap completion, then retirement/checkered per car, time ordered."""
    events = [TimelineEvent(event_time=0, event_type=RaceStart())]
    for lap in laps:
        events.append(
            TimelineEvent(
                event_time=lap.elapsed,
                event_type=CarEvent(lap.car_number, LapCompleted(lap=lap.lap)),
            )
        )
    for car_number, last in _final_laps(laps).items():
        kind: CarEventKind = Retirement() if last.elapsed < time_limit else Checkered()
        events.append(TimelineEvent(event_time=last.elapsed, event_type=CarEvent(car_number, kind)))
    # sorted() is stable: lap completions stay ahead of the final event at the same time
    return sorted(events, key=lambda e: e.event_time)


__all__ = [
    "CarEvent",
    "CarStart",
    "Checkered",
    "LapCompleted",
    "LapRecord",
    "RaceStart",
    "Retirement",
    "TimelineError",
    "TimelineEvent",
    "UnknownCarEvent",
    "UnknownEvent",
    "calc_time_limit",
    "calc_timeline_events",
    "extract_car_updates",
    "parse_event",
    "parse_events",
]
