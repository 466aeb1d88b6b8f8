"""Loading of recorded races for replay.

A race file holds the race `name`, the `startingGrid` (or `preprocessed`
cars with `startPosition`) and the ordered `timelineEvents`. An optional
laps file (the raw per-lap rows of the same race) adds lap and sector
times to lap completion updates, and stands in for the timeline when the
race file has none.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import jsonschema

from live_timing.logging import get_logger
from ..core import duration
from ..core.timeline import (
    LapRecord,
    TimelineError,
    TimelineEvent,
    calc_time_limit,
    calc_timeline_events,
    parse_events,
)
from ..schemas import validation

_LOGGER = get_logger(__name__)


class RaceDataError(ValueError):
    pass


@dataclass
class RaceData:
    name: str
    starting_grid: List[str]
    events: List[TimelineEvent]
    laps: Dict[Tuple[str, int], LapRecord] = field(default_factory=dict)

    def lap_detail(self, car_number: str, lap: int) -> Optional[LapRecord]:
        return self.laps.get((car_number, lap))


def _read_json(path: Union[str, Path]) -> Any:
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise RaceDataError(f"cannot read {p}: {e}") from e
    except ValueError as e:
        raise RaceDataError(f"{p} is not valid JSON: {e}") from e


def _check(kind: str, payload: Any, source: str) -> None:
    try:
        validation.validate(kind, payload)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise RaceDataError(f"{source}: invalid {kind} at {where}: {e.message}") from e


def _ms(value: Any) -> Optional[int]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value:
        return duration.from_string(value)
    return None


def parse_laps(rows: List[dict]) -> List[LapRecord]:
    laps: List[LapRecord] = []
    for row in rows:
        elapsed = _ms(row.get("elapsed"))
        if elapsed is None:
            raise RaceDataError(f"lap row without usable elapsed time: {row!r}")
        sectors = tuple(_ms(row.get(k)) for k in ("s1", "s2", "s3"))
        laps.append(
            LapRecord(
                car_number=str(row["carNumber"]),
                lap=int(row["lapNumber"]),
                elapsed=elapsed,
                time=_ms(row.get("lapTime")),
                sectors=sectors if all(s is not None for s in sectors) else (),
                driver=row.get("driverName") or "",
            )
        )
    return laps


def _grid(data: dict) -> List[str]:
    if "startingGrid" in data:
        grid = []
        for item in data["startingGrid"]:
            car = item.get("car") if isinstance(item.get("car"), dict) else item
            grid.append(str(car["carNumber"]))
        return grid
    if "preprocessed" in data:
        cars = sorted(data["preprocessed"], key=lambda c: c["startPosition"])
        return [str(c["carNumber"]) for c in cars]
    raise RaceDataError("race file has neither startingGrid nor preprocessed cars")


def race_data_from_dict(data: dict, lap_rows: Optional[List[dict]] = None, source: str = "race data") -> RaceData:
    _check("race_data", data, source)
    rows = lap_rows if lap_rows is not None else data.get("laps") or []
    laps = parse_laps(rows)

    raw_events = data.get("timelineEvents", data.get("timeline_events"))
    try:
        if raw_events:
            events = parse_events(raw_events)
        elif laps:
            events = calc_timeline_events(calc_time_limit(laps), laps)
            _LOGGER.info("[replay] %s: derived %d timeline events from laps", source, len(events))
        else:
            raise RaceDataError(f"{source}: no timelineEvents and no laps to derive them from")
    except TimelineError as e:
        raise RaceDataError(f"{source}: {e}") from e

    for prev, cur in zip(events, events[1:]):
        if cur.event_time < prev.event_time:
            raise RaceDataError(
                f"{source}: timeline out of order at {duration.to_string(cur.event_time)}"
            )

    return RaceData(
        name=data["name"],
        starting_grid=_grid(data),
        events=events,
        laps={(lap.car_number, lap.lap): lap for lap in laps},
    )


def load_race_data(path: Union[str, Path], laps_path: Union[str, Path, None] = None) -> RaceData:
    _LOGGER.info("[replay] loading race data from %s", path)
    data = _read_json(path)
    lap_rows = None
    if laps_path is not None:
        if Path(laps_path).exists():
            _LOGGER.info("[replay] loading laps data from %s", laps_path)
            raw = _read_json(laps_path)
            _check("laps", raw, str(laps_path))
            lap_rows = raw["laps"] if isinstance(raw, dict) else raw
        else:
            _LOGGER.warning("[replay] laps file %s not found; continuing without it", laps_path)
    race = race_data_from_dict(data, lap_rows, source=str(path))
    _LOGGER.info(
        "[replay] race=%s grid=%d cars events=%d laps=%d",
        race.name,
        len(race.starting_grid),
        len(race.events),
        len(race.laps),
    )
    return race
