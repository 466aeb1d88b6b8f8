"""Race state entities shared by the simulator, the replay engine and the server.

Wire projections (`to_dict`) use the camelCase field names of the
live timing API consumed by viewer clients.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from .duration import format_race_time


class TimingState(str, Enum):
    NEUTRAL = "Neutral"
    PERSONAL_BEST = "PersonalBest"
    OVERALL_BEST = "OverallBest"
    INVALID = "Invalid"


class FlagType(str, Enum):
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"
    SAFETY_CAR = "SafetyCar"
    VIRTUAL_SAFETY_CAR = "VirtualSafetyCar"


class ParticipantStatus(str, Enum):
    ON_TRACK = "OnTrack"
    IN_BOX = "InBox"
    STOPPED_ON_TRACK = "StoppedOnTrack"


@dataclass(frozen=True)
class Driver:
    first_name: str
    last_name: str
    short_name: str = ""
    country_code: str = ""
    category: str = "PLATINUM"

    def to_dict(self) -> dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "shortName": self.short_name or f"{self.first_name[:1]}. {self.last_name}",
            "countryCode": self.country_code,
            "category": self.category,
        }


@dataclass(frozen=True)
class Timing:
    milliseconds: int
    state: TimingState = TimingState.NEUTRAL

    def to_dict(self) -> dict:
        return {"timeMilliseconds": self.milliseconds, "state": self.state.value}


@dataclass(frozen=True)
class LapsGap:
    """Trailing by whole laps."""

    lap_difference: int

    def __post_init__(self):
        if self.lap_difference < 1:
            raise ValueError(f"lap difference must be >= 1, got {self.lap_difference}")

    def to_dict(self) -> dict:
        return {"type": "Laps", "lapDifference": self.lap_difference, "timeMilliseconds": None}


@dataclass(frozen=True)
class TimeGap:
    """Trailing on the same lap; the leader carries TimeGap(0)."""

    milliseconds: int = 0

    def __post_init__(self):
        if self.milliseconds < 0:
            raise ValueError(f"time gap must be >= 0, got {self.milliseconds}")

    def to_dict(self) -> dict:
        return {"type": "InLapTiming", "lapDifference": None, "timeMilliseconds": self.milliseconds}


Gap = Union[LapsGap, TimeGap]


@dataclass
class Entry:
    id: str
    number: str
    category: str
    team: str
    driver: Driver
    position: int
    position_in_class: int
    complete_laps_count: int = 0
    stint_laps: int = 0
    last_lap: Optional[Timing] = None
    best_lap: Optional[Timing] = None
    sectors: List[Timing] = field(default_factory=list)
    # Per-sector personal bests, same order as `sectors`
    best_sectors: List[int] = field(default_factory=list)
    gap_to_leader: Gap = field(default_factory=TimeGap)
    interval: Gap = field(default_factory=TimeGap)
    in_pit: bool = False
    pit_stop_count: int = 0
    last_pit_time: Optional[float] = None
    last_pit_duration_ms: Optional[int] = None
    tire_compound: str = "MEDIUM"
    status: ParticipantStatus = ParticipantStatus.ON_TRACK

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "category": self.category,
            "team": self.team,
            "driver": self.driver.to_dict(),
            "position": self.position,
            "positionInCategory": self.position_in_class,
            "completeLapsCount": self.complete_laps_count,
            "stintLaps": self.stint_laps,
            "lastLap": self.last_lap.to_dict() if self.last_lap else None,
            "bestLap": self.best_lap.to_dict() if self.best_lap else None,
            "lastCompletedSectors": [
                {"lapTime": s.milliseconds, "state": s.state.value} for s in self.sectors
            ],
            "previousParticipantGap": self.interval.to_dict(),
            "leaderGap": self.gap_to_leader.to_dict(),
            "inPit": self.in_pit,
            "pitStopCount": self.pit_stop_count,
            "lastPitTime": self.last_pit_time,
            "lastPitDurationMs": self.last_pit_duration_ms,
            "tireCompound": self.tire_compound,
            "status": self.status.value,
        }


@dataclass
class Weather:
    ambient_celsius: float = 25.9
    track_celsius: float = 27.0
    humidity_percent: int = 61

    def to_dict(self) -> dict:
        return {
            "ambientTemperatureEx": {"celsiusDegrees": self.ambient_celsius},
            "trackTemperatureEx": {"celsiusDegrees": self.track_celsius},
            "humidityPercent": self.humidity_percent,
        }


@dataclass
class SessionSnapshot:
    """One race session. Created once, mutated in place by a single generator.

    Elapsed and remaining time are never stored; they are derived from the
    fixed start timestamp and duration on every read.
    """

    id: str
    entries: List[Entry]
    starts_at: float
    duration_seconds: int
    lap: int = 0
    chrono_type: str = "RACE"
    flag: FlagType = FlagType.GREEN
    is_running: bool = True
    closed: bool = False
    weather: Weather = field(default_factory=Weather)
    sector_flags: Dict[int, FlagType] = field(default_factory=dict)

    def elapsed_seconds(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return min(max(0.0, now - self.starts_at), float(self.duration_seconds))

    def remaining_seconds(self, now: Optional[float] = None) -> float:
        return self.duration_seconds - self.elapsed_seconds(now)

    def to_dict(self, now: Optional[float] = None) -> dict:
        now = time.time() if now is None else now
        return {
            "id": self.id,
            "chronoType": self.chrono_type,
            "laps": self.lap,
            "timeElapsed": format_race_time(self.elapsed_seconds(now)),
            "timeRemaining": format_race_time(self.remaining_seconds(now)),
            "participants": [e.to_dict() for e in self.entries],
            "weather": self.weather.to_dict(),
            "closed": self.closed,
            "liveStatus": {
                "currentFlag": {"type": self.flag.value},
                "isSessionRunning": self.is_running,
                "sessionStartTime": self.starts_at * 1000,
                "finalDurationSeconds": self.duration_seconds,
            },
            "sectorFlags": [
                {"sector": sector, "type": flag.value}
                for sector, flag in sorted(self.sector_flags.items())
            ],
            "startsAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.starts_at)),
            "duration": self.duration_seconds,
        }
