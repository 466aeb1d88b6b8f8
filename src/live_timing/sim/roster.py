"""Starting field for simulated sessions, taken from a WEC live timing sample."""

from __future__ import annotations

import time
from typing import List, Optional

from ..core.duration import from_string
from ..core.models import Driver, Entry, LapsGap, SessionSnapshot, TimeGap, Timing, TimingState

HYPERCAR = "HYPERCAR"
LMGT3 = "LMGT3"

# id, number, class, team, driver, laps, pit stops, best lap, sectors of best lap
_FIELD = [
    ("105427", "7", HYPERCAR, "Toyota Gazoo Racing", Driver("Kamui", "Kobayashi", "KOB", "JPN"), 152, 5, "1:51.517", ("36.156", "42.475", "35.594")),
    ("105443", "51", HYPERCAR, "Ferrari AF Corse", Driver("James", "Calado", "CAL", "GBR"), 152, 5, "1:52.612", ("35.748", "41.866", "35.169")),
    ("105426", "007", HYPERCAR, "Aston Martin THOR Team", Driver("Ross", "Gunn", "GUN", "GBR"), 152, 4, "1:52.176", ("35.958", "42.621", "35.828")),
    ("105442", "50", HYPERCAR, "Ferrari AF Corse", Driver("Antonio", "Fuoco", "FUO", "ITA"), 151, 6, "1:52.164", ("35.650", "42.150", "34.512")),
    ("105431", "6", HYPERCAR, "Porsche Penske Motorsport", Driver("Kevin", "Estre", "EST", "FRA"), 151, 5, "1:52.398", ("35.812", "42.304", "34.790")),
    ("105437", "8", HYPERCAR, "Toyota Gazoo Racing", Driver("Nyck", "de Vries", "DEV", "NLD"), 151, 5, "1:52.455", ("35.901", "42.277", "34.801")),
    ("105455", "92", LMGT3, "Manthey 1st Phorm", Driver("Laurens", "Vanthoor", "VAN", "BEL", "GOLD"), 140, 6, "2:05.132", ("40.512", "47.610", "37.010")),
    ("105458", "87", LMGT3, "Akkodis ASP Team", Driver("Jose Maria", "Lopez", "LOP", "ARG", "GOLD"), 140, 6, "2:05.488", ("40.634", "47.702", "37.152")),
]


def _ms(text: str) -> int:
    value = from_string(text)
    if value is None:
        raise ValueError(f"bad roster time {text!r}")
    return value


def default_entries() -> List[Entry]:
    entries: List[Entry] = []
    class_counts: dict = {}
    ordered = sorted(_FIELD, key=lambda row: -row[5])
    leader_laps = ordered[0][5]
    for pos, (eid, number, category, team, driver, laps, pits, best, sectors) in enumerate(ordered, start=1):
        class_counts[category] = class_counts.get(category, 0) + 1
        best_ms = _ms(best)
        sector_ms = [_ms(s) for s in sectors]
        entries.append(
            Entry(
                id=eid,
                number=number,
                category=category,
                team=team,
                driver=driver,
                position=pos,
                position_in_class=class_counts[category],
                complete_laps_count=laps,
                last_lap=Timing(best_ms),
                best_lap=Timing(best_ms),
                sectors=[Timing(ms) for ms in sector_ms],
                best_sectors=list(sector_ms),
                gap_to_leader=LapsGap(leader_laps - laps) if laps < leader_laps else TimeGap((pos - 1) * 25_000),
                interval=TimeGap(0),
                pit_stop_count=pits,
            )
        )
    return entries


def new_session(
    session_id: str,
    duration_seconds: int = 21600,
    starts_at: Optional[float] = None,
    lap: Optional[int] = None,
) -> SessionSnapshot:
    entries = default_entries()
    leader_best = min(e.best_lap.milliseconds for e in entries if e.best_lap)
    for e in entries:
        if e.best_lap and e.best_lap.milliseconds == leader_best:
            e.best_lap = Timing(leader_best, TimingState.OVERALL_BEST)
            break
    return SessionSnapshot(
        id=session_id,
        entries=entries,
        # Joined mid-race: leader laps at roughly 115s each
        starts_at=time.time() - entries[0].complete_laps_count * 115.0 if starts_at is None else starts_at,
        duration_seconds=duration_seconds,
        lap=entries[0].complete_laps_count if lap is None else lap,
    )
