"""Procedural race-state deltas for sessions without a live feed.

`SnapshotGenerator.next_entries` is a pure step: previous entries plus
random draws in, next entries out. All draws are bounded so lap counts,
pit counts and best laps stay monotonic whatever the sequence.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.models import Entry, Gap, LapsGap, ParticipantStatus, TimeGap, Timing, TimingState


@dataclass(frozen=True)
class GeneratorConfig:
    base_lap_ms: int = 108_500
    # Pace differential per grid slot
    lap_step_ms: int = 300
    lap_variation_ms: int = 250
    class_pace_offset_ms: Dict[str, int] = field(default_factory=lambda: {"LMGT3": 13_000})
    sector_split: Tuple[float, float, float] = (0.30, 0.38, 0.32)
    sector_jitter_ms: int = 250
    pit_entry_probability: float = 0.01
    pit_exit_probability: float = 0.7
    gap_step_ms: int = 25_000
    gap_jitter_ms: int = 5_000
    tire_compounds: Tuple[str, ...] = ("SOFT", "MEDIUM", "HARD")


def laps_crossed(previous_seconds: float, current_seconds: float, average_lap_seconds: float) -> int:
    """Number of average-lap boundaries crossed between two race times."""
    return max(
        0,
        math.floor(current_seconds / average_lap_seconds)
        - math.floor(previous_seconds / average_lap_seconds),
    )


class SnapshotGenerator:
    def __init__(self, config: Optional[GeneratorConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or GeneratorConfig()
        self.rng = rng or random.Random()

    # ---- Per-entry draws ----
    def base_lap_time(self, index: int, entry: Entry) -> int:
        cfg = self.config
        return cfg.base_lap_ms + index * cfg.lap_step_ms + cfg.class_pace_offset_ms.get(entry.category, 0)

    def _lap_time(self, index: int, entry: Entry) -> int:
        bound = self.config.lap_variation_ms
        return int(round(self.base_lap_time(index, entry) + self.rng.uniform(-bound, bound)))

    def _sector_times(self, lap_ms: int) -> List[int]:
        jitter = self.config.sector_jitter_ms
        return [
            max(1, int(round(lap_ms * share + self.rng.uniform(-jitter, jitter))))
            for share in self.config.sector_split
        ]

    def _pit_transition(self, entry: Entry, now: float) -> Entry:
        cfg = self.config
        if not entry.in_pit:
            if self.rng.random() < cfg.pit_entry_probability:
                return replace(
                    entry,
                    in_pit=True,
                    stint_laps=0,
                    pit_stop_count=entry.pit_stop_count + 1,
                    last_pit_time=now,
                    last_pit_duration_ms=None,
                    tire_compound=self.rng.choice(cfg.tire_compounds),
                    status=ParticipantStatus.IN_BOX,
                )
            return replace(entry, stint_laps=entry.stint_laps + 1)
        if self.rng.random() < cfg.pit_exit_probability:
            entered = entry.last_pit_time if entry.last_pit_time is not None else now
            return replace(
                entry,
                in_pit=False,
                stint_laps=0,
                last_pit_duration_ms=int(round((now - entered) * 1000)),
                status=ParticipantStatus.ON_TRACK,
            )
        return replace(entry, stint_laps=0)

    def _timed(self, index: int, entry: Entry) -> Tuple[Entry, bool, List[bool]]:
        lap_ms = self._lap_time(index, entry)
        prior_best = entry.best_lap.milliseconds if entry.best_lap else None
        lap_pb = prior_best is None or lap_ms < prior_best
        best_ms = lap_ms if lap_pb else prior_best

        sector_ms = self._sector_times(lap_ms)
        best_sectors = list(entry.best_sectors) or [None] * len(sector_ms)  # type: ignore[list-item]
        sector_pb: List[bool] = []
        sectors: List[Timing] = []
        for i, ms in enumerate(sector_ms):
            improved = best_sectors[i] is None or ms < best_sectors[i]
            if improved:
                best_sectors[i] = ms
            sector_pb.append(improved)
            sectors.append(Timing(ms, TimingState.PERSONAL_BEST if improved else TimingState.NEUTRAL))

        updated = replace(
            entry,
            last_lap=Timing(lap_ms, TimingState.PERSONAL_BEST if lap_pb else TimingState.NEUTRAL),
            best_lap=Timing(best_ms, TimingState.PERSONAL_BEST if lap_pb else TimingState.NEUTRAL),
            sectors=sectors,
            best_sectors=best_sectors,
        )
        return updated, lap_pb, sector_pb

    # ---- Cross-entry passes ----
    def _assign_overall_best(
        self, previous: Sequence[Entry], entries: List[Entry], lap_pb: List[bool], sector_pb: List[List[bool]]
    ) -> None:
        prior_bests = [e.best_lap.milliseconds for e in previous if e.best_lap]
        prior_overall = min(prior_bests) if prior_bests else None
        overall = min(e.best_lap.milliseconds for e in entries if e.best_lap)
        holder = next(i for i, e in enumerate(entries) if e.best_lap and e.best_lap.milliseconds == overall)
        entries[holder] = replace(entries[holder], best_lap=Timing(overall, TimingState.OVERALL_BEST))
        if lap_pb[holder] and (prior_overall is None or overall < prior_overall):
            last = entries[holder].last_lap
            entries[holder] = replace(entries[holder], last_lap=Timing(last.milliseconds, TimingState.OVERALL_BEST))

        for s in range(len(self.config.sector_split)):
            prior = [e.best_sectors[s] for e in previous if len(e.best_sectors) > s and e.best_sectors[s] is not None]
            prior_min = min(prior) if prior else None
            current = min(e.best_sectors[s] for e in entries)
            if prior_min is not None and current >= prior_min:
                continue
            for i, e in enumerate(entries):
                if sector_pb[i][s] and e.sectors[s].milliseconds == current:
                    sectors = list(e.sectors)
                    sectors[s] = Timing(current, TimingState.OVERALL_BEST)
                    entries[i] = replace(e, sectors=sectors)
                    break

    def _rank(self, entries: List[Entry]) -> List[Entry]:
        # Stable: cars on the same lap keep their running order
        ordered = sorted(entries, key=lambda e: -e.complete_laps_count)
        class_counts: Dict[str, int] = {}
        ranked = []
        for pos, e in enumerate(ordered, start=1):
            class_counts[e.category] = class_counts.get(e.category, 0) + 1
            ranked.append(replace(e, position=pos, position_in_class=class_counts[e.category]))
        return ranked

    def _gap(self, ahead_laps: int, laps: int, same_lap_ms: int) -> Gap:
        diff = ahead_laps - laps
        if diff >= 1:
            return LapsGap(diff)
        return TimeGap(max(0, same_lap_ms))

    def _with_gaps(self, entries: List[Entry]) -> List[Entry]:
        cfg = self.config
        if not entries:
            return entries
        leader = entries[0]
        out = [replace(leader, gap_to_leader=TimeGap(0), interval=TimeGap(0))]
        for i in range(1, len(entries)):
            e = entries[i]
            to_leader = self._gap(
                leader.complete_laps_count,
                e.complete_laps_count,
                i * cfg.gap_step_ms + self.rng.randint(0, cfg.gap_jitter_ms),
            )
            ahead = out[i - 1]
            if isinstance(to_leader, TimeGap) and isinstance(ahead.gap_to_leader, TimeGap):
                same_lap = to_leader.milliseconds - ahead.gap_to_leader.milliseconds
            else:
                same_lap = self.rng.randint(0, cfg.gap_step_ms)
            interval = self._gap(ahead.complete_laps_count, e.complete_laps_count, same_lap)
            out.append(replace(e, gap_to_leader=to_leader, interval=interval))
        return out

    def next_entries(self, entries: Sequence[Entry], laps_completed: int = 0, now: float = 0.0) -> List[Entry]:
        """Produce the next tick's entries.

        `laps_completed` is the number of global lap boundaries crossed
        this tick; every car out of the pits completes that many laps.
        """
        if not entries:
            return []
        stepped: List[Entry] = []
        lap_pb: List[bool] = []
        sector_pb: List[List[bool]] = []
        for index, entry in enumerate(entries):
            e = self._pit_transition(entry, now)
            if laps_completed and not e.in_pit:
                e = replace(e, complete_laps_count=e.complete_laps_count + laps_completed)
            e, improved, sectors_improved = self._timed(index, e)
            stepped.append(e)
            lap_pb.append(improved)
            sector_pb.append(sectors_improved)
        self._assign_overall_best(entries, stepped, lap_pb, sector_pb)
        return self._with_gaps(self._rank(stepped))


__all__ = ["GeneratorConfig", "SnapshotGenerator", "laps_crossed"]
