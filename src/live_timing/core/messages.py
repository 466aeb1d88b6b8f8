"""Streaming envelopes sent to viewer clients.

Every envelope carries `timestamp` (wall clock, ms), `raceTime` and
`newEvents`; a full snapshot carries `session`, a delta carries
`updatedCars`.
"""

from __future__ import annotations

import time
from typing import Iterable, List, Optional

from .models import SessionSnapshot

SNAPSHOT = "snapshot"
DELTA = "delta"


def now_ms() -> int:
    return int(time.time() * 1000)


def snapshot_message(session: SessionSnapshot, now: Optional[float] = None) -> dict:
    now = time.time() if now is None else now
    body = session.to_dict(now)
    return {
        "type": SNAPSHOT,
        "timestamp": int(now * 1000),
        "raceTime": body["timeElapsed"],
        "session": body,
        "newEvents": [],
    }


def delta_message(
    race_time: str,
    updated_cars: List[dict],
    new_events: Iterable[dict] = (),
    timestamp: Optional[int] = None,
    full: bool = False,
) -> dict:
    """Sparse update; `full` marks a delta that initializes client state (replay grid)."""
    return {
        "type": SNAPSHOT if full else DELTA,
        "timestamp": now_ms() if timestamp is None else timestamp,
        "raceTime": race_time,
        "updatedCars": updated_cars,
        "newEvents": list(new_events),
    }


def is_full(message: dict) -> bool:
    return message.get("type") == SNAPSHOT
