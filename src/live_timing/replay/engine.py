"""Timed replay of a recorded race log.

Each call to `ReplayEngine.messages()` is an independent playback with
its own position in the log, so clients attaching at different times
each see the race from the start. Playback never loops: after the last
event the iterator ends.
"""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable, List, Sequence

from live_timing.logging import get_logger
from ..broadcast.sink import BroadcastSink
from ..core import duration
from ..core.messages import delta_message, now_ms
from ..core.timeline import CarEvent, LapCompleted, TimelineEvent, extract_car_updates
from .race_data import RaceData

_LOGGER = get_logger(__name__)

DEFAULT_MIN_INTERVAL_MS = 100


def schedule_offsets(
    events: Sequence[TimelineEvent], speed: float, min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS
) -> List[float]:
    """Due time of each event, in ms after playback start.

    Event i is due at (t[i] - t[0]) / speed, but never sooner than
    `min_interval_ms` after event i-1. The first event is due at once.
    """
    if speed <= 0:
        raise ValueError(f"speed must be > 0, got {speed}")
    if not events:
        return []
    start = events[0].event_time
    due = [0.0]
    for event in events[1:]:
        due.append(max((event.event_time - start) / speed, due[-1] + min_interval_ms))
    return due


class ReplayEngine:
    def __init__(
        self,
        race: RaceData,
        speed: float = 10.0,
        min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        wall_clock_ms: Callable[[], int] = now_ms,
    ):
        if not race.events:
            raise ValueError("race has no timeline events")
        self.race = race
        self.speed = speed
        self.min_interval_ms = min_interval_ms
        self.offsets = schedule_offsets(race.events, speed, min_interval_ms)
        self._clock = clock
        self._sleep = sleep
        self._wall_clock_ms = wall_clock_ms

    def initial_message(self) -> dict:
        """Race start plus the synthesized starting grid; initializes client state."""
        start = self.race.events[0]
        grid = [
            {
                "carNumber": number,
                "position": index + 1,
                "gap": None,
                "interval": None,
                "inPit": False,
            }
            for index, number in enumerate(self.race.starting_grid)
        ]
        return delta_message(
            duration.to_string(start.event_time),
            grid,
            [start.to_dict()],
            timestamp=self._wall_clock_ms(),
            full=True,
        )

    def car_updates(self, event: TimelineEvent) -> List[dict]:
        updates = extract_car_updates(event)
        event_type = event.event_type
        if updates and isinstance(event_type, CarEvent) and isinstance(event_type.kind, LapCompleted):
            lap = self.race.lap_detail(event_type.car_number, event_type.kind.lap)
            if lap is not None:
                detail = updates[0]
                if lap.time is not None:
                    detail["lastLapTime"] = duration.to_string(lap.time)
                for n, sector in enumerate(lap.sectors, start=1):
                    detail[f"sector{n}"] = duration.to_string(sector)
                if lap.driver:
                    detail["driver"] = lap.driver
        return updates

    def message_for(self, index: int) -> dict:
        if index == 0:
            return self.initial_message()
        event = self.race.events[index]
        msg = delta_message(
            duration.to_string(event.event_time),
            self.car_updates(event),
            [event.to_dict()],
            timestamp=self._wall_clock_ms(),
        )
        msg["raceTimeMs"] = event.event_time
        return msg

    async def messages(self) -> AsyncIterator[dict]:
        started = self._clock()
        total = len(self.race.events)
        for index in range(total):
            delay = started + self.offsets[index] / 1000.0 - self._clock()
            if delay > 0:
                await self._sleep(delay)
            _LOGGER.debug(
                "[replay] event %d/%d at %s",
                index + 1,
                total,
                duration.to_string(self.race.events[index].event_time),
            )
            yield self.message_for(index)
        _LOGGER.info("[replay] race=%s finished, all %d events sent", self.race.name, total)

    async def play(self, sink: BroadcastSink, channel: str) -> int:
        """Publish one playback into `channel`; returns the number of messages sent."""
        sent = 0
        async for message in self.messages():
            sink.publish(channel, message)
            sent += 1
        return sent
