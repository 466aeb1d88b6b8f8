from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional

from live_timing.logging import get_logger
from ..broadcast.sink import BroadcastSink
from ..core.messages import snapshot_message
from ..core.models import SessionSnapshot
from .generator import SnapshotGenerator, laps_crossed

_LOGGER = get_logger(__name__)


class SessionStore:
    """In-memory sessions by id; the read side generators query every tick."""

    def __init__(self):
        self._sessions: Dict[str, SessionSnapshot] = {}

    def add(self, session: SessionSnapshot) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[SessionSnapshot]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[SessionSnapshot]:
        return self._sessions.pop(session_id, None)

    def ids(self) -> List[str]:
        return list(self._sessions)


class SimulatedSession:
    """The single generator task for one session.

    Owns the global lap counter and the accumulated race time; nothing
    else writes the session's entries. Subscribers coming and going do
    not affect the loop, only `stop()` ends it.
    """

    def __init__(
        self,
        session_id: str,
        store: SessionStore,
        sink: BroadcastSink,
        generator: Optional[SnapshotGenerator] = None,
        *,
        tick_interval: float = 1.0,
        average_lap_seconds: float = 110.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_id = session_id
        self.store = store
        self.sink = sink
        self.generator = generator or SnapshotGenerator()
        self.tick_interval = tick_interval
        self.average_lap_seconds = average_lap_seconds
        self._clock = clock
        self._sleep = sleep
        self._race_seconds = 0.0
        self._lap: Optional[int] = None
        self._ticks = 0
        self._skipped = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def race_seconds(self) -> float:
        return self._race_seconds

    @property
    def lap(self) -> Optional[int]:
        return self._lap

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def skipped(self) -> int:
        return self._skipped

    def tick(self) -> Optional[dict]:
        """Advance one tick and publish a full snapshot; None when the session is unknown."""
        session = self.store.get(self.session_id)
        if session is None:
            self._skipped += 1
            _LOGGER.debug("[sim] session=%s not found; skipping tick", self.session_id)
            return None
        if self._lap is None:
            self._lap = session.lap
        previous = self._race_seconds
        self._race_seconds += self.tick_interval
        crossed = laps_crossed(previous, self._race_seconds, self.average_lap_seconds)
        self._lap += crossed
        now = self._clock()
        session.entries = self.generator.next_entries(session.entries, crossed, now)
        session.lap = self._lap
        message = snapshot_message(session, now)
        self.sink.publish(self.session_id, message)
        self._ticks += 1
        return message

    async def run(self) -> None:
        _LOGGER.info(
            "[sim] session=%s started tick=%.2fs avg_lap=%.1fs",
            self.session_id,
            self.tick_interval,
            self.average_lap_seconds,
        )
        try:
            while True:
                await self._sleep(self.tick_interval)
                try:
                    self.tick()
                except Exception:
                    _LOGGER.exception("[sim] session=%s tick failed", self.session_id)
        finally:
            _LOGGER.info("[sim] session=%s stopped after %d ticks", self.session_id, self._ticks)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name=f"sim:{self.session_id}"
            )
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.wait([task])
