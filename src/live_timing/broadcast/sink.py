"""Fan-out of session messages to every subscribed output channel.

Producers (simulated sessions, replays) publish; transports subscribe.
Per channel, messages reach each subscriber in publish order. A new
subscriber starts from a full snapshot: the cached latest one when no
delta followed it, otherwise the next one published.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

from live_timing.logging import get_logger
from ..core.messages import is_full

_LOGGER = get_logger(__name__)

_CLOSED = object()


class Subscription:
    def __init__(self, sink: "BroadcastSink", channel: str, max_pending: Optional[int]):
        self.channel = channel
        # None means the backlog is never dropped
        self.max_pending = max_pending
        self._sink = sink
        self._queue: asyncio.Queue = asyncio.Queue()
        self.needs_snapshot = True
        self.closed = False
        self.delivered = 0

    def _offer(self, message: dict) -> bool:
        if self.closed:
            return False
        if self.max_pending is not None and self._queue.qsize() >= self.max_pending:
            # Slow consumer: drop the backlog and resync from the next snapshot
            while not self._queue.empty():
                self._queue.get_nowait()
            self.needs_snapshot = True
            _LOGGER.warning("[sink] channel=%s subscriber overflow; resync on next snapshot", self.channel)
        if self.needs_snapshot and not is_full(message):
            return False
        self.needs_snapshot = False
        self._queue.put_nowait(message)
        self.delivered += 1
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[dict]:
        """Next message, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        self._sink.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class BroadcastSink:
    def __init__(self, max_pending: int = 256):
        self.max_pending = max_pending
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._latest: Dict[str, dict] = {}

    def subscribe(self, channel: str, *, lossless: bool = False) -> Subscription:
        """Attach to `channel`.

        A `lossless` subscriber is never resynced: its backlog grows until
        drained. Use it for producers that only serve that one subscriber,
        where dropping a delta would lose data no later snapshot restores.
        """
        sub = Subscription(self, channel, None if lossless else self.max_pending)
        self._subscribers.setdefault(channel, set()).add(sub)
        latest = self._latest.get(channel)
        if latest is not None:
            sub._offer(latest)
        _LOGGER.debug("[sink] subscribe channel=%s subscribers=%d", channel, self.subscriber_count(channel))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub.closed:
            return
        sub.closed = True
        subs = self._subscribers.get(sub.channel)
        if subs is not None:
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.channel]
        sub._queue.put_nowait(_CLOSED)
        _LOGGER.debug("[sink] unsubscribe channel=%s subscribers=%d", sub.channel, self.subscriber_count(sub.channel))

    def publish(self, channel: str, message: dict) -> int:
        """Deliver to every subscriber of `channel`; returns how many accepted it."""
        if is_full(message):
            self._latest[channel] = message
        else:
            # Cached snapshot is stale once a delta follows it
            self._latest.pop(channel, None)
        delivered = 0
        for sub in list(self._subscribers.get(channel, ())):
            if sub._offer(message):
                delivered += 1
        return delivered

    def latest_snapshot(self, channel: str) -> Optional[dict]:
        return self._latest.get(channel)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def forget(self, channel: str) -> None:
        """Drop cached state for a channel that will not publish again."""
        self._latest.pop(channel, None)
