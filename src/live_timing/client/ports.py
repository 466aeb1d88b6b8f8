"""Named channels between a consuming application and a ConnectionManager.

The application pushes commands into `connectLiveTiming` (with a URL)
and `disconnectLiveTiming`; every notification the manager emits comes
back on `liveTimingMessage` as a plain dict.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Tuple

from live_timing.logging import get_logger
from .connection import ConnectionManager, Notification

_LOGGER = get_logger(__name__)

CONNECT = "connectLiveTiming"
DISCONNECT = "disconnectLiveTiming"
MESSAGE = "liveTimingMessage"


class Ports:
    def __init__(self):
        self._commands: asyncio.Queue[Tuple[str, Any]] = asyncio.Queue()
        self.messages: asyncio.Queue[dict] = asyncio.Queue()

    def send(self, port: str, value: Any = None) -> None:
        """Application side: issue a command on an inbound port."""
        if port == CONNECT:
            if not isinstance(value, str) or not value:
                raise ValueError(f"{CONNECT} needs a URL, got {value!r}")
        elif port != DISCONNECT:
            raise ValueError(f"unknown port {port!r}")
        self._commands.put_nowait((port, value))

    def deliver(self, notification: Notification) -> None:
        """Manager side: pass as the manager's `notify` callback."""
        self.messages.put_nowait(notification.to_dict())

    async def receive(self) -> dict:
        return await self.messages.get()

    def manager(self, **kwargs: Any) -> ConnectionManager:
        return ConnectionManager(self.deliver, **kwargs)

    async def serve(self, manager: ConnectionManager, *, stop_after: Optional[int] = None) -> None:
        """Apply commands to `manager` one at a time until cancelled."""
        handled = 0
        while stop_after is None or handled < stop_after:
            port, value = await self._commands.get()
            _LOGGER.debug("[client] port %s %s", port, value or "")
            if port == CONNECT:
                await manager.connect(value)
            else:
                await manager.disconnect()
            handled += 1
