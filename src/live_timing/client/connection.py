"""Client connection to a live timing stream.

`ConnectionManager` owns one websocket at a time: it opens it, turns
every frame and lifecycle change into a notification for the consuming
application, and reconnects with exponential backoff after unclean
closures. A closure is clean when the closing handshake completed in
both directions, whatever the close code; a dropped transport, a failed
connect or a close frame that was never answered is unclean. Notifications are plain dataclasses with a `type` tag
(`connected`, `data`, `error`, `disconnected`).
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from live_timing.logging import get_logger

_LOGGER = get_logger(__name__)

NORMAL_CLOSURE = 1000
NO_STATUS = 1005
ABNORMAL_CLOSURE = 1006

MAX_RECONNECT_ATTEMPTS = 10
INITIAL_RECONNECT_DELAY_MS = 1000


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"


class NotConnectedError(RuntimeError):
    pass


@dataclass(frozen=True)
class Connected:
    timestamp: int
    type: str = field(default="connected", init=False)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Data:
    payload: Any
    timestamp: int
    type: str = field(default="data", init=False)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Error:
    reason: str
    timestamp: int
    type: str = field(default="error", init=False)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Disconnected:
    code: int
    reason: str
    timestamp: int
    type: str = field(default="disconnected", init=False)

    def to_dict(self) -> dict:
        return asdict(self)


Notification = Union[Connected, Data, Error, Disconnected]

PARSE_ERROR = "Failed to parse message"
TRANSPORT_ERROR = "Connection error"


def reconnect_delay_ms(attempt: int, initial_delay_ms: int = INITIAL_RECONNECT_DELAY_MS) -> int:
    """Backoff before retry number `attempt` (0-based). No cap, no jitter."""
    return initial_delay_ms * 2**attempt


def _close_details(exc: Optional[ConnectionClosed], ws: Any) -> Tuple[int, str]:
    rcvd = getattr(exc, "rcvd", None) if exc is not None else None
    if rcvd is not None:
        return rcvd.code, rcvd.reason
    code = getattr(ws, "close_code", None)
    if code is None:
        return (ABNORMAL_CLOSURE if exc is not None else NO_STATUS), ""
    return code, getattr(ws, "close_reason", None) or ""


class ConnectionManager:
    def __init__(
        self,
        notify: Callable[[Notification], None],
        *,
        connector: Optional[Callable[[str], Any]] = None,
        call_later: Optional[Callable[..., asyncio.TimerHandle]] = None,
        clock_ms: Optional[Callable[[], int]] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        initial_reconnect_delay_ms: int = INITIAL_RECONNECT_DELAY_MS,
    ):
        self._notify = notify
        self._connector = connector or websockets.connect
        self._call_later = call_later
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.max_reconnect_attempts = max_reconnect_attempts
        self.initial_reconnect_delay_ms = initial_reconnect_delay_ms

        self._state = ConnectionState.IDLE
        self._url: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._connection: Any = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._attempts = 0
        # Bumped by every connect/disconnect; stale tasks and timers compare against it
        self._generation = 0
        self._close_reason = "Client disconnected"

    # ---- Read-only state ----
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    # ---- Commands ----
    async def connect(self, url: str) -> None:
        """Open `url`, closing any current connection first without reconnecting it."""
        self._cancel_timer()
        previous = self._supersede("Superseded by new connection")
        token = self._generation
        await self._wait_finished(previous)
        if token != self._generation:
            return
        self._open(url)

    async def disconnect(self) -> None:
        """Deliberate shutdown: no reconnection until the next `connect`."""
        _LOGGER.info("[client] manually disconnecting")
        self._cancel_timer()
        self._attempts = 0
        previous = self._supersede("Client disconnected")
        token = self._generation
        await self._wait_finished(previous)
        if token == self._generation:
            self._state = ConnectionState.IDLE

    async def send(self, payload: Any) -> None:
        """Forward an application command to the server as a JSON text frame."""
        ws = self._connection
        if ws is None or self._state is not ConnectionState.OPEN:
            raise NotConnectedError("Not connected")
        await ws.send(json.dumps(payload))

    # ---- Internals ----
    def _emit(self, notification: Notification) -> None:
        try:
            self._notify(notification)
        except Exception:
            _LOGGER.exception("[client] notification handler failed for %s", notification.type)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _supersede(self, reason: str) -> Optional[asyncio.Task]:
        self._generation += 1
        task, self._task = self._task, None
        if task is None or task.done():
            return None
        self._state = ConnectionState.CLOSING
        self._close_reason = reason
        task.cancel()
        self._emit(Disconnected(NORMAL_CLOSURE, reason, self._clock_ms()))
        return task

    async def _wait_finished(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait([task])

    def _schedule(self, delay_s: float, callback: Callable[..., None], *args: Any) -> asyncio.TimerHandle:
        call_later = self._call_later or asyncio.get_running_loop().call_later
        return call_later(delay_s, callback, *args)

    def _open(self, url: str) -> None:
        self._url = url
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(
            self._run(url, self._generation), name="live-timing-connection"
        )

    def _reconnect(self, url: str, generation: int) -> None:
        self._timer = None
        if generation != self._generation:
            return
        self._open(url)

    async def _run(self, url: str, generation: int) -> None:
        _LOGGER.info("[client] connecting to %s", url)
        try:
            ws = await self._connector(url)
        except asyncio.CancelledError:
            raise
        except (InvalidURI, ValueError) as e:
            # Caller configuration fault: report once, never retry
            _LOGGER.error("[client] failed to create connection to %s: %s", url, e)
            if generation == self._generation:
                self._task = None
                self._state = ConnectionState.IDLE
                self._emit(Error(f"Failed to create connection: {e}", self._clock_ms()))
            return
        except (OSError, asyncio.TimeoutError, InvalidHandshake) as e:
            _LOGGER.warning("[client] connection to %s failed: %s", url, e)
            self._failed(url, generation, e)
            return
        except Exception as e:
            _LOGGER.exception("[client] unexpected failure connecting to %s", url)
            self._failed(url, generation, e)
            return

        self._connection = ws
        try:
            self._state = ConnectionState.OPEN
            self._attempts = 0
            _LOGGER.info("[client] connected %s", url)
            self._emit(Connected(self._clock_ms()))
            code, reason, clean = await self._pump(ws)
        except asyncio.CancelledError:
            await self._close_quietly(ws)
            raise
        except Exception as e:
            _LOGGER.exception("[client] connection to %s failed while open", url)
            await self._close_quietly(ws)
            self._failed(url, generation, e)
            return
        finally:
            if self._connection is ws:
                self._connection = None
        self._closed(url, generation, code, reason, clean)

    async def _pump(self, ws: Any) -> Tuple[int, str, bool]:
        """Deliver frames until the socket closes; returns (code, reason, clean)."""
        try:
            async for raw in ws:
                self._on_frame(raw)
        except ConnectionClosed as e:
            code, reason = _close_details(e, ws)
            # Clean only if close frames went both ways
            clean = e.rcvd is not None and e.sent is not None
            if not clean:
                _LOGGER.warning("[client] transport error: %s", e)
                self._emit(Error(TRANSPORT_ERROR, self._clock_ms()))
            return code, reason, clean
        code, reason = _close_details(None, ws)
        return code, reason, code != ABNORMAL_CLOSURE

    def _on_frame(self, raw: Union[str, bytes]) -> None:
        received = self._clock_ms()
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            _LOGGER.error("[client] failed to parse message: %s", e)
            self._emit(Error(PARSE_ERROR, received))
            return
        self._emit(Data(payload, received))

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close(code=NORMAL_CLOSURE, reason=self._close_reason)
        except (ConnectionClosed, OSError) as e:
            _LOGGER.debug("[client] close after shutdown failed: %s", e)

    def _failed(self, url: str, generation: int, exc: BaseException) -> None:
        if generation == self._generation:
            self._emit(Error(TRANSPORT_ERROR, self._clock_ms()))
        self._closed(url, generation, ABNORMAL_CLOSURE, str(exc), clean=False)

    def _closed(self, url: str, generation: int, code: int, reason: str, clean: bool) -> None:
        if generation != self._generation:
            return  # superseded; the command already reported the closure
        self._task = None
        _LOGGER.info("[client] disconnected (code: %s, reason: %s)", code, reason)
        self._emit(Disconnected(code, reason, self._clock_ms()))
        if clean:
            self._state = ConnectionState.IDLE
            return
        if self._attempts >= self.max_reconnect_attempts:
            self._state = ConnectionState.IDLE
            _LOGGER.warning("[client] giving up after %d reconnect attempts", self._attempts)
            return
        delay_ms = reconnect_delay_ms(self._attempts, self.initial_reconnect_delay_ms)
        self._attempts += 1
        self._state = ConnectionState.RECONNECTING
        _LOGGER.info(
            "[client] reconnecting in %dms (attempt %d/%d)",
            delay_ms,
            self._attempts,
            self.max_reconnect_attempts,
        )
        self._timer = self._schedule(delay_ms / 1000.0, self._reconnect, url, generation)
