import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidURI
from websockets.frames import Close

from live_timing.client.connection import (
    ConnectionManager,
    ConnectionState,
    Connected,
    Data,
    Disconnected,
    Error,
    NotConnectedError,
    reconnect_delay_ms,
)
from live_timing.client.ports import CONNECT, DISCONNECT, Ports

pytestmark = pytest.mark.asyncio

URL = "ws://localhost:8080"
_END = object()


class FakeSocket:
    def __init__(self, *frames, close_code=1000, close_reason=""):
        self._frames = asyncio.Queue()
        for frame in frames:
            self._frames.put_nowait(frame)
        self._final = (close_code, close_reason)
        self.close_code = None
        self.close_reason = None
        self.sent = []
        self.closed_with = None

    def feed(self, frame):
        self._frames.put_nowait(frame)

    def end(self, code=None, reason=None):
        if code is not None:
            self._final = (code, reason or "")
        self._frames.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if item is _END:
            self.close_code, self.close_reason = self._final
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data):
        self.sent.append(data)

    async def close(self, code=1000, reason=""):
        self.closed_with = (code, reason)
        self.close_code, self.close_reason = code, reason


class FakeConnector:
    """Hands out scripted outcomes; a socket or an exception per attempt."""

    def __init__(self, *outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeHandle:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback, *args):
        handle = FakeHandle(delay, callback, args)
        self.handles.append(handle)
        return handle

    def fire(self):
        handle = self.handles[-1]
        handle.callback(*handle.args)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


def _manager(connector, timers, received, **kwargs):
    return ConnectionManager(received.append, connector=connector, call_later=timers, clock_ms=lambda: 123, **kwargs)


def _types(received):
    return [n.type for n in received]


async def test_backoff_doubles_and_gives_up_after_ten_retries():
    timers, received = FakeTimers(), []
    manager = _manager(FakeConnector(default=OSError("refused")), timers, received)
    await manager.connect(URL)
    await settle()
    for _ in range(10):
        timers.fire()
        await settle()
    assert [h.delay for h in timers.handles] == [reconnect_delay_ms(n) / 1000 for n in range(10)]
    assert timers.handles[-1].delay == 512.0
    disconnects = [n for n in received if isinstance(n, Disconnected)]
    assert len(disconnects) == 11
    assert {d.code for d in disconnects} == {1006}
    assert manager.state is ConnectionState.IDLE
    assert manager.attempts == 10
    assert not manager.reconnect_pending


async def test_frames_become_notifications():
    timers, received = FakeTimers(), []
    sock = FakeSocket('{"type": "delta", "raceTime": "1.000"}', "not json", b'{"n": 2}')
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    assert manager.state is ConnectionState.OPEN
    sock.end(1000, "bye")
    await settle()

    assert _types(received) == ["connected", "data", "error", "data", "disconnected"]
    assert received[1] == Data({"type": "delta", "raceTime": "1.000"}, 123)
    assert received[2] == Error("Failed to parse message", 123)
    assert received[3].payload == {"n": 2}
    assert received[4] == Disconnected(1000, "bye", 123)
    # Clean closure: nothing scheduled
    assert timers.handles == []
    assert manager.state is ConnectionState.IDLE


async def test_notification_dicts_are_tagged():
    assert Connected(5).to_dict() == {"timestamp": 5, "type": "connected"}
    assert Disconnected(1006, "", 5).to_dict() == {"code": 1006, "reason": "", "timestamp": 5, "type": "disconnected"}


async def test_unclean_close_reconnects_and_resets_attempts():
    timers, received = FakeTimers(), []
    first, second = FakeSocket(), FakeSocket()
    manager = _manager(FakeConnector(first, second), timers, received)
    await manager.connect(URL)
    await settle()
    first.end(1006)
    await settle()
    assert manager.state is ConnectionState.RECONNECTING
    assert manager.attempts == 1
    assert timers.handles[-1].delay == 1.0

    timers.fire()
    await settle()
    assert manager.state is ConnectionState.OPEN
    assert manager.attempts == 0
    assert _types(received) == ["connected", "disconnected", "connected"]
    await manager.disconnect()


async def test_transport_error_reports_then_closes():
    timers, received = FakeTimers(), []
    sock = FakeSocket(ConnectionClosedError(None, None))
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    assert _types(received) == ["connected", "error", "disconnected"]
    assert received[1].reason == "Connection error"
    assert received[2].code == 1006
    assert len(timers.handles) == 1


async def test_disconnect_never_reconnects():
    timers, received = FakeTimers(), []
    sock = FakeSocket()
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    await manager.disconnect()
    await settle()
    assert sock.closed_with == (1000, "Client disconnected")
    assert received[-1] == Disconnected(1000, "Client disconnected", 123)
    assert _types(received).count("disconnected") == 1
    assert timers.handles == []
    assert manager.state is ConnectionState.IDLE


async def test_disconnect_cancels_pending_retry():
    timers, received = FakeTimers(), []
    sock = FakeSocket()
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    sock.end(1006)
    await settle()
    pending = timers.handles[-1]
    await manager.disconnect()
    assert pending.cancelled
    assert manager.attempts == 0
    assert manager.state is ConnectionState.IDLE
    # A stale timer firing anyway does nothing
    pending.callback(*pending.args)
    await settle()
    assert _types(received) == ["connected", "disconnected"]


async def test_connect_supersedes_existing_connection():
    timers, received = FakeTimers(), []
    old, new = FakeSocket(), FakeSocket()
    connector = FakeConnector(old, new)
    manager = _manager(connector, timers, received)
    await manager.connect(URL)
    await settle()
    await manager.connect("ws://localhost:9090")
    await settle()
    assert connector.urls == [URL, "ws://localhost:9090"]
    assert old.closed_with == (1000, "Superseded by new connection")
    assert _types(received) == ["connected", "disconnected", "connected"]
    assert received[1].code == 1000
    assert manager.url == "ws://localhost:9090"
    assert timers.handles == []
    await manager.disconnect()


async def test_invalid_address_is_not_retried():
    timers, received = FakeTimers(), []
    manager = _manager(FakeConnector(InvalidURI("http//oops", "isn't a valid URI")), timers, received)
    await manager.connect("http//oops")
    await settle()
    assert _types(received) == ["error"]
    assert received[0].reason.startswith("Failed to create connection")
    assert timers.handles == []
    assert manager.state is ConnectionState.IDLE


async def test_send_requires_open_connection():
    timers, received = FakeTimers(), []
    sock = FakeSocket()
    manager = _manager(FakeConnector(sock), timers, received)
    with pytest.raises(NotConnectedError):
        await manager.send({"cmd": "pause"})
    await manager.connect(URL)
    await settle()
    await manager.send({"cmd": "pause"})
    assert json.loads(sock.sent[0]) == {"cmd": "pause"}
    await manager.disconnect()


async def test_handler_failure_does_not_break_manager():
    timers = FakeTimers()
    seen = []

    def notify(notification):
        seen.append(notification.type)
        raise RuntimeError("consumer bug")

    sock = FakeSocket('{"a": 1}')
    manager = ConnectionManager(notify, connector=FakeConnector(sock), call_later=timers)
    await manager.connect(URL)
    await settle()
    assert seen == ["connected", "data"]
    assert manager.state is ConnectionState.OPEN
    await manager.disconnect()


async def test_ports_bridge_commands_and_notifications():
    timers = FakeTimers()
    ports = Ports()
    manager = ports.manager(connector=FakeConnector(FakeSocket()), call_later=timers, clock_ms=lambda: 1)

    ports.send(CONNECT, URL)
    await ports.serve(manager, stop_after=1)
    await settle()
    assert await ports.receive() == {"timestamp": 1, "type": "connected"}

    ports.send(DISCONNECT)
    await ports.serve(manager, stop_after=1)
    assert await ports.receive() == {"code": 1000, "reason": "Client disconnected", "timestamp": 1, "type": "disconnected"}


async def test_ports_reject_bad_commands():
    ports = Ports()
    with pytest.raises(ValueError):
        ports.send("somethingElse")
    with pytest.raises(ValueError):
        ports.send(CONNECT)


async def test_completed_close_handshake_is_clean_whatever_the_code():
    timers, received = FakeTimers(), []
    close = Close(1011, "No race data loaded")
    sock = FakeSocket(ConnectionClosedError(close, close, True))
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    assert _types(received) == ["connected", "disconnected"]
    assert received[1] == Disconnected(1011, "No race data loaded", 123)
    assert timers.handles == []
    assert manager.state is ConnectionState.IDLE


async def test_close_frame_without_reply_is_retried():
    timers, received = FakeTimers(), []
    sock = FakeSocket(ConnectionClosedError(Close(1011, "internal"), None))
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    assert _types(received) == ["connected", "error", "disconnected"]
    assert received[2].code == 1011
    assert manager.state is ConnectionState.RECONNECTING
    assert len(timers.handles) == 1


async def test_unexpected_connector_failure_is_reported_and_retried():
    timers, received = FakeTimers(), []
    manager = _manager(FakeConnector(RuntimeError("loop torn down"), FakeSocket()), timers, received)
    await manager.connect(URL)
    await settle()
    assert _types(received) == ["error", "disconnected"]
    assert received[0].reason == "Connection error"
    assert received[1].code == 1006
    assert manager.state is ConnectionState.RECONNECTING

    timers.fire()
    await settle()
    assert manager.state is ConnectionState.OPEN
    await manager.disconnect()


async def test_unexpected_failure_while_open_closes_socket_and_retries():
    timers, received = FakeTimers(), []
    sock = FakeSocket(RuntimeError("decoder exploded"))
    manager = _manager(FakeConnector(sock), timers, received)
    await manager.connect(URL)
    await settle()
    assert _types(received) == ["connected", "error", "disconnected"]
    assert received[2].code == 1006
    assert sock.closed_with is not None
    assert manager.state is ConnectionState.RECONNECTING
    assert len(timers.handles) == 1
