"""HTTP and websocket surface for simulated sessions and race replays.

Endpoints:
    GET /health                -> {"status": "ok", "sessions": [...], "replay": bool}
    GET /sessions              -> {"sessions": [id, ...]}
    GET /sessions/{id}         -> current session snapshot (404 when unknown)
    WS  /sessions/{id}/live    -> full snapshot per simulation tick
    WS  / and /replay          -> independent replay of the loaded race per client
"""

from __future__ import annotations

import asyncio
import random
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from live_timing.logging import get_logger
from ..broadcast.sink import BroadcastSink
from ..config.settings import Settings, get_settings
from ..core.messages import snapshot_message
from ..replay.engine import ReplayEngine
from ..replay.race_data import RaceData
from ..sim.generator import GeneratorConfig, SnapshotGenerator
from ..sim.roster import new_session
from ..sim.session import SessionStore, SimulatedSession

_LOGGER = get_logger(__name__)

NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011


def build_simulations(settings: Settings, store: SessionStore, sink: BroadcastSink) -> List[SimulatedSession]:
    """One generator per configured session id, seeding the store where needed."""
    sim = settings.simulation
    config = GeneratorConfig(
        lap_variation_ms=sim.lap_variation_ms,
        sector_jitter_ms=sim.sector_jitter_ms,
        pit_entry_probability=sim.pit_entry_probability,
        pit_exit_probability=sim.pit_exit_probability,
    )
    simulations = []
    for session_id in sim.sessions:
        if store.get(session_id) is None:
            store.add(new_session(session_id, duration_seconds=sim.session_duration_seconds))
        rng = random.Random(f"{sim.seed}:{session_id}") if sim.seed is not None else random.Random()
        simulations.append(
            SimulatedSession(
                session_id,
                store,
                sink,
                SnapshotGenerator(config, rng),
                tick_interval=sim.tick_interval,
                average_lap_seconds=sim.average_lap_seconds,
            )
        )
    return simulations


async def _forward(websocket: WebSocket, messages: AsyncIterator[dict]) -> bool:
    """Send `messages` until exhausted; False if the client left first.

    A departed client surfaces as `WebSocketDisconnect` on the next send.
    Cancellation from the server propagates untouched.
    """
    try:
        async for message in messages:
            await websocket.send_json(message)
    except WebSocketDisconnect:
        return False
    return True


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SessionStore] = None,
    sink: Optional[BroadcastSink] = None,
    race: Optional[RaceData] = None,
    simulate: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    store = store if store is not None else SessionStore()
    sink = sink if sink is not None else BroadcastSink()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        simulations = build_simulations(settings, store, sink) if simulate else []
        app.state.simulations = simulations
        for simulation in simulations:
            simulation.start()
        _LOGGER.info(
            "[server] ready sessions=%s replay=%s",
            ",".join(s.session_id for s in simulations) or "-",
            race.name if race else "-",
        )
        try:
            yield
        finally:
            for simulation in simulations:
                await simulation.stop()
            _LOGGER.info("[server] shutdown complete")

    app = FastAPI(title="Live Timing Server", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.sink = sink
    app.state.race = race
    router = APIRouter()

    @router.get("/health")
    async def health():
        return {"status": "ok", "sessions": store.ids(), "replay": race is not None}

    @router.get("/sessions")
    async def list_sessions():
        return {"sessions": store.ids()}

    @router.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        session = store.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return snapshot_message(session)

    @router.websocket("/sessions/{session_id}/live")
    async def live(websocket: WebSocket, session_id: str):
        await websocket.accept()
        _LOGGER.info("[server] live subscriber session=%s", session_id)
        sub = sink.subscribe(session_id)
        try:
            session = store.get(session_id)
            if sub.pending() == 0 and session is not None:
                # Nothing cached yet: start the client from the current state
                sub.needs_snapshot = False
                await websocket.send_json(snapshot_message(session))
            await _forward(websocket, sub)
        except WebSocketDisconnect:
            pass
        finally:
            # No awaits here: teardown must finish even while being cancelled
            sub.close()
            _LOGGER.info("[server] live subscriber left session=%s", session_id)

    async def replay(websocket: WebSocket):
        await websocket.accept()
        if race is None:
            await websocket.close(code=INTERNAL_ERROR, reason="No race data loaded")
            return
        engine = ReplayEngine(race, settings.server.replay_speed, settings.server.replay_min_interval_ms)
        channel = f"replay:{uuid.uuid4().hex}"
        _LOGGER.info("[server] replay client attached channel=%s", channel)
        # The channel has a single reader, so nothing may be dropped from it
        sub = sink.subscribe(channel, lossless=True)
        player = asyncio.create_task(engine.play(sink, channel), name=channel)

        def _played(task: asyncio.Task) -> None:
            # Ends the subscription once the last event is queued
            sub.close()
            if not task.cancelled() and task.exception() is not None:
                _LOGGER.error("[server] replay failed channel=%s: %s", channel, task.exception())

        player.add_done_callback(_played)
        finished = False
        try:
            finished = await _forward(websocket, sub)
        finally:
            player.cancel()
            sub.close()
            sink.forget(channel)
        if not finished:
            _LOGGER.info("[server] replay client left channel=%s", channel)
        elif player.exception() is not None:
            await websocket.close(code=INTERNAL_ERROR, reason="Replay failed")
        else:
            _LOGGER.info("[server] replay finished channel=%s", channel)
            await websocket.close(code=NORMAL_CLOSURE, reason="Replay finished")

    router.add_api_websocket_route("/", replay)
    router.add_api_websocket_route("/replay", replay)

    app.include_router(router)
    return app


async def serve(app: FastAPI, host: str = "0.0.0.0", port: int = 8080, log_level: str = "info") -> None:
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    await server.serve()


async def bootstrap() -> None:
    settings = get_settings()
    app = create_app(settings)
    await serve(app, settings.server.host, settings.server.port, settings.log_level)


if __name__ == "__main__":
    asyncio.run(bootstrap())
