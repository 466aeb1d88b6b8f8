from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError


class SettingsError(ValueError):
    """A config file or environment value that cannot be used."""


class ServerSettings(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    # Replay playback
    replay_speed: float = Field(default=10.0, gt=0)
    replay_min_interval_ms: int = Field(default=100, ge=0)
    race_file: str | None = Field(default=None)
    laps_file: str | None = Field(default=None)


class SimulationSettings(BaseModel):
    sessions: list[str] = Field(default_factory=lambda: ["7606"])
    tick_interval: float = Field(default=1.0, gt=0)
    average_lap_seconds: float = Field(default=110.0, gt=0)
    session_duration_seconds: int = Field(default=21600)
    pit_entry_probability: float = Field(default=0.01, ge=0, le=1)
    pit_exit_probability: float = Field(default=0.7, ge=0, le=1)
    lap_variation_ms: int = Field(default=250, ge=0)
    sector_jitter_ms: int = Field(default=250, ge=0)
    # None draws from system entropy; set for reproducible sessions
    seed: int | None = Field(default=None)


class ClientSettings(BaseModel):
    max_reconnect_attempts: int = Field(default=10, ge=0)
    initial_reconnect_delay_ms: int = Field(default=1000, gt=0)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    log_level: str = Field(default="INFO")


def _block(data: dict, key: str) -> dict:
    value = data.get(key)
    return dict(value) if isinstance(value, dict) else {}


def _env(name: str, cast):
    raw = os.environ[name]
    try:
        return cast(raw)
    except ValueError as e:
        raise SettingsError(f"{name}={raw!r} is not a valid {cast.__name__}") from e


def get_settings() -> Settings:
    # Load base from config file if present
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    data: dict = {}
    p = Path(config_path)
    if p.exists():
        try:
            data = json.loads(p.read_text())
        except (OSError, ValueError):
            data = {}  # malformed file falls back to env defaults
    if not isinstance(data, dict):
        data = {}

    server_block = _block(data, "server")
    if os.environ.get("LIVE_TIMING_HOST"):
        server_block["host"] = os.environ["LIVE_TIMING_HOST"]
    if os.environ.get("LIVE_TIMING_PORT"):
        server_block["port"] = _env("LIVE_TIMING_PORT", int)
    if os.environ.get("REPLAY_SPEED"):
        server_block["replay_speed"] = _env("REPLAY_SPEED", float)
    if os.environ.get("REPLAY_MIN_INTERVAL_MS"):
        server_block["replay_min_interval_ms"] = _env("REPLAY_MIN_INTERVAL_MS", int)
    if os.environ.get("RACE_FILE"):
        server_block["race_file"] = os.environ["RACE_FILE"]
    if os.environ.get("LAPS_FILE"):
        server_block["laps_file"] = os.environ["LAPS_FILE"]

    sim_block = _block(data, "simulation")
    if os.environ.get("SIM_SESSIONS"):
        sim_block["sessions"] = [
            s.strip() for s in os.environ["SIM_SESSIONS"].split(",") if s.strip()
        ]
    if os.environ.get("SIM_TICK_INTERVAL"):
        sim_block["tick_interval"] = _env("SIM_TICK_INTERVAL", float)
    if os.environ.get("SIM_SEED"):
        sim_block["seed"] = _env("SIM_SEED", int)
    if os.environ.get("SIM_PIT_ENTRY_PROBABILITY"):
        sim_block["pit_entry_probability"] = _env("SIM_PIT_ENTRY_PROBABILITY", float)
    if os.environ.get("SIM_PIT_EXIT_PROBABILITY"):
        sim_block["pit_exit_probability"] = _env("SIM_PIT_EXIT_PROBABILITY", float)

    client_block = _block(data, "client")
    if os.environ.get("CLIENT_MAX_RECONNECT_ATTEMPTS"):
        client_block["max_reconnect_attempts"] = _env("CLIENT_MAX_RECONNECT_ATTEMPTS", int)
    if os.environ.get("CLIENT_INITIAL_RECONNECT_DELAY_MS"):
        client_block["initial_reconnect_delay_ms"] = _env("CLIENT_INITIAL_RECONNECT_DELAY_MS", int)

    try:
        return Settings(
            server=ServerSettings(**server_block),
            simulation=SimulationSettings(**sim_block),
            client=ClientSettings(**client_block),
            log_level=os.environ.get("LOG_LEVEL", data.get("log_level", "INFO")),
        )
    except ValidationError as e:
        raise SettingsError(f"invalid configuration: {e}") from e
