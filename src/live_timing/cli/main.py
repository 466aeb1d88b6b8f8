from __future__ import annotations

import asyncio
import json
import sys

import click

from ..client.connection import ConnectionManager, Notification
from ..config.settings import get_settings
from ..logging import configure_logging, get_logger
from ..replay.race_data import RaceDataError, load_race_data
from ..server.app import create_app, serve

_LOGGER = get_logger(__name__)

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None):
    """Live timing server, race replay and stream client."""
    try:
        settings = get_settings()
        if log_level:
            settings.log_level = log_level
        configure_logging(settings.log_level)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj = settings


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.option("--port", type=int, default=None, show_default="8080", help="Port to listen on")
@click.option("--host", default=None, show_default="0.0.0.0", help="Interface to bind")
@click.option("--speed", type=float, default=None, show_default="10", help="Playback speed multiplier")
@click.option(
    "--file",
    "race_file",
    required=True,
    envvar="RACE_FILE",
    type=click.Path(dir_okay=False),
    help="Race JSON file with startingGrid and timelineEvents",
)
@click.option(
    "--laps-file",
    default=None,
    envvar="LAPS_FILE",
    type=click.Path(dir_okay=False),
    help="Laps JSON file with lap and sector times",
)
@click.pass_obj
def replay(settings, port: int | None, host: str | None, speed: float | None, race_file: str, laps_file: str | None):
    """Replay a recorded race to every websocket client that connects."""
    server = settings.server
    if port is not None:
        server.port = port
    if host is not None:
        server.host = host
    if speed is not None:
        if speed <= 0:
            raise click.BadParameter("must be greater than 0", param_hint="--speed")
        server.replay_speed = speed
    server.race_file = race_file
    server.laps_file = laps_file
    try:
        race = load_race_data(race_file, laps_file)
    except RaceDataError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Replay server on ws://{server.host}:{server.port} (speed {server.replay_speed}x)", err=True)
    click.echo(f"Race: {race.name}, {len(race.events)} events, {len(race.starting_grid)} cars", err=True)
    app = create_app(settings, race=race, simulate=False)
    asyncio.run(serve(app, server.host, server.port, settings.log_level))


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.option("--port", type=int, default=None, show_default="8080", help="Port to listen on")
@click.option("--host", default=None, show_default="0.0.0.0", help="Interface to bind")
@click.option("--session", "sessions", multiple=True, help="Session id to simulate (repeatable)")
@click.option("--seed", type=int, default=None, help="Seed for reproducible sessions")
@click.option("--tick-interval", type=float, default=None, help="Seconds between snapshots")
@click.pass_obj
def simulate(settings, port: int | None, host: str | None, sessions: tuple, seed: int | None, tick_interval: float | None):
    """Serve procedurally generated sessions."""
    if port is not None:
        settings.server.port = port
    if host is not None:
        settings.server.host = host
    if sessions:
        settings.simulation.sessions = list(sessions)
    if seed is not None:
        settings.simulation.seed = seed
    if tick_interval is not None:
        if tick_interval <= 0:
            raise click.BadParameter("must be greater than 0", param_hint="--tick-interval")
        settings.simulation.tick_interval = tick_interval

    click.echo(
        f"Simulating {', '.join(settings.simulation.sessions)} on "
        f"http://{settings.server.host}:{settings.server.port}",
        err=True,
    )
    app = create_app(settings)
    asyncio.run(serve(app, settings.server.host, settings.server.port, settings.log_level))


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.argument("url")
@click.pass_obj
def watch(settings, url: str):
    """Connect to URL and print every notification as a JSON line."""

    def _print(notification: Notification) -> None:
        click.echo(json.dumps(notification.to_dict()))

    async def _run():
        manager = ConnectionManager(
            _print,
            max_reconnect_attempts=settings.client.max_reconnect_attempts,
            initial_reconnect_delay_ms=settings.client.initial_reconnect_delay_ms,
        )
        await manager.connect(url)
        try:
            await asyncio.Event().wait()
        finally:
            await manager.disconnect()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _LOGGER.info("[client] interrupted")
        sys.exit(0)


if __name__ == "__main__":
    cli()
