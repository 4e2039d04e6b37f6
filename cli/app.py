from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_proof, render_readings, render_receipt, render_sensors
from datastore.sql_store import build_default_store
from models.time_range import TimeRange
from services.errors import StoreError


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the pollution tracker service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        "-t",
        help="Bearer token from `login` (defaults to API_TOKEN env).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, token=token, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("register")
def register_command(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Account name."),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """Create a user account."""
    state = _get_state(ctx)
    state.client.register(username, password)
    typer.secho(f"Registered {username}.", fg=typer.colors.GREEN)


@app.command("login")
def login_command(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Account name."),
    password: str = typer.Option(..., prompt=True, hide_input=True),
) -> None:
    """Print a bearer token for use with --token or API_TOKEN."""
    state = _get_state(ctx)
    payload = state.client.login(username, password)
    typer.echo(payload.get("token"))


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Registered sensor id."),
    co2: float = typer.Option(..., "--co2", help="CO2 concentration in ppm."),
    temperature: float = typer.Option(..., "--temperature", help="Temperature in Celsius."),
    timestamp: Optional[datetime] = typer.Option(
        None,
        "--timestamp",
        help="Measurement time (defaults to now, UTC).",
    ),
) -> None:
    """Submit one reading."""
    state = _get_state(ctx)
    when = timestamp or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    payload = state.client.ingest(sensor_id, when, co2, temperature)
    render_receipt(payload)


@app.command("sensors")
def sensors_command(ctx: typer.Context) -> None:
    """List sensors owned by the logged-in user."""
    state = _get_state(ctx)
    render_sensors(state.client.list_sensors())


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Owned sensor id."),
    time_range: Optional[TimeRange] = typer.Option(
        None,
        "--range",
        "-r",
        help="Time window; defaults to 24h on the server.",
    ),
) -> None:
    """Show readings of a sensor, oldest first."""
    state = _get_state(ctx)
    selector = time_range.value if time_range is not None else None
    render_readings(state.client.list_readings(sensor_id, selector))


@app.command("proof")
def proof_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Owned sensor id."),
    reading_id: int = typer.Argument(..., help="Reading id returned by ingest."),
) -> None:
    """Check a stored reading against its ledger transaction."""
    state = _get_state(ctx)
    payload = state.client.get_proof(sensor_id, reading_id)
    render_proof(payload)
    if not payload.get("verified"):
        raise typer.Exit(code=1)


@app.command("add-sensor")
def add_sensor_command(
    name: str = typer.Argument(..., help="Sensor name."),
    owner: str = typer.Option(..., "--owner", help="Username owning the sensor."),
    location: str = typer.Option("", "--location", help="Free-form location."),
    sensor_id: Optional[int] = typer.Option(None, "--id", help="Explicit sensor id."),
) -> None:
    """Register a sensor directly in the configured database (DATABASE_URL)."""
    store = build_default_store()
    try:
        sensor = store.register_sensor(name, location, owner, sensor_id=sensor_id)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except StoreError as exc:
        typer.secho(f"Database error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho(f"Registered sensor {sensor.id} for {owner}.", fg=typer.colors.GREEN)
