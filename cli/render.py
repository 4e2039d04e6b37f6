from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_receipt(payload: Dict[str, Any]) -> None:
    echo_heading("Reading Accepted")
    echo_key_values(
        [
            ("reading_id", payload.get("reading_id")),
            ("fingerprint", payload.get("fingerprint")),
            ("signature", payload.get("signature")),
        ]
    )


def render_sensors(sensors: List[Dict[str, Any]]) -> None:
    echo_heading("Sensors")
    if not sensors:
        typer.echo("No sensors registered.")
        return
    for sensor in sensors:
        typer.echo(f"  - {sensor.get('id')}: {sensor.get('name')} ({sensor.get('location')})")


def render_readings(payload: Dict[str, Any]) -> None:
    echo_heading(f"Readings for sensor {payload.get('sensor_id')}")
    readings = payload.get("readings") or []
    if not readings:
        typer.echo("No readings in this window.")
        return
    for reading in readings:
        typer.echo(
            f"  - #{reading.get('id')} {reading.get('timestamp')} "
            f"co2={reading.get('co2')} temperature={reading.get('temperature')} "
            f"[{reading.get('anchor_status')}]"
        )


def render_proof(payload: Dict[str, Any]) -> None:
    echo_heading("Ledger Proof")
    reading = payload.get("reading") or {}
    echo_key_values(
        [
            ("reading_id", reading.get("id")),
            ("fingerprint", payload.get("fingerprint")),
            ("signature", payload.get("signature") or "not anchored"),
            ("state", payload.get("state")),
        ]
    )
    if payload.get("verified"):
        typer.secho("Fingerprint found on the ledger.", fg=typer.colors.GREEN)
    else:
        typer.secho("Fingerprint not found on the ledger.", fg=typer.colors.RED)
