"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from stationctl.core.errors import StationctlError
from stationctl.core.model import Reading
from stationctl.core.service import StationService
from stationctl.core.session import ConnectionSession
from stationctl.transports.base import Peripheral
from stationctl.transports.ble_gatt import BleakRadioAdapter

app = typer.Typer(help="BLE weather station scanning, readings and commands")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    ctx.obj = config


def _build_service(ctx: typer.Context) -> StationService:
    service = StationService(BleakRadioAdapter(), config_path=ctx.obj)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _parse_code(value: str) -> int:
    try:
        code = int(value, 0)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a number") from None
    if not 0 <= code <= 0xFF:
        raise typer.BadParameter("response code must fit in one byte")
    return code


def _parse_payload(value: str) -> bytes:
    try:
        return bytes.fromhex(value.replace(":", "").replace(" ", ""))
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not valid hex") from None


@app.command("profiles")
def list_profiles(ctx: typer.Context) -> None:
    """List station profiles and the readings they decode."""
    try:
        service = _build_service(ctx)
        for profile in service.list_profiles():
            marker = " (active)" if profile.id == service.profile.id else ""
            typer.echo(f"{profile.id}: {profile.name}{marker}")
            typer.echo(f"  company_id: 0x{profile.company_id:04x}")
            typer.echo(f"  readings: {', '.join(spec.name for spec in profile.readings)}")
    except StationctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    ctx: typer.Context,
    address: list[str] | None = typer.Option(None, "--address", help="Only report these addresses"),
    duration: float | None = typer.Option(None, "--duration", help="Scan time in seconds"),
) -> None:
    """Scan for connectable stations."""

    def _on_station(station: ConnectionSession) -> None:
        typer.echo(f"{station.identity.address} {station.identity.name or '<unknown>'}")

    try:
        service = _build_service(ctx)
        stations = asyncio.run(service.scan_for(duration, _on_station, address or None))
        if not stations:
            typer.echo("No stations found")
    except StationctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("readings")
def watch_readings(
    ctx: typer.Context,
    address: list[str] | None = typer.Option(None, "--address", help="Only report these addresses"),
    duration: float | None = typer.Option(None, "--duration", help="Scan time in seconds"),
) -> None:
    """Print every reading broadcast by nearby stations."""

    def _on_reading(reading: Reading, _peripheral: Peripheral) -> None:
        origin = reading.device.address if reading.device else "<unknown>"
        typer.echo(f"{origin} {reading.name}={reading.value}")

    try:
        service = _build_service(ctx)
        asyncio.run(service.watch_readings(duration, _on_reading, address or None))
    except StationctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("record")
def get_record(
    ctx: typer.Context,
    names: list[str] | None = typer.Argument(None, help="Reading names (default: from config)"),
    timeout: float | None = typer.Option(None, "--timeout", help="Deadline in seconds"),
    address: list[str] | None = typer.Option(None, "--address", help="Only use these addresses"),
) -> None:
    """Collect one value per reading name, stopping at the deadline."""
    try:
        service = _build_service(ctx)
        requested = tuple(names) if names else service.config.readings
        record = asyncio.run(service.get_record(requested, timeout, address or None))
        for name in requested:
            reading = record.get(name)
            typer.echo(f"{name}={reading.value if reading else '<missing>'}")
    except StationctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send_command(
    ctx: typer.Context,
    payload: str = typer.Argument(..., help="Command bytes as hex"),
    address: str = typer.Option(..., "--address", help="Station address"),
    code: str = typer.Option("0x80", "--code", help="Expected response code"),
    settings: bool = typer.Option(False, "--settings", help="Use the settings characteristics"),
    timeout: float | None = typer.Option(None, "--timeout", help="Scan time to find the station"),
) -> None:
    """Connect to a station, send one command and print its response."""
    data = _parse_payload(payload)
    expected = _parse_code(code)
    try:
        service = _build_service(ctx)
        response = asyncio.run(service.send(address, data, expected, settings=settings, timeout_s=timeout))
        typer.echo(f"response={response.hex()}")
    except StationctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
