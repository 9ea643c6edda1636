from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import echo_heading, echo_key_values, render_entries, render_series, render_status
from models.records import Coefficients
from services import codec, transform
from services.errors import ConfigurationError, MalformedPacket


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for driving the sensor sampler service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


def _parse_coefficients(value: str) -> Coefficients:
    parts = [part.strip() for part in value.split(",")]
    if len(parts) != 4:
        raise typer.BadParameter("Expected four comma separated values: c3,c2,c1,c0.")
    try:
        c3, c2, c1, c0 = (float(part) for part in parts)
    except ValueError as exc:
        raise typer.BadParameter("Coefficients must be numbers.") from exc
    return Coefficients(c3=c3, c2=c2, c1=c1, c0=c0)


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Sampler API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("start")
def start_command(
    ctx: typer.Context,
    peripheral_id: str = typer.Option(..., "--peripheral", "-p", help="Peripheral identifier."),
    service_id: str = typer.Option(..., "--service", "-s", help="Service UUID."),
    characteristic_id: str = typer.Option(..., "--characteristic", "-c", help="Characteristic UUID."),
    coefficients: str = typer.Option(
        ..., "--coefficients", help="Calibration polynomial as c3,c2,c1,c0 (all non-zero)."
    ),
    service_name: str = typer.Option("", "--service-name", help="Label written to the log."),
    burst_interval_ms: Optional[int] = typer.Option(None, "--burst-interval-ms"),
    listen_duration_ms: Optional[int] = typer.Option(None, "--listen-duration-ms"),
    read_period_ms: Optional[int] = typer.Option(None, "--read-period-ms"),
) -> None:
    """Start a sampling run."""
    state = _get_state(ctx)
    coeffs = _parse_coefficients(coefficients)
    payload = {
        "characteristic": {
            "peripheral_id": peripheral_id,
            "service_id": service_id,
            "characteristic_id": characteristic_id,
            "service_name": service_name,
        },
        "coefficients": {"c3": coeffs.c3, "c2": coeffs.c2, "c1": coeffs.c1, "c0": coeffs.c0},
    }
    timings = (burst_interval_ms, listen_duration_ms, read_period_ms)
    if any(value is not None for value in timings):
        if any(value is None for value in timings):
            raise typer.BadParameter(
                "--burst-interval-ms, --listen-duration-ms and --read-period-ms go together."
            )
        payload["schedule"] = {
            "burst_interval_ms": burst_interval_ms,
            "listen_duration_ms": listen_duration_ms,
            "read_period_ms": read_period_ms,
        }

    typer.echo(f"Starting run on {characteristic_id} via {state.config.base_url} ...")
    result = state.client.start_run(payload)
    typer.secho(f"Run started. log_path={result.get('log_path')}", fg=typer.colors.GREEN)


@app.command("stop")
def stop_command(ctx: typer.Context) -> None:
    """Stop the active run and show its final status."""
    state = _get_state(ctx)
    render_status(state.client.stop_run())


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show the current run status."""
    state = _get_state(ctx)
    render_status(state.client.get_status())


@app.command("series")
def series_command(
    ctx: typer.Context,
    hours: int = typer.Option(0, "--hours", help="Window: 0 (all), 1, 6 or 24."),
) -> None:
    """Print the windowed series of averaged readings."""
    if hours not in (0, 1, 6, 24):
        raise typer.BadParameter("--hours must be 0, 1, 6 or 24.")
    state = _get_state(ctx)
    render_series(state.client.get_series(hours))


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the latest average and battery level."""
    state = _get_state(ctx)
    payload = state.client.get_latest()
    echo_heading("Latest Reading")
    echo_key_values(sorted(payload.items()))


@app.command("notifications")
def notifications_command(ctx: typer.Context) -> None:
    """List the most recent notifications."""
    state = _get_state(ctx)
    render_entries("Notifications", state.client.get_notifications())


@app.command("write")
def write_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Value in the service's current display format."),
) -> None:
    """Write a value to the sampled characteristic."""
    state = _get_state(ctx)
    entry = state.client.write(text)
    typer.secho(f"Written: {entry.get('data')}", fg=typer.colors.GREEN)


@app.command("decode")
def decode_command(
    packet_hex: str = typer.Argument(..., help="One 9-byte packet as hex."),
    coefficients: Optional[str] = typer.Option(
        None, "--coefficients", help="Also calibrate with c3,c2,c1,c0."
    ),
) -> None:
    """Decode a packet locally, without talking to the service."""
    try:
        packet = bytes.fromhex(packet_hex)
    except ValueError as exc:
        raise typer.BadParameter("Packet must be hex.") from exc

    try:
        fragment = codec.decode(packet)
    except MalformedPacket as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    echo_heading("Packet")
    echo_key_values(
        [
            ("packet_index", fragment.packet_index),
            ("battery_level", fragment.battery_level),
            ("samples", list(fragment.samples)),
        ]
    )
    if coefficients is None:
        return

    coeffs = _parse_coefficients(coefficients)
    try:
        transform.validate_coefficients(coeffs)
    except ConfigurationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    reading = transform.calibrate(fragment, coeffs, datetime.now(timezone.utc), packet)
    echo_key_values(
        [
            ("calibrated_values", list(reading.calibrated_values)),
            ("average", reading.average),
        ]
    )
