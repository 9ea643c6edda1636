from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_status(payload: Dict[str, Any]) -> None:
    echo_heading("Sampling Run")
    characteristic = payload.get("characteristic") or {}
    schedule = payload.get("schedule") or {}
    echo_key_values(
        [
            ("state", payload.get("state")),
            ("peripheral_id", characteristic.get("peripheral_id")),
            ("characteristic_id", characteristic.get("characteristic_id")),
            ("log_path", payload.get("log_path")),
            ("series_size", payload.get("series_size")),
        ]
    )
    if schedule:
        typer.echo(
            "schedule: every {burst_interval_ms} ms, listen {listen_duration_ms} ms, "
            "read every {read_period_ms} ms".format(**schedule)
        )

    counters = payload.get("counters") or {}
    typer.echo()
    echo_heading("Counters")
    echo_key_values(sorted(counters.items()))

    latest = payload.get("latest")
    typer.echo()
    echo_heading("Latest Reading")
    if latest:
        render_reading(latest)
    else:
        typer.echo("No readings yet.")

    errors = payload.get("recent_errors") or []
    typer.echo()
    echo_heading("Errors")
    if errors:
        for error in errors:
            typer.echo(f"  - {error.get('kind')}: {error.get('reason')}")
    else:
        typer.echo("No errors recorded.")


def render_reading(reading: Dict[str, Any]) -> None:
    echo_key_values(
        [
            ("packet_index", reading.get("packet_index")),
            ("battery_level", reading.get("battery_level")),
            ("samples", reading.get("samples")),
            ("average", reading.get("average")),
            ("captured_at", reading.get("captured_at")),
        ]
    )


def render_series(payload: Dict[str, Any]) -> None:
    hours = payload.get("hours")
    points: List[Dict[str, Any]] = payload.get("points") or []
    echo_heading("Series (all)" if not hours else f"Series (last {hours} h)")
    if not points:
        typer.echo("No points in window.")
        return
    for point in points:
        typer.echo(f"  {point.get('timestamp')}  {point.get('value')}")


def render_entries(title: str, entries: List[Dict[str, Any]]) -> None:
    echo_heading(title)
    if not entries:
        typer.echo("Nothing received.")
        return
    for entry in entries:
        typer.echo(f"  {entry.get('received_at')}  {entry.get('data')}")
