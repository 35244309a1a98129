from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def format_timestamp(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    instant = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def render_latest(device_id: str, payload: Dict[str, Any]) -> None:
    echo_heading(f"Latest reading for {device_id}")
    if not payload:
        typer.echo("No data recorded.")
        return
    echo_key_values(
        [
            ("timestamp", format_timestamp(payload.get("timestamp"))),
            ("level", payload.get("level")),
        ]
    )


def render_history(device_id: str, points: List[Dict[str, Any]]) -> None:
    echo_heading(f"History for {device_id}")
    if not points:
        typer.echo("No readings in window.")
        return
    for point in points:
        typer.echo(f"  - {format_timestamp(point.get('timestamp'))}  {point.get('level')}")
    typer.echo(f"{len(points)} readings")


def render_report(title: str, payload: Dict[str, Any]) -> None:
    echo_heading(title)
    echo_key_values((key, value) for key, value in payload.items() if not isinstance(value, list))
    for key, value in payload.items():
        if isinstance(value, list) and value:
            typer.echo(f"{key}:")
            for item in value:
                typer.echo(f"  - {item}")
