from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_latest, render_report


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the telemetry buffer service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="Identifier of the reporting device."),
    level: float = typer.Argument(..., help="Measured value."),
) -> None:
    """Submit a single reading."""
    state = _get_state(ctx)
    if state.client.send_reading(device_id, level):
        typer.secho(f"Reading accepted for {device_id}.", fg=typer.colors.GREEN)
    else:
        typer.secho("Service did not acknowledge the reading.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="Identifier of the device."),
) -> None:
    """Show the most recent reading for a device."""
    state = _get_state(ctx)
    render_latest(device_id, state.client.get_latest(device_id))


@app.command("history")
def history_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="Identifier of the device."),
    days: Optional[int] = typer.Option(
        None,
        "--days",
        "-d",
        min=1,
        help="Lookback in days (defaults to the service's retention window).",
    ),
) -> None:
    """List recent readings for a device, oldest first."""
    state = _get_state(ctx)
    render_history(device_id, state.client.get_history(device_id, days=days))


@app.command("flush")
def flush_command(ctx: typer.Context) -> None:
    """Force buffered readings into the durable store."""
    state = _get_state(ctx)
    render_report("Flush", state.client.flush())


@app.command("sweep")
def sweep_command(ctx: typer.Context) -> None:
    """Run the retention sweep immediately."""
    state = _get_state(ctx)
    render_report("Retention sweep", state.client.sweep())
