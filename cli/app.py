from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from cli.render import render_record, render_summary
from logging_config import configure_logging
from models.stats import IngestStats
from services.coordinator import run_pipeline
from services.errors import DecodeError, StartupError
from services.ingest import decode_line
from settings import LOG_LEVELS, get_settings

app = typer.Typer(
    help="Ingest telemetry from a probe-rs session running the gateway firmware.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (defaults to LOG_LEVEL env or INFO).",
    ),
) -> None:
    """Entry point for the CLI."""
    if log_level is not None and log_level.upper() not in LOG_LEVELS:
        raise typer.BadParameter(
            f"expected one of {', '.join(LOG_LEVELS)}", param_hint="'--log-level'"
        )
    configure_logging(log_level.upper() if log_level else None)


@app.command("run")
def run_command(
    probe: Optional[str] = typer.Option(None, "--probe", help="Debug probe identifier (VID:PID:serial)."),
    chip: Optional[str] = typer.Option(None, "--chip", help="Target chip name passed to probe-rs."),
    firmware: Optional[Path] = typer.Option(None, "--firmware", help="Firmware image to flash and run."),
    command: Optional[str] = typer.Option(None, "--command", help="Probe executable (defaults to probe-rs)."),
    capacity: Optional[int] = typer.Option(
        None,
        "--capacity",
        min=1,
        help="Maximum number of decoded records buffered between ingest and sink.",
    ),
    terminate_timeout: Optional[float] = typer.Option(
        None,
        "--terminate-timeout",
        min=0.1,
        help="Seconds to wait for the probe to exit before killing it.",
    ),
) -> None:
    """Spawn the probe and stream decoded telemetry until interrupted."""
    overrides: Dict[str, Any] = {
        "probe_id": probe,
        "chip": chip,
        "firmware_path": str(firmware) if firmware is not None else None,
        "probe_command": command,
        "channel_capacity": capacity,
        "terminate_timeout": terminate_timeout,
    }
    settings = replace(
        get_settings(),
        **{key: value for key, value in overrides.items() if value is not None},
    )

    try:
        result = asyncio.run(run_pipeline(settings))
    except StartupError as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc

    render_summary(result.ingest, delivered=result.delivered)
    typer.echo(f"shutdown_reason: {result.reason.value}")
    if result.exit_code:
        typer.secho(f"Gateway stopped abnormally: {result.error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=result.exit_code)


@app.command("extract")
def extract_command(
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Captured probe-rs output."
    ),
) -> None:
    """Replay a captured probe log through the extractor and decoder."""
    marker = get_settings().telemetry_marker
    stats = IngestStats()

    with file.open("r", encoding="utf-8", errors="replace") as handle:
        for line_number, line in enumerate(handle, start=1):
            try:
                record = decode_line(line, marker, stats)
            except DecodeError as exc:
                typer.secho(
                    f"line {line_number}: {exc.reason} (payload: {exc.payload!r})",
                    fg=typer.colors.YELLOW,
                    err=True,
                )
                continue
            if record is not None:
                render_record(record)

    render_summary(stats)
    if stats.records_decoded == 0 and stats.decode_errors:
        raise typer.Exit(code=1)
