from __future__ import annotations

from typing import Any, Iterable

import typer

from models.records import TelemetryRecord
from models.stats import IngestStats


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]], indent: str = "") -> None:
    for key, value in pairs:
        typer.echo(f"{indent}{key}: {'-' if value is None else value}")


def render_record(record: TelemetryRecord) -> None:
    echo_heading(f"Telemetry {record.node_id} @ {record.timestamp_ms} ms")
    echo_key_values(
        [
            ("temperature_c", record.primary.temperature_c),
            ("humidity_pct", record.primary.humidity_pct),
            ("gas_resistance_ohms", record.primary.gas_resistance_ohms),
            ("gateway_temperature_c", record.secondary.temperature_c),
            ("gateway_pressure_hpa", record.secondary.pressure_hpa),
            ("rssi_dbm", record.link.rssi_dbm),
            ("snr_db", record.link.snr_db),
            ("packets_received", record.counters.packets_received),
            ("checksum_errors", record.counters.checksum_errors),
        ],
        indent="  ",
    )


def render_summary(stats: IngestStats, delivered: int | None = None) -> None:
    typer.echo()
    echo_heading("Summary")
    pairs: list[tuple[str, Any]] = [
        ("lines_read", stats.lines_read),
        ("payloads_extracted", stats.payloads_extracted),
        ("records_decoded", stats.records_decoded),
        ("decode_errors", stats.decode_errors),
    ]
    if delivered is not None:
        pairs.append(("records_delivered", delivered))
    echo_key_values(pairs)
