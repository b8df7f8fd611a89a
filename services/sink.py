"""Sink task: drains the record channel into a side-effect callback."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from models.records import TelemetryRecord
from services.channel import RecordReceiver

logger = logging.getLogger(__name__)

RecordCallback = Callable[[TelemetryRecord], Union[None, Awaitable[None]]]


def log_record(record: TelemetryRecord) -> None:
    """Default side effect: one structured log line per record."""
    logger.info(
        "Processing telemetry packet",
        extra={
            "timestamp_ms": record.timestamp_ms,
            "node_id": record.node_id,
            "temperature_c": record.primary.temperature_c,
            "humidity_pct": record.primary.humidity_pct,
            "gas_resistance_ohms": record.primary.gas_resistance_ohms,
            "rssi_dbm": record.link.rssi_dbm,
            "snr_db": record.link.snr_db,
            "packets_received": record.counters.packets_received,
            "checksum_errors": record.counters.checksum_errors,
        },
    )

    secondary = record.secondary
    if secondary.temperature_c is not None or secondary.pressure_hpa is not None:
        logger.info(
            "Gateway local sensor",
            extra={
                "node_id": record.node_id,
                "temperature_c": secondary.temperature_c,
                "pressure_hpa": secondary.pressure_hpa,
            },
        )


class SinkTask:
    """Hands every received record to ``callback``, in channel order.

    The callback may be a plain function or return an awaitable. It must not
    block indefinitely: a stalled sink stalls the ingest task through the
    bounded channel.
    """

    def __init__(self, receiver: RecordReceiver, callback: Optional[RecordCallback] = None) -> None:
        self.receiver = receiver
        self.callback: RecordCallback = callback or log_record
        self.delivered = 0

    async def run(self) -> int:
        logger.info("Starting telemetry processor")
        try:
            async for record in self.receiver:
                result: Any = self.callback(record)
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
        finally:
            self.receiver.close()
        logger.info("Telemetry processor stopped", extra={"delivered": self.delivered})
        return self.delivered
