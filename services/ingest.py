"""Ingest task: probe output lines in, decoded records out."""

from __future__ import annotations

import logging
from enum import Enum
from typing import AsyncIterable, Optional

from models.records import TelemetryRecord
from models.stats import IngestStats
from services.channel import RecordSender
from services.decoder import decode_record
from services.errors import ChannelClosedError, DecodeError
from services.extractor import extract_payload, firmware_log_level
from settings import DEFAULT_MARKER

logger = logging.getLogger(__name__)
firmware_logger = logging.getLogger("firmware")


class IngestOutcome(str, Enum):
    """Why the ingest loop stopped."""

    stream_ended = "stream_ended"
    channel_closed = "channel_closed"


def decode_line(line: str, marker: str, stats: IngestStats) -> Optional[TelemetryRecord]:
    """Extract and decode one line of probe output, updating ``stats``.

    Returns ``None`` when the line carries no telemetry payload. A payload that
    fails to decode is counted and its :class:`DecodeError` re-raised.
    """
    stats.lines_read += 1
    payload = extract_payload(line, marker)
    if payload is None:
        return None

    stats.payloads_extracted += 1
    try:
        record = decode_record(payload)
    except DecodeError:
        stats.decode_errors += 1
        raise
    stats.records_decoded += 1
    return record


class IngestTask:
    """Drives extract -> decode -> send for a single line source."""

    def __init__(
        self,
        sender: RecordSender,
        marker: str = DEFAULT_MARKER,
        forward_firmware_logs: bool = True,
    ) -> None:
        self.sender = sender
        self.marker = marker
        self.forward_firmware_logs = forward_firmware_logs
        self.stats = IngestStats()

    async def run(self, lines: AsyncIterable[str]) -> IngestOutcome:
        logger.info("Starting probe output parser")
        try:
            async for line in lines:
                if not await self._handle_line(line):
                    logger.error("Record channel closed; stopping parser")
                    return IngestOutcome.channel_closed
        finally:
            self.sender.close()

        if self.stats.records_decoded == 0:
            logger.warning(
                "Probe output ended before any telemetry was decoded",
                extra={"decode_errors": self.stats.decode_errors},
            )
        else:
            logger.info(
                "Probe output ended",
                extra={
                    "records_decoded": self.stats.records_decoded,
                    "decode_errors": self.stats.decode_errors,
                },
            )
        return IngestOutcome.stream_ended

    async def _handle_line(self, line: str) -> bool:
        """Process one line; return ``False`` once the channel is closed."""
        try:
            record = decode_line(line, self.marker, self.stats)
        except DecodeError as exc:
            logger.warning(
                "Failed to decode telemetry payload",
                extra={"payload": exc.payload, "reason": exc.reason},
            )
            return True
        if record is None:
            self._forward_firmware_log(line)
            return True

        logger.debug(
            "Telemetry packet received",
            extra={"node_id": record.node_id, "timestamp_ms": record.timestamp_ms},
        )
        try:
            await self.sender.send(record)
        except ChannelClosedError:
            return False
        return True

    def _forward_firmware_log(self, line: str) -> None:
        if not self.forward_firmware_logs:
            return
        level = firmware_log_level(line)
        if level is None:
            return
        self.stats.firmware_log_lines += 1
        firmware_logger.log(level, line.rstrip("\r\n"))
