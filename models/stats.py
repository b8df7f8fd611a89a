"""Counters kept by the ingest task."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class IngestStats:
    lines_read: int = 0
    payloads_extracted: int = 0
    records_decoded: int = 0
    decode_errors: int = 0
    firmware_log_lines: int = 0
