"""Decode raw payloads into telemetry records and back."""

from __future__ import annotations

from pydantic import ValidationError

from models.records import TelemetryRecord
from services.errors import DecodeError


def decode_record(payload: str) -> TelemetryRecord:
    """Validate ``payload`` against the telemetry schema.

    Unknown keys are ignored. Raises :class:`DecodeError` carrying the
    payload and a readable reason on any syntax or type error.
    """
    if not payload.strip():
        raise DecodeError(payload, "empty payload")

    try:
        return TelemetryRecord.model_validate_json(payload)
    except ValidationError as exc:
        raise DecodeError(payload, _describe(exc)) from exc


def encode_record(record: TelemetryRecord) -> str:
    """Render ``record`` in the wire format, omitting absent readings."""
    return record.model_dump_json(by_alias=True, exclude_none=True)


def _describe(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors(include_url=False):
        location = ".".join(str(part) for part in error["loc"])
        if location:
            parts.append(f"{location}: {error['msg']}")
        else:
            parts.append(error["msg"])
    return "; ".join(parts)
