"""Pull telemetry payloads out of probe-rs / defmt output lines.

A telemetry line looks like::

    [INFO] JSON sent via VCP: {"ts":12000,...}\\n (firmware src/main.rs:573)

Everything after the marker is the candidate payload. The defmt location
suffix is cut at the first ``" ("``, so a payload that itself contains
``" ("`` gets truncated and will fail to decode. That is a property of the
upstream log format and is not guarded against here.
"""

from __future__ import annotations

import logging
from typing import Optional

from settings import DEFAULT_MARKER

_LOCATION_DELIMITER = " ("
_ESCAPED_NEWLINE = "\\n"

_FIRMWARE_LEVELS = (
    ("[ERROR]", logging.ERROR),
    ("[WARN]", logging.WARNING),
    ("[INFO]", logging.INFO),
    ("[DEBUG]", logging.DEBUG),
    ("[TRACE]", logging.DEBUG),
)


def extract_payload(line: str, marker: str = DEFAULT_MARKER) -> Optional[str]:
    """Return the raw payload following ``marker``, or ``None`` if absent.

    The result may be empty; extraction never fails, decoding does.
    """
    start = line.find(marker)
    if start == -1:
        return None

    candidate = line[start + len(marker):]

    cut = candidate.find(_LOCATION_DELIMITER)
    if cut != -1:
        candidate = candidate[:cut]
    candidate = candidate.strip()

    while candidate.endswith(_ESCAPED_NEWLINE):
        candidate = candidate[: -len(_ESCAPED_NEWLINE)]
    candidate = candidate.rstrip("\n")

    return candidate.strip()


def firmware_log_level(line: str) -> Optional[int]:
    """Map a defmt level tag in ``line`` to a :mod:`logging` level."""
    for tag, level in _FIRMWARE_LEVELS:
        if tag in line:
            return level
    return None
