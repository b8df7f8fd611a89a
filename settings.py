from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_PROBE_COMMAND_ENV = "PROBE_COMMAND"
_PROBE_ID_ENV = "PROBE_ID"
_CHIP_ENV = "PROBE_CHIP"
_FIRMWARE_PATH_ENV = "FIRMWARE_PATH"
_CHANNEL_CAPACITY_ENV = "CHANNEL_CAPACITY"
_TERMINATE_TIMEOUT_ENV = "TERMINATE_TIMEOUT"
_MARKER_ENV = "TELEMETRY_MARKER"
_PASSTHROUGH_ENV = "FIRMWARE_LOG_PASSTHROUGH"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_MARKER = "JSON sent via VCP: "
DEFAULT_CHANNEL_CAPACITY = 100
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    probe_command: str
    probe_id: str
    chip: str
    firmware_path: str
    channel_capacity: int
    terminate_timeout: float
    telemetry_marker: str
    firmware_log_passthrough: bool
    log_level: str

    def probe_args(self) -> list[str]:
        """Arguments handed to the probe command, in order."""
        return [
            "run",
            "--probe",
            self.probe_id,
            "--chip",
            self.chip,
            self.firmware_path,
        ]


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_marker(default: str) -> str:
    # Trailing whitespace is part of the marker, so it is not stripped.
    value = os.getenv(_MARKER_ENV)
    if not value:
        return default
    return value


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip().upper()
    if candidate not in LOG_LEVELS:
        return default
    return candidate


@lru_cache
def get_settings() -> Settings:
    return Settings(
        probe_command=_read_str_env(_PROBE_COMMAND_ENV, "probe-rs"),
        probe_id=_read_str_env(_PROBE_ID_ENV, "0483:374b:066DFF3833584B3043115433"),
        chip=_read_str_env(_CHIP_ENV, "STM32F446RETx"),
        firmware_path=_read_str_env(
            _FIRMWARE_PATH_ENV, "target/thumbv7em-none-eabihf/release/node2-firmware"
        ),
        channel_capacity=_read_positive_int(_CHANNEL_CAPACITY_ENV, DEFAULT_CHANNEL_CAPACITY),
        terminate_timeout=_read_positive_float(_TERMINATE_TIMEOUT_ENV, 5.0),
        telemetry_marker=_read_marker(DEFAULT_MARKER),
        firmware_log_passthrough=_read_bool(_PASSTHROUGH_ENV, True),
        log_level=_read_log_level("INFO"),
    )
