"""Error taxonomy for the telemetry pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline failures."""


class StartupError(PipelineError):
    """The probe process could not be spawned. Fatal."""


class DecodeError(PipelineError, ValueError):
    """A payload did not match the telemetry schema. Recoverable."""

    def __init__(self, payload: str, reason: str) -> None:
        super().__init__(reason)
        self.payload = payload
        self.reason = reason


class StreamEndedError(PipelineError):
    """The probe's stdout reached end-of-stream without a stop request."""


class AbnormalExitError(PipelineError):
    """The probe process exited without being asked to."""

    def __init__(self, returncode: Optional[int]) -> None:
        super().__init__(f"probe process exited unexpectedly with status {returncode}")
        self.returncode = returncode


class ChannelClosedError(PipelineError):
    """The consumer side of the record channel is gone."""
