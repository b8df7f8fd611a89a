"""Shutdown coordination for the telemetry pipeline.

The coordinator spawns the probe, wires the ingest and sink tasks through a
bounded channel, and waits for the first of: a stop request, the ingest task
finishing, or the probe exiting. It then drains in a fixed order:

1. terminate the probe (bounded wait, then kill);
2. let the ingest task read the remaining output and close the channel;
3. let the sink task deliver everything still queued.

The probe is never left running once the coordinator has stopped.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models.stats import IngestStats
from services.channel import open_record_channel
from services.errors import AbnormalExitError, StreamEndedError
from services.ingest import IngestOutcome, IngestTask
from services.sink import RecordCallback, SinkTask
from services.supervisor import ProbeProcess, ProcessSupervisor
from settings import Settings

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    running = "running"
    draining = "draining"
    stopped = "stopped"


class ShutdownReason(str, Enum):
    """What moved the pipeline from running to draining."""

    cancelled = "cancelled"
    abnormal_exit = "abnormal_exit"
    stream_ended = "stream_ended"
    sink_closed = "sink_closed"
    ingest_failed = "ingest_failed"
    sink_failed = "sink_failed"


_EXIT_GRACE = 1.0

_CLEAN_REASONS = {
    ShutdownReason.cancelled,
    ShutdownReason.stream_ended,
    ShutdownReason.sink_closed,
}


@dataclass
class PipelineResult:
    reason: ShutdownReason
    ingest: IngestStats = field(default_factory=IngestStats)
    delivered: int = 0
    returncode: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.reason in _CLEAN_REASONS else 1


class ShutdownCoordinator:
    """Runs one pipeline session from spawn to stopped."""

    def __init__(
        self,
        settings: Settings,
        callback: Optional[RecordCallback] = None,
        supervisor: Optional[ProcessSupervisor] = None,
    ) -> None:
        self.settings = settings
        self.callback = callback
        self.supervisor = supervisor or ProcessSupervisor(settings)
        self.state = PipelineState.running
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        """External cancellation trigger. Idempotent."""
        if not self._stop_event.is_set():
            logger.info("Stop requested, shutting down gracefully")
        self._stop_event.set()

    async def run(self) -> PipelineResult:
        handle = await self.supervisor.spawn()

        sender, receiver = open_record_channel(self.settings.channel_capacity)
        ingest = IngestTask(
            sender,
            marker=self.settings.telemetry_marker,
            forward_firmware_logs=self.settings.firmware_log_passthrough,
        )
        sink = SinkTask(receiver, self.callback)

        ingest_task = asyncio.create_task(ingest.run(handle.lines()), name="ingest")
        sink_task = asyncio.create_task(sink.run(), name="sink")
        stop_task = asyncio.create_task(self._stop_event.wait(), name="stop-request")
        exit_task = asyncio.create_task(handle.wait(), name="probe-exit")
        logger.info("Service running. Press Ctrl+C to stop.")

        try:
            await asyncio.wait(
                {ingest_task, sink_task, stop_task, exit_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            reason = self._classify(handle, ingest_task, sink_task, stop_task, exit_task)
            if reason is ShutdownReason.stream_ended:
                # EOF usually precedes the exit; give the probe a moment to report it.
                grace = min(_EXIT_GRACE, self.settings.terminate_timeout)
                await asyncio.wait({exit_task}, timeout=grace)
                if exit_task.done() and handle.exited_unprompted:
                    reason = ShutdownReason.abnormal_exit
            self._transition(PipelineState.draining, reason)

            await handle.terminate(self.settings.terminate_timeout)
            reason, error = await self._drain(handle, reason, ingest_task, sink_task)
        finally:
            if handle.returncode is None:
                await handle.terminate(self.settings.terminate_timeout)
            pending = [
                task
                for task in (ingest_task, sink_task, exit_task, stop_task)
                if not task.done()
            ]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._transition(PipelineState.stopped, reason)
        return PipelineResult(
            reason=reason,
            ingest=ingest.stats,
            delivered=sink.delivered,
            returncode=handle.returncode,
            error=error,
        )

    def _classify(
        self,
        handle: ProbeProcess,
        ingest_task: asyncio.Task,
        sink_task: asyncio.Task,
        stop_task: asyncio.Task,
        exit_task: asyncio.Task,
    ) -> ShutdownReason:
        if stop_task.done():
            return ShutdownReason.cancelled
        if exit_task.done() and handle.exited_unprompted:
            return ShutdownReason.abnormal_exit
        if ingest_task.done():
            if ingest_task.cancelled() or ingest_task.exception() is not None:
                return ShutdownReason.ingest_failed
            if ingest_task.result() is IngestOutcome.channel_closed:
                return ShutdownReason.sink_closed
            return ShutdownReason.stream_ended
        if sink_task.done():
            return ShutdownReason.sink_closed
        return ShutdownReason.abnormal_exit

    async def _drain(
        self,
        handle: ProbeProcess,
        reason: ShutdownReason,
        ingest_task: asyncio.Task,
        sink_task: asyncio.Task,
    ) -> tuple[ShutdownReason, Optional[BaseException]]:
        error: Optional[BaseException] = None

        try:
            await ingest_task
        except Exception as exc:
            logger.exception("Parser task failed", extra={"reason": str(exc)})
            reason, error = ShutdownReason.ingest_failed, exc

        try:
            await sink_task
        except Exception as exc:
            logger.exception("Telemetry processor failed", extra={"reason": str(exc)})
            reason, error = ShutdownReason.sink_failed, exc

        if error is not None:
            return reason, error

        if reason is ShutdownReason.stream_ended and handle.exited_unprompted:
            reason = ShutdownReason.abnormal_exit

        if reason is ShutdownReason.abnormal_exit:
            error = AbnormalExitError(handle.returncode)
            logger.error(str(error), extra={"returncode": handle.returncode})
        elif reason is ShutdownReason.stream_ended:
            error = StreamEndedError("probe output closed without a stop request")
            logger.warning(str(error))
        return reason, error

    def _transition(self, state: PipelineState, reason: ShutdownReason) -> None:
        self.state = state
        logger.info(
            "Pipeline state changed",
            extra={"state": state.value, "shutdown_reason": reason.value},
        )


async def run_pipeline(
    settings: Settings,
    callback: Optional[RecordCallback] = None,
    handle_signals: bool = True,
) -> PipelineResult:
    """Run the gateway until interrupted or the probe stops."""
    coordinator = ShutdownCoordinator(settings, callback=callback)
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    if handle_signals:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, coordinator.request_stop)
            except (NotImplementedError, RuntimeError) as exc:
                logger.warning(
                    "Signal handling unavailable; stop requests will not be observed",
                    extra={"reason": f"{signum.name}: {exc}"},
                )
            else:
                installed.append(signum)

    try:
        return await coordinator.run()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
