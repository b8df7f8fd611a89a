"""Bounded record channel between the ingest and sink tasks."""

from __future__ import annotations

from typing import AsyncIterator, Optional

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from models.records import TelemetryRecord
from services.errors import ChannelClosedError


class RecordSender:
    """Producer end. ``send`` waits while the buffer is full and never drops."""

    def __init__(self, stream: MemoryObjectSendStream[TelemetryRecord]) -> None:
        self._stream = stream

    async def send(self, record: TelemetryRecord) -> None:
        try:
            await self._stream.send(record)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
            raise ChannelClosedError("record channel has no receiver") from exc

    def close(self) -> None:
        self._stream.close()


class RecordReceiver:
    """Consumer end. Yields queued records until the sender closes."""

    def __init__(self, stream: MemoryObjectReceiveStream[TelemetryRecord]) -> None:
        self._stream = stream

    async def receive(self) -> Optional[TelemetryRecord]:
        """Return the next record, or ``None`` once drained after closure."""
        try:
            return await self._stream.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            return None

    def close(self) -> None:
        self._stream.close()

    def __aiter__(self) -> AsyncIterator[TelemetryRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TelemetryRecord]:
        while True:
            record = await self.receive()
            if record is None:
                return
            yield record


def open_record_channel(capacity: int) -> tuple[RecordSender, RecordReceiver]:
    """Create a single-producer, single-consumer channel holding ``capacity`` records."""
    if capacity <= 0:
        raise ValueError("Channel capacity must be positive.")
    send_stream, receive_stream = anyio.create_memory_object_stream[TelemetryRecord](
        max_buffer_size=capacity
    )
    return RecordSender(send_stream), RecordReceiver(receive_stream)
