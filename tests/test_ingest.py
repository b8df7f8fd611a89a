from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable

import pytest

from models.stats import IngestStats
from services.channel import open_record_channel
from services.errors import DecodeError
from services.ingest import IngestOutcome, IngestTask, decode_line
from settings import DEFAULT_MARKER


def _telemetry_line(ts: int, node: str = "N2") -> str:
    payload = (
        f'{{"ts":{ts},"id":"{node}","n1":{{"t":21.5}},"n2":{{}},'
        f'"sig":{{"rssi":-40,"snr":9}},"sts":{{"rx":{ts},"err":0}}}}'
    )
    return f"[INFO] JSON sent via VCP: {payload}\\n (firmware src/main.rs:573)\n"


async def _lines(lines: Iterable[str]) -> AsyncIterator[str]:
    for line in lines:
        yield line


def test_ingest_decodes_in_order_and_skips_noise(caplog) -> None:
    lines = [
        "     Finished release [optimized] target(s)\n",
        _telemetry_line(1000),
        "[INFO] LoRa packet received\n",
        _telemetry_line(2000),
        _telemetry_line(3000),
    ]

    async def scenario() -> tuple[IngestOutcome, list[int], IngestTask]:
        sender, receiver = open_record_channel(10)
        task = IngestTask(sender)
        outcome = await task.run(_lines(lines))
        received = [record.timestamp_ms async for record in receiver]
        return outcome, received, task

    with caplog.at_level(logging.INFO):
        outcome, received, task = asyncio.run(scenario())

    assert outcome is IngestOutcome.stream_ended
    assert received == [1000, 2000, 3000]
    assert task.stats.lines_read == 5
    assert task.stats.payloads_extracted == 3
    assert task.stats.records_decoded == 3
    assert task.stats.decode_errors == 0
    assert task.stats.firmware_log_lines == 1

    firmware = [record for record in caplog.records if record.name == "firmware"]
    assert [record.getMessage() for record in firmware] == ["[INFO] LoRa packet received"]


def test_decode_errors_are_logged_and_skipped(caplog) -> None:
    lines = [
        "[INFO] JSON sent via VCP: \n",
        '[INFO] JSON sent via VCP: {"ts":1,"id":"N2","sts":{"rx":1,"err":0}\\n (src/main.rs:1)\n',
        _telemetry_line(5),
    ]

    async def scenario() -> tuple[list[int], IngestTask]:
        sender, receiver = open_record_channel(10)
        task = IngestTask(sender, forward_firmware_logs=False)
        await task.run(_lines(lines))
        return [record.timestamp_ms async for record in receiver], task

    with caplog.at_level(logging.WARNING):
        received, task = asyncio.run(scenario())

    assert received == [5]
    assert task.stats.decode_errors == 2
    assert task.stats.records_decoded == 1

    failures = [
        record
        for record in caplog.records
        if record.name == "services.ingest" and "Failed to decode" in record.getMessage()
    ]
    assert len(failures) == 2
    assert getattr(failures[0], "payload") == ""
    assert getattr(failures[1], "payload").startswith('{"ts":1')
    assert "Invalid JSON" in getattr(failures[1], "reason")


def test_stream_end_without_records_warns(caplog) -> None:
    async def scenario() -> IngestOutcome:
        sender, receiver = open_record_channel(1)
        outcome = await IngestTask(sender).run(_lines(["boot\n", "[WARN] probe slow\n"]))
        assert await receiver.receive() is None
        return outcome

    with caplog.at_level(logging.WARNING):
        outcome = asyncio.run(scenario())

    assert outcome is IngestOutcome.stream_ended
    assert any(
        "before any telemetry was decoded" in record.getMessage()
        for record in caplog.records
        if record.levelno == logging.WARNING
    )


def test_channel_closed_stops_ingest() -> None:
    async def scenario() -> tuple[IngestOutcome, IngestTask]:
        sender, receiver = open_record_channel(1)
        receiver.close()
        task = IngestTask(sender)
        outcome = await task.run(_lines([_telemetry_line(ts) for ts in range(5)]))
        return outcome, task

    outcome, task = asyncio.run(scenario())

    assert outcome is IngestOutcome.channel_closed
    assert task.stats.lines_read == 1


def test_full_channel_gates_line_consumption() -> None:
    consumed: list[int] = []

    async def tracked_lines() -> AsyncIterator[str]:
        for ts in range(10):
            consumed.append(ts)
            yield _telemetry_line(ts)

    async def scenario() -> list[int]:
        sender, receiver = open_record_channel(2)
        ingest = asyncio.ensure_future(IngestTask(sender).run(tracked_lines()))
        await asyncio.sleep(0.05)

        # Two records buffered, the third blocked in send.
        assert len(consumed) == 3
        assert not ingest.done()

        received = [record.timestamp_ms async for record in receiver]
        await ingest
        return received

    assert asyncio.run(scenario()) == list(range(10))


def test_decode_line_counts_each_outcome() -> None:
    stats = IngestStats()

    assert decode_line("[INFO] LoRa packet received\n", DEFAULT_MARKER, stats) is None
    record = decode_line(_telemetry_line(42), DEFAULT_MARKER, stats)
    with pytest.raises(DecodeError):
        decode_line('[INFO] JSON sent via VCP: {"ts":\n', DEFAULT_MARKER, stats)

    assert record is not None and record.timestamp_ms == 42
    assert stats == IngestStats(
        lines_read=3, payloads_extracted=2, records_decoded=1, decode_errors=1
    )
