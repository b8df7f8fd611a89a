from __future__ import annotations

import asyncio
import signal
import sys
import time

import pytest

from services.errors import StartupError
from services.supervisor import ProcessSupervisor, spawn
from settings import get_settings


def _python(code: str) -> list[str]:
    return ["-u", "-c", code]


def test_spawn_streams_stdout_lines() -> None:
    code = "print('first'); print('second')"

    async def scenario() -> tuple[list[str], int, bool]:
        handle = await spawn(sys.executable, _python(code))
        lines = [line async for line in handle.lines()]
        returncode = await handle.wait()
        return lines, returncode, handle.exited_unprompted

    lines, returncode, unprompted = asyncio.run(scenario())

    assert lines == ["first\n", "second\n"]
    assert returncode == 0
    assert unprompted is True


def test_spawn_missing_binary_is_startup_error() -> None:
    with pytest.raises(StartupError) as excinfo:
        asyncio.run(spawn("definitely-not-a-real-probe-binary", ["run"]))

    assert "definitely-not-a-real-probe-binary" in str(excinfo.value)


def test_terminate_stops_running_process() -> None:
    async def scenario() -> tuple[int | None, bool, bool]:
        handle = await spawn(sys.executable, _python("import time; time.sleep(30)"))
        returncode = await handle.terminate(timeout=5)
        again = await handle.terminate(timeout=5)
        assert again == returncode
        return returncode, handle.termination_requested, handle.exited_unprompted

    returncode, requested, unprompted = asyncio.run(scenario())

    assert returncode is not None
    assert requested is True
    assert unprompted is False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
def test_terminate_kills_process_that_ignores_sigterm() -> None:
    code = (
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )

    async def scenario() -> tuple[int | None, float]:
        handle = await spawn(sys.executable, _python(code))
        lines = handle.lines()
        assert await lines.__anext__() == "ready\n"
        started = time.monotonic()
        returncode = await handle.terminate(timeout=0.3)
        return returncode, time.monotonic() - started

    returncode, elapsed = asyncio.run(scenario())

    assert returncode == -signal.SIGKILL
    assert elapsed < 5


def test_terminate_after_exit_is_a_noop() -> None:
    async def scenario() -> tuple[int | None, bool]:
        handle = await spawn(sys.executable, _python("raise SystemExit(3)"))
        async for _ in handle.lines():
            pass
        await handle.wait()
        returncode = await handle.terminate(timeout=1)
        return returncode, handle.exited_unprompted

    returncode, unprompted = asyncio.run(scenario())

    assert returncode == 3
    assert unprompted is True


def test_supervisor_builds_probe_command_from_settings(monkeypatch) -> None:
    calls: list[tuple[str, list[str]]] = []

    async def fake_spawn(command: str, args: list[str]) -> str:
        calls.append((command, list(args)))
        return "handle"

    monkeypatch.setattr("services.supervisor.spawn", fake_spawn)
    settings = get_settings()

    handle = asyncio.run(ProcessSupervisor(settings).spawn())

    assert handle == "handle"
    assert calls == [(settings.probe_command, settings.probe_args())]
