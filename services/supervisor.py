"""Lifecycle management for the external probe process."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Sequence

from services.errors import StartupError
from settings import Settings

logger = logging.getLogger(__name__)


class ProbeProcess:
    """Handle on a running probe process and its captured stdout."""

    def __init__(self, process: asyncio.subprocess.Process, command: Sequence[str]) -> None:
        self._process = process
        self.command = tuple(command)
        self._termination_requested = False
        self._exited_unprompted = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def termination_requested(self) -> bool:
        return self._termination_requested

    @property
    def exited_unprompted(self) -> bool:
        """True if the process was seen exiting before ``terminate`` was called."""
        return self._exited_unprompted

    async def lines(self) -> AsyncIterator[str]:
        """Yield stdout line by line until end-of-stream."""
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            try:
                raw = await stdout.readline()
            except ValueError as exc:
                # StreamReader discards the oversized chunk before raising.
                logger.warning(
                    "Discarding oversized probe output line",
                    extra={"pid": self.pid, "reason": str(exc)},
                )
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        returncode = await self._process.wait()
        if not self._termination_requested:
            self._exited_unprompted = True
        return returncode

    async def terminate(self, timeout: float) -> Optional[int]:
        """Stop the process, escalating to SIGKILL after ``timeout`` seconds.

        Safe to call repeatedly and on a process that already exited.
        """
        if self._process.returncode is not None:
            if not self._termination_requested:
                self._exited_unprompted = True
            self._termination_requested = True
            return self._process.returncode
        self._termination_requested = True

        logger.info("Terminating probe process", extra={"pid": self.pid})
        try:
            self._process.terminate()
        except ProcessLookupError:
            logger.debug("Probe process already gone", extra={"pid": self.pid})

        try:
            await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Probe process ignored termination; killing it",
                extra={"pid": self.pid, "reason": f"no exit within {timeout}s"},
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                logger.debug("Probe process already gone", extra={"pid": self.pid})
            await self._process.wait()

        logger.info(
            "Probe process stopped",
            extra={"pid": self.pid, "returncode": self._process.returncode},
        )
        return self._process.returncode


async def spawn(command: str, args: Sequence[str]) -> ProbeProcess:
    """Launch ``command`` with stdout captured and stderr left on the terminal."""
    argv = [command, *args]
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=None,
            start_new_session=True,
        )
    except OSError as exc:
        raise StartupError(f"Failed to spawn {command!r}: {exc}") from exc

    logger.info(
        "Spawned probe process",
        extra={"pid": process.pid, "command": " ".join(argv)},
    )
    return ProbeProcess(process, argv)


class ProcessSupervisor:
    """Spawns the probe described by the gateway settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def spawn(self) -> ProbeProcess:
        return await spawn(self.settings.probe_command, self.settings.probe_args())
