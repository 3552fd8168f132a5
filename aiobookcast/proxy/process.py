"""External process handles used by the transcoding pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import suppress
from typing import Protocol

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
STOP_TIMEOUT = 2.0


class ProcessHandle(Protocol):
    """
    A running external process with a byte stream in and a byte stream out.

    The pipeline only depends on this interface, so tests can substitute an
    in-memory double for a real subprocess.
    """

    name: str

    @property
    def returncode(self) -> int | None:
        """Exit code, or None while running (or before start)."""

    async def start(self) -> None:
        """Start the process. Raises OSError if it cannot be started."""

    async def read(self, n: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to n bytes from the output; b"" at end of stream."""

    async def write(self, data: bytes) -> None:
        """Write bytes to the input, waiting for the pipe to drain."""

    def close_input(self) -> None:
        """Signal end of input."""

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""

    async def stop(self) -> None:
        """Terminate the process if it is still running. Safe to call repeatedly."""


# Creates a process handle from (name, argv).
ProcessFactory = Callable[[str, Sequence[str]], ProcessHandle]


class SubprocessHandle:
    """ProcessHandle backed by an asyncio subprocess."""

    def __init__(self, name: str, args: Sequence[str]) -> None:
        """
        Initialize the handle.

        Args:
            name: Short name used in logs and errors (e.g. "decoder").
            args: Full argv, starting with the executable.
        """
        self.name = name
        self._args = list(args)
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def returncode(self) -> int | None:
        """Exit code, or None while running (or before start)."""
        if self._proc is None:
            return None
        return self._proc.returncode

    async def start(self) -> None:
        """Spawn the subprocess with all three standard streams piped."""
        if self._proc is not None:
            return
        logger.debug("Starting %s process (%s)", self.name, self._args[0])
        self._proc = await asyncio.create_subprocess_exec(
            *self._args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._stderr_task = asyncio.get_running_loop().create_task(self._stderr_reader_loop())

    async def read(self, n: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to n bytes from stdout."""
        if self._proc is None or self._proc.stdout is None:
            return b""
        return await self._proc.stdout.read(n)

    async def write(self, data: bytes) -> None:
        """Write to stdin and drain."""
        if self._proc is None or self._proc.stdin is None:
            raise RuntimeError(f"{self.name} process is not running")
        self._proc.stdin.write(data)
        await self._proc.stdin.drain()

    def close_input(self) -> None:
        """Close stdin."""
        if self._proc is None or self._proc.stdin is None:
            return
        with suppress(OSError, RuntimeError):
            self._proc.stdin.close()

    async def wait(self) -> int:
        """Wait for exit."""
        if self._proc is None:
            raise RuntimeError(f"{self.name} process was never started")
        return await self._proc.wait()

    async def stop(self) -> None:
        """Close stdin, send SIGTERM and escalate to SIGKILL after a timeout."""
        proc = self._proc
        if proc is None:
            return
        self.close_input()
        if proc.returncode is None:
            with suppress(ProcessLookupError):
                proc.terminate()
            try:
                async with asyncio.timeout(STOP_TIMEOUT):
                    await proc.wait()
            except TimeoutError:
                logger.warning("%s process did not exit after SIGTERM, killing", self.name)
                with suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None

    async def _stderr_reader_loop(self) -> None:
        """Forward stderr lines to the debug log."""
        assert self._proc is not None
        stderr = self._proc.stderr
        if stderr is None:
            return
        while line := await stderr.readline():
            logger.debug("%s: %s", self.name, line.decode(errors="replace").rstrip())
