from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Union

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
DRAIN_TIMEOUT_SEC = 2.0


@dataclass(frozen=True)
class ProcessInvocation:
    command: str
    arguments: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    timeout_ms: int = 20000
    cwd: Path | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(
            self, "environment", MappingProxyType(dict(self.environment))
        )

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]

    def describe(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class Success:
    stdout: str
    stderr: str


@dataclass(frozen=True)
class NonZeroExit:
    code: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class TimedOut:
    stderr: str
    stdout: str = ""
    timeout_ms: int = 0


@dataclass(frozen=True)
class SpawnFailed:
    cause: str


ProcessOutcome = Union[Success, NonZeroExit, TimedOut, SpawnFailed]


class ProcessHandle:
    """A running child whose stdout/stderr are captured as it writes them."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        self._stdout = bytearray()
        self._stderr = bytearray()
        assert process.stdout is not None and process.stderr is not None
        self._readers = [
            asyncio.create_task(self._consume(process.stdout, self._stdout)),
            asyncio.create_task(self._consume(process.stderr, self._stderr)),
        ]

    @classmethod
    async def spawn(cls, invocation: ProcessInvocation) -> ProcessHandle:
        env = os.environ.copy()
        env.update(invocation.environment)
        process = await asyncio.create_subprocess_exec(
            *invocation.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(invocation.cwd) if invocation.cwd else None,
            env=env,
            # own process group, so a kill also reaches grandchildren
            start_new_session=os.name == "posix",
        )
        return cls(process)

    @property
    def stdout(self) -> str:
        return self._stdout.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        return await self.process.wait()

    def kill(self) -> None:
        """SIGKILL the child's process group. Safe to call after exit."""
        if self.process.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(self.process.pid, signal.SIGKILL)
            else:
                self.process.kill()
        except ProcessLookupError:
            pass

    async def drain(self, timeout: float = DRAIN_TIMEOUT_SEC) -> None:
        """Wait for the pipe readers, giving up on pipes held open by stray children."""
        done, pending = await asyncio.wait(self._readers, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()

    async def reap(self) -> None:
        """Kill the child, then collect its exit status and pipe readers."""
        self.kill()
        await self.wait()
        await self.drain()

    @staticmethod
    async def _consume(stream: asyncio.StreamReader, buffer: bytearray) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            buffer.extend(chunk)


async def run_process(invocation: ProcessInvocation) -> ProcessOutcome:
    """Run one external command, never waiting longer than its timeout."""
    logger.debug("running: %s", invocation.describe())
    try:
        handle = await ProcessHandle.spawn(invocation)
    except OSError as exc:
        logger.warning("failed to spawn %s: %s", invocation.command, exc)
        return SpawnFailed(cause=str(exc))

    timed_out = False
    exit_code = None
    try:
        exit_code = await asyncio.wait_for(
            handle.wait(), timeout=invocation.timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        timed_out = True
        handle.kill()
        await handle.wait()
    except asyncio.CancelledError:
        await asyncio.shield(handle.reap())
        raise
    await handle.drain()

    if timed_out:
        logger.warning(
            "%s timed out after %sms, process killed",
            invocation.command,
            invocation.timeout_ms,
        )
        return TimedOut(
            stderr=handle.stderr, stdout=handle.stdout, timeout_ms=invocation.timeout_ms
        )
    logger.debug("%s finished with code %s", invocation.command, exit_code)
    if exit_code == 0:
        return Success(stdout=handle.stdout, stderr=handle.stderr)
    return NonZeroExit(code=exit_code, stdout=handle.stdout, stderr=handle.stderr)


def truncate_output(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters of a log; ``limit <= 0`` keeps everything."""
    if limit <= 0 or len(text) <= limit:
        return text
    dropped = len(text) - limit
    return f"[... {dropped} chars truncated ...]\n{text[-limit:]}"
