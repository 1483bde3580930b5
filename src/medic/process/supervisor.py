"""Async supervision of one external build/deploy/run command."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from medic.shared.exceptions import LaunchFailedError, ProcessFailedError, ProcessTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Captured output of a command that exited with code 0."""

    stdout: str
    stderr: str
    returncode: int = 0


class ProcessSupervisor:
    """Runs external commands through ``asyncio`` subprocesses.

    The child is killed when ``timeout`` elapses or when the awaiting task is
    cancelled, so a race that abandons a launch never leaks the process.
    """

    def __init__(self, *, verbose: bool = False) -> None:
        self._verbose = verbose

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run ``command`` to completion and return its captured output.

        Args:
            command: Binary to execute (``cordova``, ``adb``, ``xcrun``...).
            args: Command arguments.
            cwd: Working directory for the child.
            timeout: Seconds before the child is killed. ``None`` waits forever.

        Raises:
            LaunchFailedError: The binary could not be started.
            ProcessFailedError: The command exited with a nonzero code.
            ProcessTimeoutError: The timeout elapsed first. Partial output is discarded.
        """
        cmdline = " ".join([command, *args])
        if self._verbose:
            logger.info("running command: %s", cmdline)
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise LaunchFailedError(f"failed to launch {command}: {exc}") from exc

        try:
            if timeout is not None and timeout > 0:
                stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            else:
                stdout_b, stderr_b = await proc.communicate()
        except asyncio.TimeoutError as exc:
            await kill_process(proc)
            raise ProcessTimeoutError(f"command timed out after {timeout}s: {cmdline}") from exc
        except asyncio.CancelledError:
            logger.info("killing cancelled command: %s", cmdline)
            await kill_process(proc)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        stdout = stdout_b.decode(errors="replace") if stdout_b else ""
        stderr = stderr_b.decode(errors="replace") if stderr_b else ""
        returncode = proc.returncode or 0

        if returncode != 0:
            raise ProcessFailedError(
                f'command failed: "{cmdline}" in {elapsed_ms}ms (rc={returncode}): {stderr.strip()[-500:]}',
                returncode=returncode,
                stdout=stdout,
                stderr=stderr,
            )

        if self._verbose:
            logger.info('finished command "%s" in %dms', cmdline, elapsed_ms)
        return ProcessResult(stdout=stdout, stderr=stderr, returncode=returncode)


async def kill_process(proc: asyncio.subprocess.Process) -> None:
    """Kill ``proc`` if it is still running and reap it."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
