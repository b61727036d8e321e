"""Synchronous, timeout-bounded command execution."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from procagent.config import MAX_TIMEOUT, Settings, get_settings
from procagent.errors import ErrorKind
from procagent.process.buffer import OutputBuffer
from procagent.process.spawn import ProcessHandle, resolve_working_directory
from procagent.schemas import ExecResult, StreamName

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Runs one command to completion or until its timeout expires."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def run(
        self,
        command: str,
        working_directory: str | Path | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """Execute command and wait for it.

        The timeout races the process exit notification. When the timeout
        wins, the process group is terminated (SIGKILL after the grace
        period) before returning, and the result carries the output captured
        so far with ``timed_out`` set and no exit code.

        Args:
            command: Shell command line
            working_directory: Directory to run in (defaults to the configured one)
            timeout: Seconds to wait (defaults to the configured timeout)

        Returns:
            ExecResult with captured stdout/stderr

        Raises:
            SpawnFailedError: If the working directory or shell is unusable
        """
        if timeout is None:
            timeout = self.settings.default_timeout
        timeout = min(timeout, MAX_TIMEOUT)
        cwd = resolve_working_directory(working_directory, self.settings.working_dir)
        buffer = OutputBuffer(self.settings.output_capacity)

        logger.info(f"Executing command: {command} (cwd: {cwd}, timeout: {timeout}s)")
        started = time.monotonic()
        handle = ProcessHandle.spawn(command, cwd, buffer, shell=self.settings.shell)

        try:
            timed_out = not handle.wait(timeout)
        except BaseException:
            # Never leave the process group running behind a failed wait.
            handle.stop(self.settings.kill_grace_period)
            raise
        if timed_out:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            handle.stop(self.settings.kill_grace_period)

        duration_ms = int((time.monotonic() - started) * 1000)
        exit_code = None if timed_out else handle.returncode

        warnings = []
        if buffer.truncated:
            warnings.append(ErrorKind.TRUNCATED_OUTPUT)
        if timed_out:
            warnings.append(ErrorKind.TIMEOUT)

        logger.info(f"Command finished: exit_code={exit_code}, timed_out={timed_out}, {duration_ms}ms")
        return ExecResult(
            command=command,
            working_directory=str(cwd),
            stdout=buffer.getvalue(StreamName.STDOUT),
            stderr=buffer.getvalue(StreamName.STDERR),
            exit_code=exit_code,
            timed_out=timed_out,
            truncated=buffer.truncated,
            duration_ms=duration_ms,
            warnings=warnings,
        )


def run_command(
    command: str,
    working_directory: str | Path | None = None,
    timeout: float | None = None,
) -> ExecResult:
    """Execute a command with the global settings."""
    return CommandExecutor().run(command, working_directory=working_directory, timeout=timeout)
