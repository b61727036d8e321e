"""Spawn primitive shared by the synchronous executor and background sessions."""

from __future__ import annotations

import codecs
import logging
import os
import re
import signal
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable

from procagent.config import get_settings
from procagent.errors import SpawnFailedError
from procagent.process.buffer import OutputBuffer
from procagent.schemas import StreamName

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
READER_JOIN_TIMEOUT = 1.0  # seconds per stream after the process exits
FORCE_KILL_WAIT = 2.0  # seconds to wait for exit after SIGKILL

IS_WINDOWS = sys.platform == "win32"

ExitCallback = Callable[[int], None]
ErrorCallback = Callable[[Exception], None]


def normalize_path(raw: str) -> str:
    """Clean up a path as language models tend to write it.

    Strips surrounding quotes, collapses doubled backslashes and turns
    backslashes into forward slashes.
    """
    path = raw.strip()
    path = re.sub(r"^[\"']|[\"']$", "", path)
    path = re.sub(r"\\{2,}", r"\\", path)
    path = path.replace("\\", "/")
    return re.sub(r"([^:])/+", r"\1/", path)


def resolve_working_directory(working_directory: str | Path | None, base: Path | None = None) -> Path:
    """Resolve the directory a command runs in.

    Args:
        working_directory: Requested directory; relative paths resolve against base
        base: Fallback and anchor directory (defaults to the configured working dir)

    Returns:
        Absolute path of an existing directory

    Raises:
        SpawnFailedError: If the directory does not exist
    """
    base = base or get_settings().working_dir

    if working_directory is None or not str(working_directory).strip():
        path = Path(base)
    else:
        path = Path(normalize_path(str(working_directory))).expanduser()
        if not path.is_absolute():
            path = Path(base) / path

    try:
        path = path.resolve()
        exists = path.is_dir()
    except (OSError, ValueError) as e:
        raise SpawnFailedError(f"Invalid working directory {working_directory!r}: {e}") from e
    if not exists:
        raise SpawnFailedError(f"Working directory does not exist: {path}")
    return path


def _normalize_windows_command(command: str) -> str:
    """Rewrite drive paths for cmd.exe (K:/a/b -> K:\\a\\b, no quotes around them)."""
    command = command.replace("\\\\", "\\")
    command = re.sub(
        r"([A-Za-z]:)(/[^\s\"'|><&]*)",
        lambda m: m.group(1) + m.group(2).replace("/", "\\"),
        command,
    )
    return re.sub(r"\"([A-Za-z]:\\[^\"]+)\"", r"\1", command)


def build_shell_argv(command: str, shell: str | None = None) -> list[str]:
    """Build the argv that runs command through the platform shell."""
    shell = shell or get_settings().shell
    if Path(shell).name.lower() in ("cmd", "cmd.exe"):
        return [shell, "/c", _normalize_windows_command(command)]
    return [shell, "-c", command]


class ProcessHandle:
    """A spawned shell command with its output readers and exit notification.

    One reader thread per stream decodes output into the OutputBuffer. A
    waiter thread reaps the process, drains the readers and then fires the
    one-shot exit notification: the ``exited`` event plus any callbacks
    subscribed through :meth:`on_exit`.
    """

    def __init__(self, proc: subprocess.Popen[bytes], buffer: OutputBuffer):
        self.proc = proc
        self.pid = proc.pid
        self.buffer = buffer
        self.returncode: int | None = None
        self.capture_error: Exception | None = None

        self._lock = threading.Lock()
        self._exited = threading.Event()
        self._exit_callbacks: list[ExitCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._readers: list[threading.Thread] = []

    @classmethod
    def spawn(
        cls,
        command: str,
        working_directory: Path,
        buffer: OutputBuffer,
        shell: str | None = None,
    ) -> ProcessHandle:
        """Start command in its own process group and begin capturing output.

        Raises:
            SpawnFailedError: If the shell cannot be executed
        """
        argv = build_shell_argv(command, shell)

        group_kwargs: dict = {}
        if IS_WINDOWS:
            group_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            group_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(working_directory),
                env=os.environ.copy(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **group_kwargs,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn {argv[0]!r} for command {command!r}: {e}")
            raise SpawnFailedError(f"Failed to start command: {e}") from e

        handle = cls(proc, buffer)
        handle._start_threads()
        logger.debug(f"Spawned pid {proc.pid}: {command}")
        return handle

    def _start_threads(self) -> None:
        assert self.proc.stdout is not None
        assert self.proc.stderr is not None

        for pipe, stream in (
            (self.proc.stdout, StreamName.STDOUT),
            (self.proc.stderr, StreamName.STDERR),
        ):
            reader = threading.Thread(
                target=self._read_stream,
                args=(pipe, stream),
                name=f"procagent-{stream.value}-{self.pid}",
                daemon=True,
            )
            reader.start()
            self._readers.append(reader)

        waiter = threading.Thread(
            target=self._wait_for_exit,
            name=f"procagent-wait-{self.pid}",
            daemon=True,
        )
        waiter.start()

    def _read_stream(self, pipe, stream: StreamName) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for chunk in iter(lambda: pipe.read1(READ_CHUNK_SIZE), b""):
                self.buffer.append(stream, decoder.decode(chunk))
            self.buffer.append(stream, decoder.decode(b"", final=True))
        except (OSError, ValueError) as e:
            logger.warning(f"Reading {stream.value} of pid {self.pid} failed: {e}")
            self._report_capture_error(e)
        finally:
            pipe.close()

    def _wait_for_exit(self) -> None:
        returncode = self.proc.wait()
        for reader in self._readers:
            reader.join(READER_JOIN_TIMEOUT)
            if reader.is_alive():
                # A grandchild still holds the pipe open.
                logger.debug(f"{reader.name} still running after pid {self.pid} exited")

        with self._lock:
            self.returncode = returncode
            self._exited.set()
            callbacks = list(self._exit_callbacks)
            self._exit_callbacks.clear()

        for callback in callbacks:
            self._invoke(callback, returncode)

    def _report_capture_error(self, error: Exception) -> None:
        with self._lock:
            if self.capture_error is not None:
                return
            self.capture_error = error
            callbacks = list(self._error_callbacks)
            self._error_callbacks.clear()

        for callback in callbacks:
            self._invoke(callback, error)

    def _invoke(self, callback: Callable, arg) -> None:
        try:
            callback(arg)
        except Exception:
            logger.exception(f"Callback for pid {self.pid} raised")

    def on_exit(self, callback: ExitCallback) -> None:
        """Subscribe to the exit notification.

        Fires exactly once; subscribing after the process exited fires
        immediately in the caller's thread.
        """
        with self._lock:
            if not self._exited.is_set():
                self._exit_callbacks.append(callback)
                return
            returncode = self.returncode
        self._invoke(callback, returncode)

    def on_capture_error(self, callback: ErrorCallback) -> None:
        """Subscribe to the first output-capture failure."""
        with self._lock:
            if self.capture_error is None:
                self._error_callbacks.append(callback)
                return
            error = self.capture_error
        self._invoke(callback, error)

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the exit notification fires. Returns False on timeout."""
        return self._exited.wait(timeout)

    def terminate(self) -> None:
        """Send SIGTERM to the whole process group."""
        if IS_WINDOWS:
            self._signal_windows(force=False)
        else:
            self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        """Send SIGKILL to the whole process group."""
        if IS_WINDOWS:
            self._signal_windows(force=True)
        else:
            self._signal_group(signal.SIGKILL)

    def stop(self, grace_period: float) -> bool:
        """Terminate, escalating to kill after grace_period. Returns True once gone."""
        self.terminate()
        if self.wait(grace_period):
            return True

        logger.warning(f"pid {self.pid} ignored SIGTERM for {grace_period}s, sending SIGKILL")
        self.kill()
        if self.wait(FORCE_KILL_WAIT):
            return True

        logger.error(f"pid {self.pid} still running after SIGKILL")
        return False

    def _signal_group(self, sig: signal.Signals) -> None:
        if self.proc.returncode is not None and not any(r.is_alive() for r in self._readers):
            # Leader reaped and nothing in the group holds our pipes; the pgid may be reused.
            logger.debug(f"Process group {self.pid} already finished, not signalling")
            return
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            logger.debug(f"Process group {self.pid} already gone")
        except OSError as e:
            logger.warning(f"Could not signal process group {self.pid}: {e}")

    def _signal_windows(self, force: bool) -> None:
        if self.proc.poll() is not None:
            return
        try:
            if force:
                self.proc.kill()
            else:
                self.proc.terminate()
        except OSError as e:
            logger.warning(f"Could not signal pid {self.pid}: {e}")
