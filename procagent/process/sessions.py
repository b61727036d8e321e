"""Background command sessions and the process-wide session registry."""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

from procagent.config import Settings, get_settings
from procagent.errors import AlreadyTerminalError, ErrorKind, SessionNotFoundError
from procagent.process.buffer import OutputBuffer
from procagent.process.spawn import FORCE_KILL_WAIT, ProcessHandle, resolve_working_directory
from procagent.schemas import SessionOutput, SessionStatus, SessionSummary, StreamName

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """One background process, its metadata and its output buffer.

    Status fields are written only by the owning registry while holding its
    lock; the session holds the only reference to the process handle.
    """

    def __init__(
        self,
        session_id: str,
        command: str,
        working_directory: Path,
        handle: ProcessHandle,
        buffer: OutputBuffer,
    ):
        self.id = session_id
        self.command = command
        self.working_directory = working_directory
        self.handle = handle
        self.output = buffer
        self.started_at = _utcnow()

        self.status = SessionStatus.RUNNING
        self.exit_code: int | None = None
        self.finished_at: datetime | None = None
        self.error: str | None = None
        self.kill_requested = False

        self._done = threading.Event()

    @property
    def pid(self) -> int:
        return self.handle.pid

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until the registry has recorded a terminal status for this session."""
        return self._done.wait(timeout)

    def mark_done(self) -> None:
        self._done.set()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            command=self.command,
            working_directory=str(self.working_directory),
            pid=self.pid,
            status=self.status,
            started_at=self.started_at,
            finished_at=self.finished_at,
            exit_code=self.exit_code,
            truncated=self.output.truncated,
        )


class SessionRegistry:
    """Process-wide table of background sessions.

    Every insert, eviction and status transition happens under one lock.
    Exit is event-driven: the registry subscribes to each process's exit
    notification once, and that callback is the only place a session becomes
    ``exited`` or ``killed``. A kill marks the session first, so a process
    that dies while a kill is in flight is recorded as ``killed``.

    Sessions are never dropped while running. Once more than
    ``max_retained_sessions`` sessions have finished, the ones that finished
    earliest are evicted when the next session is created.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._counter = itertools.count(1)

    def create(self, command: str, working_directory: str | Path | None = None) -> str:
        """Spawn command in the background and register it.

        Returns:
            The new session id

        Raises:
            SpawnFailedError: If the process could not be started (nothing is registered)
        """
        cwd = resolve_working_directory(working_directory, self.settings.working_dir)
        buffer = OutputBuffer(self.settings.output_capacity)
        handle = ProcessHandle.spawn(command, cwd, buffer, shell=self.settings.shell)

        with self._lock:
            session_id = f"bg-{next(self._counter)}-{uuid.uuid4().hex[:8]}"
            session = Session(session_id, command, cwd, handle, buffer)
            self._sessions[session_id] = session
            self._evict_locked()

        handle.on_capture_error(lambda error: self._on_capture_error(session, error))
        handle.on_exit(lambda returncode: self._on_exit(session, returncode))

        logger.info(f"Started session {session_id} (pid {handle.pid}, cwd: {cwd}): {command}")
        return session_id

    def read(self, session_id: str) -> SessionOutput:
        """Return output appended since the previous read, plus current status.

        Status is captured before the output, so a terminal status always
        comes with the complete remaining output.
        """
        with self._lock:
            session = self._get_locked(session_id)
            status = session.status
            exit_code = session.exit_code
            error = session.error

        stdout = session.output.read_new(StreamName.STDOUT)
        stderr = session.output.read_new(StreamName.STDERR)
        truncated = session.output.truncated

        return SessionOutput(
            session_id=session_id,
            status=status,
            exit_code=exit_code,
            stdout_delta=stdout.delta,
            stderr_delta=stderr.delta,
            stdout_gap=stdout.gap,
            stderr_gap=stderr.gap,
            truncated=truncated,
            error=error,
            warnings=[ErrorKind.TRUNCATED_OUTPUT] if truncated else [],
        )

    def kill(self, session_id: str, grace_period: float | None = None) -> SessionStatus:
        """Terminate a running session.

        Sends SIGTERM to the process group and SIGKILL if it is still alive
        after the grace period.

        Raises:
            SessionNotFoundError: Unknown id
            AlreadyTerminalError: The session has already finished
        """
        if grace_period is None:
            grace_period = self.settings.kill_grace_period

        with self._lock:
            session = self._get_locked(session_id)
            if session.status.is_terminal:
                raise AlreadyTerminalError(session_id, session.status.value)
            session.kill_requested = True

        logger.info(f"Killing session {session_id} (pid {session.pid})")
        session.handle.terminate()
        if not session.wait(grace_period):
            logger.warning(f"Session {session_id} ignored SIGTERM for {grace_period}s, sending SIGKILL")
            session.handle.kill()
            if not session.wait(FORCE_KILL_WAIT):
                logger.error(f"Session {session_id} (pid {session.pid}) still running after SIGKILL")

        with self._lock:
            return session.status

    def get(self, session_id: str) -> SessionSummary:
        """Get the summary of one session."""
        with self._lock:
            return self._get_locked(session_id).summary()

    def list(self) -> list[SessionSummary]:
        """Snapshot of all known sessions in creation order."""
        with self._lock:
            return [session.summary() for session in self._sessions.values()]

    def counts(self) -> tuple[int, int]:
        """Return (running, total) session counts."""
        with self._lock:
            running = sum(1 for s in self._sessions.values() if s.status is SessionStatus.RUNNING)
            return running, len(self._sessions)

    def terminate_all(self) -> int:
        """Kill every running session. Returns how many were killed."""
        with self._lock:
            running = [sid for sid, s in self._sessions.items() if s.status is SessionStatus.RUNNING]

        killed = 0
        for session_id in running:
            try:
                self.kill(session_id)
            except AlreadyTerminalError:
                # Finished on its own in the meantime.
                continue
            killed += 1

        if killed:
            logger.info(f"Terminated {killed} running session(s)")
        return killed

    def _get_locked(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _on_exit(self, session: Session, returncode: int) -> None:
        with self._lock:
            if session.status is SessionStatus.RUNNING:
                if session.kill_requested:
                    session.status = SessionStatus.KILLED
                else:
                    session.status = SessionStatus.EXITED
                    session.exit_code = returncode
                session.finished_at = _utcnow()
            status = session.status

        session.mark_done()
        logger.info(f"Session {session.id} {status.value} (returncode {returncode})")

    def _on_capture_error(self, session: Session, error: Exception) -> None:
        with self._lock:
            if session.status is not SessionStatus.RUNNING:
                return
            session.status = SessionStatus.FAILED
            session.error = f"Output capture failed: {error}"
            session.finished_at = _utcnow()

        logger.error(f"Session {session.id} failed: {error}")
        session.handle.kill()

    def _evict_locked(self) -> None:
        finished = [s for s in self._sessions.values() if s.status.is_terminal]
        excess = len(finished) - self.settings.max_retained_sessions
        if excess <= 0:
            return

        finished.sort(key=lambda s: s.finished_at or s.started_at)
        for session in finished[:excess]:
            del self._sessions[session.id]
        logger.debug(f"Evicted {excess} finished session(s)")


# Global registry instance
_registry_instance: SessionRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> SessionRegistry:
    """Get or create the global session registry."""
    global _registry_instance
    with _registry_lock:
        if _registry_instance is None:
            _registry_instance = SessionRegistry()
        return _registry_instance
