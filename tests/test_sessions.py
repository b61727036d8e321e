"""Tests for background sessions and the session registry."""

import dataclasses
import time

import pytest

from procagent.errors import AlreadyTerminalError, SessionNotFoundError, SpawnFailedError
from procagent.process.sessions import SessionRegistry, get_registry
from procagent.schemas import SessionStatus
from helpers import posix_only, wait_for_output, wait_for_status

pytestmark = posix_only


class TestSessionCreate:
    """Test session creation and listing."""

    def test_ids_are_distinct_and_listed(self, registry):
        ids = [registry.create("sleep 5") for _ in range(5)]

        assert len(set(ids)) == 5
        listed = {s.id: s for s in registry.list()}
        for session_id in ids:
            assert listed[session_id].status is SessionStatus.RUNNING

    def test_summary_fields(self, registry, settings):
        session_id = registry.create("sleep 5")

        summary = registry.get(session_id)

        assert summary.command == "sleep 5"
        assert summary.working_directory == str(settings.working_dir)
        assert summary.pid > 0
        assert summary.started_at is not None
        assert summary.exit_code is None
        assert summary.finished_at is None

    def test_list_preserves_creation_order(self, registry):
        first = registry.create("sleep 5")
        second = registry.create("sleep 5")

        assert [s.id for s in registry.list()] == [first, second]

    def test_spawn_failure_registers_nothing(self, registry):
        with pytest.raises(SpawnFailedError):
            registry.create("echo hi", working_directory="missing-dir")
        assert registry.list() == []

    def test_get_unknown(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.get("bg-nope")


class TestSessionRead:
    """Test incremental output reads."""

    def test_read_returns_delta_then_empty(self, registry):
        session_id = registry.create("echo hello; sleep 5")

        assert "hello\n" in wait_for_output(registry, session_id, "hello")

        first = registry.read(session_id)
        second = registry.read(session_id)
        assert first.stdout_delta == ""
        assert second.stdout_delta == ""
        assert second.status is SessionStatus.RUNNING

    def test_streams_reported_separately(self, registry):
        session_id = registry.create("echo out; echo err 1>&2")
        assert wait_for_status(registry, session_id) is SessionStatus.EXITED

        output = registry.read(session_id)

        assert output.stdout_delta == "out\n"
        assert output.stderr_delta == "err\n"

    def test_natural_exit(self, registry):
        """A finished session reports exited with its exit code."""
        session_id = registry.create("sleep 0.3; echo done")

        assert registry.read(session_id).status is SessionStatus.RUNNING
        assert wait_for_status(registry, session_id) is SessionStatus.EXITED

        output = registry.read(session_id)
        assert output.status is SessionStatus.EXITED
        assert output.exit_code == 0
        assert output.stdout_delta == "done\n"
        assert registry.get(session_id).finished_at is not None

    def test_nonzero_exit_code(self, registry):
        session_id = registry.create("exit 7")
        assert wait_for_status(registry, session_id) is SessionStatus.EXITED
        assert registry.read(session_id).exit_code == 7

    def test_read_unknown_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.read("bg-0-missing")

    def test_truncated_output_reports_gap(self, settings):
        registry = SessionRegistry(dataclasses.replace(settings, output_capacity=50))
        session_id = registry.create("head -c 500 /dev/zero | tr '\\0' y")
        assert wait_for_status(registry, session_id) is SessionStatus.EXITED

        output = registry.read(session_id)

        assert output.truncated is True
        assert output.stdout_delta == "y" * 50
        assert output.stdout_gap == 450
        assert registry.read(session_id).truncated is True
        assert registry.get(session_id).truncated is True


class TestSessionKill:
    """Test forced termination."""

    def test_kill_running_session(self, registry):
        session_id = registry.create("sleep 100")

        started = time.monotonic()
        status = registry.kill(session_id)

        assert status is SessionStatus.KILLED
        assert time.monotonic() - started <= 2
        assert registry.get(session_id).exit_code is None

    def test_second_kill_is_already_terminal(self, registry):
        session_id = registry.create("sleep 100")
        registry.kill(session_id)

        with pytest.raises(AlreadyTerminalError):
            registry.kill(session_id)
        assert registry.read(session_id).status is SessionStatus.KILLED

    def test_kill_exited_session(self, registry):
        session_id = registry.create("true")
        assert wait_for_status(registry, session_id) is SessionStatus.EXITED

        with pytest.raises(AlreadyTerminalError):
            registry.kill(session_id)
        assert registry.get(session_id).status is SessionStatus.EXITED

    def test_kill_escalates_when_sigterm_ignored(self, settings):
        registry = SessionRegistry(dataclasses.replace(settings, kill_grace_period=0.3))
        session_id = registry.create("trap '' TERM; sleep 100")
        time.sleep(0.2)

        assert registry.kill(session_id) is SessionStatus.KILLED

    def test_kill_unknown_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.kill("bg-0-missing")

    def test_terminate_all(self, registry):
        ids = [registry.create("sleep 100") for _ in range(3)]
        finished = registry.create("true")
        wait_for_status(registry, finished)

        assert registry.terminate_all() == 3
        for session_id in ids:
            assert registry.get(session_id).status is SessionStatus.KILLED
        assert registry.counts() == (0, 4)


class TestSessionFailure:
    """Test the failed state."""

    def test_capture_error_fails_session(self, registry):
        session_id = registry.create("sleep 100")
        session = registry._sessions[session_id]

        session.handle._report_capture_error(OSError("pipe broke"))

        output = registry.read(session_id)
        assert output.status is SessionStatus.FAILED
        assert "pipe broke" in output.error
        assert output.exit_code is None

        # Terminal status survives the process exiting afterwards.
        assert session.wait(5)
        assert registry.get(session_id).status is SessionStatus.FAILED
        with pytest.raises(AlreadyTerminalError):
            registry.kill(session_id)


class TestRetention:
    """Test eviction of finished sessions."""

    def test_oldest_finished_sessions_evicted(self, settings):
        registry = SessionRegistry(dataclasses.replace(settings, max_retained_sessions=2))
        finished = []
        for _ in range(3):
            session_id = registry.create("true")
            wait_for_status(registry, session_id)
            finished.append(session_id)

        running = registry.create("sleep 5")
        try:
            ids = [s.id for s in registry.list()]
            assert finished[0] not in ids
            assert finished[1:] == ids[:2]
            assert running in ids
        finally:
            registry.terminate_all()

    def test_running_sessions_never_evicted(self, settings):
        registry = SessionRegistry(dataclasses.replace(settings, max_retained_sessions=1))
        try:
            ids = [registry.create("sleep 5") for _ in range(3)]
            assert [s.id for s in registry.list()] == ids
        finally:
            registry.terminate_all()


class TestGlobalRegistry:
    def test_get_registry_is_singleton(self):
        assert get_registry() is get_registry()
