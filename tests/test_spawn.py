"""Tests for the spawn primitive and working-directory resolution."""

import threading
from unittest.mock import patch

import pytest

from procagent.errors import SpawnFailedError
from procagent.process.buffer import OutputBuffer
from procagent.process.spawn import (
    ProcessHandle,
    build_shell_argv,
    normalize_path,
    resolve_working_directory,
)
from procagent.schemas import StreamName
from helpers import posix_only


class TestNormalizePath:
    """Test clean-up of model-written paths."""

    def test_strips_quotes(self):
        assert normalize_path('"/tmp/project"') == "/tmp/project"
        assert normalize_path("'/tmp/project'") == "/tmp/project"

    def test_collapses_backslashes(self):
        assert normalize_path("C:\\\\Users\\\\me\\\\repo") == "C:/Users/me/repo"

    def test_collapses_duplicate_slashes(self):
        assert normalize_path("/srv//app///src") == "/srv/app/src"


class TestResolveWorkingDirectory:
    """Test working directory defaults and validation."""

    def test_none_uses_base(self, tmp_workspace):
        assert resolve_working_directory(None, tmp_workspace) == tmp_workspace.resolve()

    def test_blank_uses_base(self, tmp_workspace):
        assert resolve_working_directory("  ", tmp_workspace) == tmp_workspace.resolve()

    def test_relative_resolves_against_base(self, tmp_workspace):
        (tmp_workspace / "sub").mkdir()
        assert resolve_working_directory("sub", tmp_workspace) == (tmp_workspace / "sub").resolve()

    def test_absolute_quoted_path(self, tmp_workspace, tmp_path):
        result = resolve_working_directory(f'"{tmp_path}"', tmp_workspace)
        assert result == tmp_path.resolve()

    def test_missing_directory_fails(self, tmp_workspace):
        with pytest.raises(SpawnFailedError, match="does not exist"):
            resolve_working_directory("nope", tmp_workspace)

    def test_file_is_not_a_directory(self, tmp_workspace):
        (tmp_workspace / "file.txt").write_text("x")
        with pytest.raises(SpawnFailedError):
            resolve_working_directory("file.txt", tmp_workspace)

    def test_null_byte_is_spawn_failure(self, tmp_workspace):
        with pytest.raises(SpawnFailedError):
            resolve_working_directory("a\x00b", tmp_workspace)


class TestBuildShellArgv:
    """Test shell invocation per platform shell."""

    def test_posix_shell(self):
        assert build_shell_argv("echo hi", "/bin/sh") == ["/bin/sh", "-c", "echo hi"]

    def test_cmd_exe_rewrites_drive_paths(self):
        argv = build_shell_argv('dir "K:/work/repo"', "cmd.exe")
        assert argv[:2] == ["cmd.exe", "/c"]
        assert argv[2] == "dir K:\\work\\repo"


@posix_only
class TestProcessHandle:
    """Test spawning, capture and exit notification."""

    def test_captures_both_streams(self, tmp_workspace):
        buf = OutputBuffer(capacity=1000)
        handle = ProcessHandle.spawn("echo out; echo err 1>&2", tmp_workspace, buf, shell="/bin/sh")

        assert handle.wait(5)
        assert handle.returncode == 0
        assert buf.getvalue(StreamName.STDOUT) == "out\n"
        assert buf.getvalue(StreamName.STDERR) == "err\n"

    def test_exit_callback_fires_once(self, tmp_workspace):
        buf = OutputBuffer(capacity=100)
        fired = []
        done = threading.Event()

        handle = ProcessHandle.spawn("sleep 0.2; exit 4", tmp_workspace, buf, shell="/bin/sh")
        handle.on_exit(lambda code: (fired.append(code), done.set()))

        assert done.wait(5)
        assert fired == [4]

    def test_late_subscriber_fires_immediately(self, tmp_workspace):
        buf = OutputBuffer(capacity=100)
        handle = ProcessHandle.spawn("exit 2", tmp_workspace, buf, shell="/bin/sh")
        assert handle.wait(5)

        fired = []
        handle.on_exit(fired.append)

        assert fired == [2]

    def test_callback_error_does_not_break_others(self, tmp_workspace):
        buf = OutputBuffer(capacity=100)
        fired = []
        done = threading.Event()

        def broken(code):
            raise RuntimeError("boom")

        handle = ProcessHandle.spawn("sleep 0.2", tmp_workspace, buf, shell="/bin/sh")
        handle.on_exit(broken)
        handle.on_exit(lambda code: (fired.append(code), done.set()))

        assert done.wait(5)
        assert fired == [0]

    def test_missing_shell_is_spawn_failure(self, tmp_workspace):
        with pytest.raises(SpawnFailedError):
            ProcessHandle.spawn("echo hi", tmp_workspace, OutputBuffer(), shell="/nonexistent/shell")

    def test_stop_escalates_to_kill(self, tmp_workspace):
        """A process ignoring SIGTERM is killed after the grace period."""
        buf = OutputBuffer(capacity=100)
        handle = ProcessHandle.spawn("trap '' TERM; sleep 30", tmp_workspace, buf, shell="/bin/sh")

        assert handle.stop(grace_period=0.3) is True
        assert handle.exited

    def test_stdin_is_closed(self, tmp_workspace):
        """Commands reading stdin see EOF instead of hanging."""
        buf = OutputBuffer(capacity=100)
        handle = ProcessHandle.spawn("cat; echo done", tmp_workspace, buf, shell="/bin/sh")

        assert handle.wait(5)
        assert buf.getvalue(StreamName.STDOUT) == "done\n"

    def test_null_byte_in_command_is_spawn_failure(self, tmp_workspace):
        with pytest.raises(SpawnFailedError):
            ProcessHandle.spawn("echo a\x00b", tmp_workspace, OutputBuffer(), shell="/bin/sh")

    def test_finished_group_is_not_signalled(self, tmp_workspace):
        """Once the leader is reaped and output drained, kill sends nothing."""
        handle = ProcessHandle.spawn("true", tmp_workspace, OutputBuffer(capacity=100), shell="/bin/sh")
        assert handle.wait(5)

        with patch("procagent.process.spawn.os.killpg") as mock_killpg:
            handle.terminate()
            handle.kill()

        mock_killpg.assert_not_called()

    def test_running_group_is_signalled(self, tmp_workspace):
        handle = ProcessHandle.spawn("sleep 30", tmp_workspace, OutputBuffer(capacity=100), shell="/bin/sh")
        try:
            with patch("procagent.process.spawn.os.killpg") as mock_killpg:
                handle.terminate()
            mock_killpg.assert_called_once()
        finally:
            handle.stop(grace_period=1.0)
