"""Shared helpers for ProcAgent tests."""

import sys
import time

import pytest

from procagent.process.sessions import SessionRegistry
from procagent.schemas import SessionStatus

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


def wait_for_status(registry: SessionRegistry, session_id: str, timeout: float = 5.0) -> SessionStatus:
    """Poll until a session leaves the running state or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = registry.get(session_id).status
        if status is not SessionStatus.RUNNING:
            return status
        time.sleep(0.05)
    return registry.get(session_id).status


def wait_for_output(registry: SessionRegistry, session_id: str, expected: str, timeout: float = 5.0) -> str:
    """Read a session until expected appears in stdout; returns everything read."""
    collected = ""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        collected += registry.read(session_id).stdout_delta
        if expected in collected:
            break
        time.sleep(0.05)
    return collected
