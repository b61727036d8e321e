"""Pytest configuration and fixtures for ProcAgent tests."""

from pathlib import Path

import pytest

from procagent.config import Settings, default_shell, reset_settings
from procagent.process.executor import CommandExecutor
from procagent.process.sessions import SessionRegistry


@pytest.fixture
def tmp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory for tests."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def settings(tmp_workspace: Path) -> Settings:
    """Settings rooted in the temporary workspace with short timeouts."""
    return Settings(
        working_dir=tmp_workspace.resolve(),
        shell=default_shell(),
        default_timeout=5.0,
        output_capacity=10_000,
        kill_grace_period=1.0,
        max_retained_sessions=100,
    )


@pytest.fixture
def executor(settings: Settings) -> CommandExecutor:
    return CommandExecutor(settings)


@pytest.fixture
def registry(settings: Settings):
    """A fresh registry; running sessions are killed after the test."""
    reg = SessionRegistry(settings)
    yield reg
    reg.terminate_all()


@pytest.fixture
def clean_settings():
    """Re-read settings from the environment before and after the test."""
    reset_settings()
    yield
    reset_settings()
