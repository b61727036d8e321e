"""Pydantic schemas for ProcAgent request/response contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from procagent.config import MAX_TIMEOUT
from procagent.errors import ErrorKind


class ToolName(str, Enum):
    """Canonical operation names."""

    EXECUTE_COMMAND = "execute_command"
    EXECUTE_BACKGROUND = "execute_background"
    READ_OUTPUT = "read_output"
    KILL_SESSION = "kill_session"
    LIST_SESSIONS = "list_sessions"


class SessionStatus(str, Enum):
    """Background session lifecycle status."""

    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.RUNNING


class StreamName(str, Enum):
    """Captured output streams."""

    STDOUT = "stdout"
    STDERR = "stderr"


# --- Tool Arguments ---


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ExecuteCommandArgs(_ToolArgs):
    """Arguments for execute_command."""

    command: str = Field(..., min_length=1, description="Shell command to execute")
    working_directory: str | None = Field(
        default=None,
        validation_alias=AliasChoices("working_directory", "cwd"),
        description="Working directory (defaults to the configured working dir)",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        le=MAX_TIMEOUT,
        allow_inf_nan=False,
        description="Timeout in seconds (defaults to the configured timeout, at most one week)",
    )


class ExecuteBackgroundArgs(_ToolArgs):
    """Arguments for execute_background."""

    command: str = Field(..., min_length=1)
    working_directory: str | None = Field(
        default=None,
        validation_alias=AliasChoices("working_directory", "cwd"),
    )


class SessionArgs(_ToolArgs):
    """Arguments for operations addressing one session."""

    session_id: str = Field(..., min_length=1)


class NoArgs(_ToolArgs):
    """Operations without arguments."""


# --- Results ---


class ExecResult(BaseModel):
    """Result of a synchronous command execution."""

    command: str
    working_directory: str
    stdout: str
    stderr: str
    exit_code: int | None = None
    timed_out: bool = False
    truncated: bool = False
    duration_ms: int = 0
    warnings: list[ErrorKind] = Field(default_factory=list)


class BackgroundStarted(BaseModel):
    """Result of starting a background session."""

    session_id: str
    pid: int
    command: str
    working_directory: str


class SessionOutput(BaseModel):
    """Output delta and status returned by read_output."""

    session_id: str
    status: SessionStatus
    exit_code: int | None = None
    stdout_delta: str = ""
    stderr_delta: str = ""
    stdout_gap: int = 0
    stderr_gap: int = 0
    truncated: bool = False
    error: str | None = None
    warnings: list[ErrorKind] = Field(default_factory=list)


class KillResult(BaseModel):
    """Result of kill_session."""

    session_id: str
    status: SessionStatus


class SessionSummary(BaseModel):
    """Snapshot of one session for list_sessions."""

    id: str
    command: str
    working_directory: str
    pid: int
    status: SessionStatus
    started_at: datetime
    finished_at: datetime | None = None
    exit_code: int | None = None
    truncated: bool = False


class SessionList(BaseModel):
    """Result of list_sessions."""

    sessions: list[SessionSummary] = Field(default_factory=list)


# --- Dispatch ---


class ErrorResponse(BaseModel):
    """Structured failure relayed to the calling agent."""

    kind: ErrorKind
    detail: str
    session_id: str | None = None


class ToolCallRequest(BaseModel):
    """Request to run one tool through the broker."""

    tool_name: str = Field(..., min_length=1, description="Canonical tool name or alias")
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResponse(BaseModel):
    """Outcome of a tool call; failures are results, not exceptions."""

    tool_name: ToolName
    ok: bool
    result: dict[str, Any] | None = None
    error: ErrorResponse | None = None


# --- Health Check ---


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    running_sessions: int = 0
    total_sessions: int = 0
