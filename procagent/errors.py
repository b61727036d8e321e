"""Error taxonomy shared by the process core and the dispatch layer."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error kinds relayed verbatim to the calling agent."""

    SPAWN_FAILED = "SpawnFailed"
    TIMEOUT = "Timeout"
    SESSION_NOT_FOUND = "SessionNotFound"
    ALREADY_TERMINAL = "AlreadyTerminal"
    TRUNCATED_OUTPUT = "TruncatedOutput"
    INVALID_ARGUMENTS = "InvalidArguments"
    UNKNOWN_TOOL = "UnknownTool"
    BROKER_UNAVAILABLE = "BrokerUnavailable"
    INTERNAL_ERROR = "InternalError"


class ProcAgentError(Exception):
    """Base class for errors surfaced to tool callers."""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SpawnFailedError(ProcAgentError):
    """Raised when a child process could not be started."""

    kind = ErrorKind.SPAWN_FAILED


class SessionNotFoundError(ProcAgentError):
    """Raised when a session id is not in the registry."""

    kind = ErrorKind.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class AlreadyTerminalError(ProcAgentError):
    """Raised when killing a session that has already finished."""

    kind = ErrorKind.ALREADY_TERMINAL

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is already {status}")
        self.session_id = session_id
        self.status = status


class InvalidArgumentsError(ProcAgentError):
    """Raised when tool arguments fail validation."""

    kind = ErrorKind.INVALID_ARGUMENTS


class UnknownToolError(ProcAgentError):
    """Raised when a tool name matches no operation or alias."""

    kind = ErrorKind.UNKNOWN_TOOL

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class BrokerError(ProcAgentError):
    """Raised when the HTTP broker cannot be reached or answers badly."""

    kind = ErrorKind.BROKER_UNAVAILABLE
