"""Tool dispatch: alias resolution, argument validation and error conversion.

Every entry point (MCP server, HTTP broker, CLI) goes through
:func:`call_tool`, which resolves the requested name to one canonical
:class:`ToolName` up front and turns core failures into structured
``{kind, detail}`` results.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from procagent.errors import (
    AlreadyTerminalError,
    InvalidArgumentsError,
    ProcAgentError,
    SessionNotFoundError,
    UnknownToolError,
)
from procagent.process.executor import CommandExecutor
from procagent.process.sessions import SessionRegistry, get_registry
from procagent.schemas import (
    BackgroundStarted,
    ErrorResponse,
    ExecResult,
    ExecuteBackgroundArgs,
    ExecuteCommandArgs,
    KillResult,
    NoArgs,
    SessionArgs,
    SessionList,
    SessionOutput,
    ToolCallResponse,
    ToolName,
)

logger = logging.getLogger(__name__)

# Accepted tool names, including aliases, mapped to canonical operations
TOOL_ALIASES: dict[str, ToolName] = {
    "execute_command": ToolName.EXECUTE_COMMAND,
    "run_shell_command": ToolName.EXECUTE_COMMAND,
    "execute_background": ToolName.EXECUTE_BACKGROUND,
    "read_output": ToolName.READ_OUTPUT,
    "kill_session": ToolName.KILL_SESSION,
    "list_sessions": ToolName.LIST_SESSIONS,
}

ARGUMENT_MODELS: dict[ToolName, type[BaseModel]] = {
    ToolName.EXECUTE_COMMAND: ExecuteCommandArgs,
    ToolName.EXECUTE_BACKGROUND: ExecuteBackgroundArgs,
    ToolName.READ_OUTPUT: SessionArgs,
    ToolName.KILL_SESSION: SessionArgs,
    ToolName.LIST_SESSIONS: NoArgs,
}


def resolve_tool_name(name: str) -> ToolName:
    """Map a tool name or alias to its canonical operation.

    Raises:
        UnknownToolError: If the name is not recognised
    """
    tool = TOOL_ALIASES.get(name.strip())
    if tool is None:
        raise UnknownToolError(name)
    return tool


# --- Handlers ---


def _execute_command(
    args: ExecuteCommandArgs,
    executor: CommandExecutor,
    registry: SessionRegistry,
) -> ExecResult:
    return executor.run(args.command, working_directory=args.working_directory, timeout=args.timeout)


def _execute_background(
    args: ExecuteBackgroundArgs,
    executor: CommandExecutor,
    registry: SessionRegistry,
) -> BackgroundStarted:
    session_id = registry.create(args.command, working_directory=args.working_directory)
    summary = registry.get(session_id)
    return BackgroundStarted(
        session_id=session_id,
        pid=summary.pid,
        command=summary.command,
        working_directory=summary.working_directory,
    )


def _read_output(
    args: SessionArgs,
    executor: CommandExecutor,
    registry: SessionRegistry,
) -> SessionOutput:
    return registry.read(args.session_id)


def _kill_session(
    args: SessionArgs,
    executor: CommandExecutor,
    registry: SessionRegistry,
) -> KillResult:
    status = registry.kill(args.session_id)
    return KillResult(session_id=args.session_id, status=status)


def _list_sessions(
    args: NoArgs,
    executor: CommandExecutor,
    registry: SessionRegistry,
) -> SessionList:
    return SessionList(sessions=registry.list())


HANDLERS: dict[ToolName, Callable[..., BaseModel]] = {
    ToolName.EXECUTE_COMMAND: _execute_command,
    ToolName.EXECUTE_BACKGROUND: _execute_background,
    ToolName.READ_OUTPUT: _read_output,
    ToolName.KILL_SESSION: _kill_session,
    ToolName.LIST_SESSIONS: _list_sessions,
}


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "arguments"
        parts.append(f"{location}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(parts)


def _error_response(tool: ToolName, error: ProcAgentError) -> ToolCallResponse:
    session_id = None
    if isinstance(error, (SessionNotFoundError, AlreadyTerminalError)):
        session_id = error.session_id
    return ToolCallResponse(
        tool_name=tool,
        ok=False,
        error=ErrorResponse(kind=error.kind, detail=error.message, session_id=session_id),
    )


def call_tool(
    name: str,
    arguments: dict[str, Any] | None = None,
    executor: CommandExecutor | None = None,
    registry: SessionRegistry | None = None,
) -> ToolCallResponse:
    """Run one tool call.

    Args:
        name: Canonical tool name or alias
        arguments: Raw tool arguments
        executor: Executor for the synchronous path (defaults to a new one)
        registry: Session registry (defaults to the global one)

    Returns:
        ToolCallResponse; core failures are reported in ``error``

    Raises:
        UnknownToolError: If the name matches no operation
    """
    tool = resolve_tool_name(name)

    try:
        args = ARGUMENT_MODELS[tool].model_validate(arguments or {})
    except ValidationError as e:
        return _error_response(tool, InvalidArgumentsError(_format_validation_error(e)))

    try:
        result = HANDLERS[tool](
            args,
            executor or CommandExecutor(),
            registry or get_registry(),
        )
    except ProcAgentError as e:
        logger.info(f"{tool.value} failed: {e.kind.value}: {e.message}")
        return _error_response(tool, e)

    return ToolCallResponse(tool_name=tool, ok=True, result=result.model_dump(mode="json"))


# --- Text rendering ---


def format_exec_result(result: ExecResult) -> str:
    """Render a synchronous result the way the agent host shows it."""
    output = f"[Working directory: {result.working_directory}]\n\n"
    if result.stdout:
        output += result.stdout
    if result.stderr:
        output += ("\n\n--- STDERR ---\n" if result.stdout else "") + result.stderr
    if not result.stdout and not result.stderr:
        output += "(no output)"
    if result.truncated:
        output += "\n\n[Output truncated]"
    if result.timed_out:
        output += f"\n\n[Timed out after {result.duration_ms / 1000:.1f}s]"
    else:
        output += f"\n\n[Exit code: {result.exit_code}]"
    return output


def format_started(started: BackgroundStarted) -> str:
    return (
        f"Background session started: {started.session_id}\n"
        f"PID: {started.pid}\n"
        f"Directory: {started.working_directory}\n"
        f"Command: {started.command}"
    )


def format_session_output(output: SessionOutput) -> str:
    """Render a read_output delta."""
    status = output.status.value
    if output.exit_code is not None:
        status += f" ({output.exit_code})"

    lines = [f"Session: {output.session_id}", f"Status: {status}"]
    if output.error:
        lines.append(f"Error: {output.error}")
    if output.stdout_gap or output.stderr_gap:
        lines.append(f"[{output.stdout_gap + output.stderr_gap} characters dropped before this read]")

    text = "\n".join(lines) + "\n\n--- Output ---\n"
    text += output.stdout_delta or "(no new output)"
    if output.stderr_delta:
        text += "\n\n--- STDERR ---\n" + output.stderr_delta
    return text


def format_error(error: ErrorResponse) -> str:
    return f"Error [{error.kind.value}]: {error.detail}"
