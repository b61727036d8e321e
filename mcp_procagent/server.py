"""MCP server exposing ProcAgent process tools to the agent."""

import asyncio

from mcp.server.fastmcp import FastMCP

from procagent.config import configure_logging
from procagent.tools import call_tool

mcp = FastMCP("procagent")


async def _call(tool_name: str, arguments: dict) -> dict:
    # Tools block on child processes; keep the event loop free for parallel calls.
    response = await asyncio.to_thread(call_tool, tool_name, arguments)
    return response.model_dump(mode="json")


def _drop_none(**arguments) -> dict:
    return {key: value for key, value in arguments.items() if value is not None}


@mcp.tool()
async def execute_command(command: str, cwd: str | None = None, timeout: float | None = None) -> dict:
    """Execute a shell command and wait for it to finish.

    Use for builds, tests, git commands, package scripts and any terminal
    operation. Runs in the project working directory unless cwd is given.

    Args:
        command: The shell command to execute
        cwd: Working directory for the command
        timeout: Timeout in seconds (default: 30)
    """
    return await _call("execute_command", _drop_none(command=command, cwd=cwd, timeout=timeout))


@mcp.tool()
async def run_shell_command(command: str, cwd: str | None = None, timeout: float | None = None) -> dict:
    """Execute a shell command (alias for execute_command).

    Args:
        command: The shell command to execute
        cwd: Working directory for the command
        timeout: Timeout in seconds (default: 30)
    """
    return await _call("run_shell_command", _drop_none(command=command, cwd=cwd, timeout=timeout))


@mcp.tool()
async def execute_background(command: str, cwd: str | None = None) -> dict:
    """Start a long-running command in the background (dev servers, watchers).

    Returns a session_id; poll it with read_output and stop it with kill_session.
    """
    return await _call("execute_background", _drop_none(command=command, cwd=cwd))


@mcp.tool()
async def read_output(session_id: str) -> dict:
    """Read output a background session produced since the last read, plus its status."""
    return await _call("read_output", {"session_id": session_id})


@mcp.tool()
async def kill_session(session_id: str) -> dict:
    """Kill a background command session."""
    return await _call("kill_session", {"session_id": session_id})


@mcp.tool()
async def list_sessions() -> dict:
    """List all background command sessions, running and finished."""
    return await _call("list_sessions", {})


if __name__ == "__main__":
    configure_logging()
    mcp.run()
