"""CLI for ProcAgent - run commands, manage background sessions, serve tools."""

from __future__ import annotations

import json
import sys

import click

from procagent import __version__
from procagent.errors import ProcAgentError


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _exit_status(exit_code: int | None) -> int:
    """Map a process return code to a shell exit status (signal N becomes 128 + N)."""
    if exit_code is None:
        return 0
    if exit_code < 0:
        return 128 - exit_code
    return exit_code


def _get_client(broker: str | None):
    from procagent.client import BrokerClient

    return BrokerClient(base_url=broker)


broker_option = click.option(
    "--broker", "-b",
    default=None,
    envvar="PROCAGENT_BROKER_URL",
    help="Broker URL (defaults to http://127.0.0.1:8000)",
)

raw_option = click.option(
    "--raw",
    is_flag=True,
    help="Output raw JSON instead of formatted text",
)


@click.group()
@click.version_option(version=__version__, prog_name="procagent")
def main() -> None:
    """ProcAgent - process control for tool-calling agents.

    Run shell commands with a timeout, or start background sessions and poll
    or kill them later through the broker.
    """
    pass


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the ProcAgent HTTP broker server."""
    import uvicorn

    click.echo(f"Starting ProcAgent broker on {host}:{port}")
    uvicorn.run(
        "procagent.broker:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
def mcp() -> None:
    """Run the MCP server over stdio.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "procagent": {
                    "command": "procagent",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_procagent.server import mcp as mcp_server
    from procagent.config import configure_logging

    configure_logging()
    mcp_server.run()


@main.command()
@click.argument("command")
@click.option(
    "--cwd", "-C",
    "working_directory",
    default=None,
    help="Working directory (defaults to PROCAGENT_WORKING_DIR or the current directory)",
)
@click.option(
    "--timeout", "-t",
    type=float,
    default=None,
    help="Timeout in seconds (default: 30)",
)
@raw_option
def run(command: str, working_directory: str | None, timeout: float | None, raw: bool) -> None:
    """Run a command locally and wait for it.

    Exits with the command's exit code, or 124 if it timed out.

    \b
    Example:
        procagent run "pytest -q" --timeout 120
    """
    from procagent.process.executor import CommandExecutor
    from procagent.tools import format_exec_result

    try:
        result = CommandExecutor().run(command, working_directory=working_directory, timeout=timeout)
    except ProcAgentError as e:
        click.echo(f"Error [{e.kind.value}]: {e.message}", err=True)
        sys.exit(1)

    if raw:
        _echo_json(result.model_dump(mode="json"))
    else:
        click.echo(format_exec_result(result))

    if result.timed_out:
        sys.exit(124)
    sys.exit(_exit_status(result.exit_code))


def _call_broker(broker: str | None, method: str, *args):
    """Call a BrokerClient method, exiting non-zero on transport failures."""
    try:
        with _get_client(broker) as client:
            return getattr(client, method)(*args)
    except ProcAgentError as e:
        click.echo(f"Error [{e.kind.value}]: {e.message}", err=True)
        sys.exit(1)


def _report(response, raw: bool, formatter) -> None:
    from procagent.tools import format_error

    if raw:
        _echo_json(response.model_dump(mode="json"))
    elif response.ok:
        click.echo(formatter(response.result))
    else:
        click.echo(format_error(response.error), err=True)

    if not response.ok:
        sys.exit(1)


@main.command()
@click.argument("command")
@click.option("--cwd", "-C", "working_directory", default=None, help="Working directory")
@broker_option
@raw_option
def start(command: str, working_directory: str | None, broker: str | None, raw: bool) -> None:
    """Start a background session on the broker.

    \b
    Example:
        procagent start "npm run dev"
    """
    from procagent.schemas import BackgroundStarted
    from procagent.tools import format_started

    response = _call_broker(broker, "execute_background", command, working_directory)
    _report(response, raw, lambda result: format_started(BackgroundStarted.model_validate(result)))


@main.command()
@click.argument("session_id")
@broker_option
@raw_option
def read(session_id: str, broker: str | None, raw: bool) -> None:
    """Print output a background session produced since the last read."""
    from procagent.schemas import SessionOutput
    from procagent.tools import format_session_output

    response = _call_broker(broker, "read_output", session_id)
    _report(response, raw, lambda result: format_session_output(SessionOutput.model_validate(result)))


@main.command()
@click.argument("session_id")
@broker_option
@raw_option
def kill(session_id: str, broker: str | None, raw: bool) -> None:
    """Kill a background session."""
    response = _call_broker(broker, "kill_session", session_id)
    _report(response, raw, lambda result: f"Session {result['session_id']}: {result['status']}")


@main.command()
@broker_option
@raw_option
def sessions(broker: str | None, raw: bool) -> None:
    """List background sessions known to the broker."""
    summaries = _call_broker(broker, "list_sessions")

    if raw:
        _echo_json([s.model_dump(mode="json") for s in summaries])
        return

    if not summaries:
        click.echo("No sessions")
        return

    for s in summaries:
        status = s.status.value
        if s.exit_code is not None:
            status += f" ({s.exit_code})"
        click.echo(f"  {s.id}  pid={s.pid}  {status:<12} {s.started_at:%Y-%m-%d %H:%M:%S}  {s.command}")


if __name__ == "__main__":
    main()
