"""Process control: synchronous execution and background sessions."""

from procagent.process.buffer import OutputBuffer
from procagent.process.executor import CommandExecutor, run_command
from procagent.process.sessions import Session, SessionRegistry, get_registry

__all__ = [
    "OutputBuffer",
    "CommandExecutor",
    "run_command",
    "Session",
    "SessionRegistry",
    "get_registry",
]
