"""ProcAgent - process-control backend for tool-calling agents.

Runs shell commands for a language-model agent, either synchronously with a
timeout or as background sessions that can be polled and killed later. Exposed
over MCP and a minimal HTTP broker.
"""

__version__ = "0.1.0"
