"""HTTP client for a running ProcAgent broker.

Background sessions live inside the broker process, so the CLI session
commands talk to it over HTTP instead of spawning anything locally.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from procagent.config import get_settings
from procagent.errors import BrokerError, UnknownToolError
from procagent.schemas import HealthResponse, SessionSummary, ToolCallResponse

logger = logging.getLogger(__name__)

# Timeouts
EXECUTE_TIMEOUT_MARGIN = 10.0  # extra seconds on top of a command timeout


class BrokerClient:
    """Thin wrapper over the broker's JSON endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Broker URL (defaults to the configured broker_url)
            http_client: Pre-built httpx client, e.g. a FastAPI TestClient
            timeout: Default request timeout in seconds (command timeout plus a margin)
        """
        self.base_url = (base_url or get_settings().broker_url).rstrip("/")
        self.timeout = timeout or get_settings().default_timeout + EXECUTE_TIMEOUT_MARGIN
        self._client = http_client or httpx.Client(base_url=self.base_url, timeout=self.timeout)
        self._owns_client = http_client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> BrokerClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        logger.debug(f"{method} {self.base_url}{path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BrokerError(f"Broker at {self.base_url} unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise BrokerError(f"Broker returned {response.status_code}: {detail}")
        return response.json()

    def call(self, tool_name: str, arguments: dict[str, Any] | None = None) -> ToolCallResponse:
        """Run a tool call on the broker.

        Raises:
            UnknownToolError: If the broker rejects the tool name
            BrokerError: If the broker is unreachable or fails
        """
        arguments = arguments or {}
        kwargs: dict[str, Any] = {}
        command_timeout = arguments.get("timeout")
        if isinstance(command_timeout, (int, float)) and command_timeout > 0:
            # Keep the HTTP request alive longer than the command itself.
            kwargs["timeout"] = float(command_timeout) + EXECUTE_TIMEOUT_MARGIN

        try:
            data = self._request(
                "POST",
                "/call",
                json={"tool_name": tool_name, "arguments": arguments},
                **kwargs,
            )
        except BrokerError as e:
            if "Unknown tool" in e.message:
                raise UnknownToolError(tool_name) from e
            raise
        return ToolCallResponse.model_validate(data)

    def execute_command(
        self,
        command: str,
        working_directory: str | None = None,
        timeout: float | None = None,
    ) -> ToolCallResponse:
        arguments: dict[str, Any] = {"command": command}
        if working_directory:
            arguments["working_directory"] = working_directory
        if timeout:
            arguments["timeout"] = timeout
        return self.call("execute_command", arguments)

    def execute_background(self, command: str, working_directory: str | None = None) -> ToolCallResponse:
        arguments: dict[str, Any] = {"command": command}
        if working_directory:
            arguments["working_directory"] = working_directory
        return self.call("execute_background", arguments)

    def read_output(self, session_id: str) -> ToolCallResponse:
        return self.call("read_output", {"session_id": session_id})

    def kill_session(self, session_id: str) -> ToolCallResponse:
        return self.call("kill_session", {"session_id": session_id})

    def list_sessions(self) -> list[SessionSummary]:
        data = self._request("GET", "/sessions")
        return [SessionSummary.model_validate(item) for item in data]

    def health(self) -> HealthResponse:
        return HealthResponse.model_validate(self._request("GET", "/health"))
