"""HTTP broker exposing ProcAgent tools as JSON endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from procagent import __version__
from procagent.config import configure_logging
from procagent.errors import ErrorKind, SessionNotFoundError, UnknownToolError
from procagent.process.sessions import get_registry
from procagent.schemas import (
    ErrorResponse,
    HealthResponse,
    SessionSummary,
    ToolCallRequest,
    ToolCallResponse,
)
from procagent.tools import call_tool

logger = logging.getLogger(__name__)

# Configure logging
configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Background sessions do not outlive the broker.
    get_registry().terminate_all()


app = FastAPI(
    title="ProcAgent Broker",
    description="HTTP broker for synchronous commands and background sessions",
    version=__version__,
    lifespan=lifespan,
)


# --- HTTP Endpoints ---


@app.post("/call", response_model=ToolCallResponse)
def call(request: ToolCallRequest) -> ToolCallResponse:
    """Run one tool call.

    Core failures (spawn errors, unknown sessions, already-terminal kills)
    come back as a normal response with ``ok=false`` and a structured error.
    Declared sync so FastAPI runs it in the threadpool; execute_command
    blocks until the command finishes.

    Args:
        request: ToolCallRequest with tool name (or alias) and arguments

    Returns:
        ToolCallResponse
    """
    logger.info(f"Received tool call: {request.tool_name}")

    try:
        response = call_tool(request.tool_name, request.arguments, registry=get_registry())
    except UnknownToolError as e:
        raise HTTPException(status_code=400, detail=e.message)

    logger.info(f"Completed tool call: {response.tool_name.value}, ok={response.ok}")
    return response


@app.get("/sessions", response_model=list[SessionSummary])
def list_sessions() -> list[SessionSummary]:
    """List all known background sessions."""
    return get_registry().list()


@app.get("/sessions/{session_id}", response_model=SessionSummary)
def get_session(session_id: str) -> SessionSummary:
    """Get the summary of one background session."""
    try:
        return get_registry().get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Report broker health and session counts."""
    running, total = get_registry().counts()
    return HealthResponse(broker="healthy", running_sessions=running, total_sessions=total)


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            kind=ErrorKind.INTERNAL_ERROR,
            detail=str(exc),
        ).model_dump(mode="json"),
    )
