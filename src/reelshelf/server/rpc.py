"""RPC server module for the Reelshelf daemon."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from pydantic import BaseModel, TypeAdapter, ValidationError

from reelshelf.errors import ReelshelfError
from reelshelf.storage.models import Edit

if TYPE_CHECKING:
    from reelshelf.session.coordinator import SessionCoordinator
    from reelshelf.storage.database import LibraryStore

log = structlog.get_logger()

_edits_adapter = TypeAdapter(list[Edit])


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class RpcRequest(BaseModel):
    """Incoming RPC call from the CLI client."""

    cmd: str
    params: dict = {}


class RpcResponse(BaseModel):
    """Outgoing RPC response sent back to the CLI client."""

    ok: bool = True
    data: dict = {}
    error: str | None = None
    code: str | None = None


# ---------------------------------------------------------------------------
# Daemon runtime state
# ---------------------------------------------------------------------------


class DaemonState:
    """Holds mutable runtime state shared across the daemon."""

    def __init__(self) -> None:
        self.started_at: datetime = datetime.now(timezone.utc)
        self.shutdown_event: asyncio.Event = asyncio.Event()
        self.coordinator: SessionCoordinator | None = None
        self.store: LibraryStore | None = None

    # -- queries ------------------------------------------------------------

    def get_status(self) -> dict:
        """Return a snapshot of the current daemon status."""
        uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        status: dict = {
            "uptime_seconds": round(uptime, 2),
            "started_at": self.started_at.isoformat(),
        }
        if self.coordinator:
            status["session"] = self.coordinator.get_status()
        return status

    # -- mutations ----------------------------------------------------------

    def request_shutdown(self) -> None:
        """Signal the daemon to shut down gracefully."""
        log.info("shutdown_requested")
        self.shutdown_event.set()


# ---------------------------------------------------------------------------
# RPC command dispatch
# ---------------------------------------------------------------------------

_SESSION_COMMANDS = (
    "library",
    "reload",
    "enter_edit",
    "stage",
    "save_edit",
    "cancel_edit",
    "select",
    "stop_playback",
)


def _library_payload(coordinator: SessionCoordinator) -> dict:
    return {
        "state": coordinator.state.to_dict(),
        "entries": [e.model_dump() for e in coordinator.library],
    }


async def _dispatch_session(cmd: str, params: dict, coordinator: SessionCoordinator) -> RpcResponse:
    if cmd == "library":
        return RpcResponse(data=_library_payload(coordinator))

    if cmd == "reload":
        await coordinator.load_library()
        return RpcResponse(data=_library_payload(coordinator))

    if cmd == "enter_edit":
        editing = await coordinator.enter_edit()
        return RpcResponse(data={"state": editing.to_dict()})

    if cmd == "stage":
        try:
            edits = _edits_adapter.validate_python(params.get("edits", []))
        except ValidationError as exc:
            return RpcResponse(ok=False, error=f"malformed edits: {exc.error_count()} error(s)", code="invalid_edit")
        await coordinator.stage_edits(edits)
        return RpcResponse(data=_library_payload(coordinator))

    if cmd == "save_edit":
        await coordinator.save_edit()
        return RpcResponse(data=_library_payload(coordinator))

    if cmd == "cancel_edit":
        await coordinator.cancel_edit()
        return RpcResponse(data=_library_payload(coordinator))

    if cmd == "select":
        entry_id = params.get("entry_id")
        if not isinstance(entry_id, int):
            return RpcResponse(ok=False, error="entry_id must be an integer", code="invalid_request")
        playing = await coordinator.select_entry(entry_id)
        return RpcResponse(data={"state": playing.to_dict()})

    # stop_playback
    await coordinator.stop_playback()
    return RpcResponse(data={"state": coordinator.state.to_dict()})


async def _dispatch(cmd: str, params: dict, state: DaemonState) -> RpcResponse:
    """Route an RPC command string to the appropriate handler."""
    if cmd == "ping":
        return RpcResponse()

    if cmd == "status":
        data = state.get_status()
        if state.store is not None:
            try:
                data["entries_stored"] = await state.store.count_entries()
            except ReelshelfError as exc:
                return RpcResponse(ok=False, error=str(exc), code=exc.code)
        return RpcResponse(data=data)

    if cmd == "health":
        uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    if cmd == "shutdown":
        state.request_shutdown()
        return RpcResponse(data={"message": "shutdown initiated"})

    if cmd in _SESSION_COMMANDS:
        if not state.coordinator:
            return RpcResponse(ok=False, error="session not ready", code="not_ready")
        try:
            return await _dispatch_session(cmd, params, state.coordinator)
        except ReelshelfError as exc:
            return RpcResponse(ok=False, error=str(exc), code=exc.code)

    return RpcResponse(ok=False, error=f"unknown command: {cmd}", code="unknown_command")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_rpc_app(state: DaemonState) -> FastAPI:
    """Build the FastAPI application that serves the RPC endpoint."""
    app = FastAPI(title="reelshelf-daemon", docs_url=None, redoc_url=None)

    @app.post("/rpc", response_model=RpcResponse)
    async def rpc_endpoint(request: RpcRequest) -> RpcResponse:
        log.info("rpc_request", cmd=request.cmd)
        response = await _dispatch(request.cmd, request.params, state)
        if not response.ok:
            log.warning("rpc_error", cmd=request.cmd, code=response.code, error=response.error)
        return response

    @app.get("/health", response_model=RpcResponse)
    async def health_endpoint() -> RpcResponse:
        uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    return app
