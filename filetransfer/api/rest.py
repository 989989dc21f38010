"""
REST API for the Transfer Service

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Modern, fast, auto-docs, async support
2. Flask - Simple, widely used, but sync-focused
3. aiohttp - Async, but less features

Decision: FastAPI
- Transfers run as tasks on the same event loop as the API
- Automatic OpenAPI documentation
- Pydantic integration for validation

API Design:
- POST starts a transfer and returns immediately (202)
- GET /transfers/{id} is the progress poll
- GET /transfers/{id}/stream pushes the same data as Server-Sent Events
- DELETE /transfers/{id} drops a finished transfer
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..storage import TransferHistory
from ..transfer import BindError, FileAccessError, TransferDirection

logger = logging.getLogger(__name__)

# Set when the app is created
_service = None
_history: Optional[TransferHistory] = None
_poll_interval = 0.1


# === Pydantic Models ===

class SendRequest(BaseModel):
    """Request to send a file."""
    file_path: str
    host: str
    port: int = Field(ge=1, le=65535)


class ReceiveRequest(BaseModel):
    """Request to receive one file."""
    save_dir: str
    port: int = Field(ge=1, le=65535)
    host: str = '0.0.0.0'


class TransferStatus(BaseModel):
    """Progress and outcome of a transfer."""
    id: str
    direction: str
    filename: str
    total_bytes: int
    transferred_bytes: int
    progress: float
    progress_percent: float
    active: bool
    done: bool
    phase: str
    peer_host: Optional[str] = None
    peer_port: Optional[int] = None
    error: Optional[str] = None
    elapsed_seconds: float
    speed_bytes_per_sec: float
    record_id: Optional[int] = None


class HistoryEntry(BaseModel):
    """A recorded transfer."""
    id: int
    filename: str
    filesize: int
    direction: str
    timestamp: str
    peer_host: str
    peer_port: int


# === API Creation ===

def create_app(service=None, history: Optional[TransferHistory] = None,
               poll_interval: float = 0.1) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: TransferService that runs the transfers
        history: Transfer history for GET /history (optional)
        poll_interval: Seconds between progress events on /stream

    Returns:
        FastAPI application
    """
    global _service, _history, _poll_interval
    _service = service
    _history = history
    _poll_interval = poll_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("API server starting...")
        yield
        logger.info("API server stopping...")
        if _service:
            await _service.close()

    app = FastAPI(
        title="File Transfer API",
        description="Send and receive single files over TCP",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_service():
        if not _service:
            raise HTTPException(status_code=503, detail="Transfer service not initialized")
        return _service

    def get_handle(transfer_id: str):
        handle = require_service().get(transfer_id)
        if handle is None:
            raise HTTPException(status_code=404, detail=f"Unknown transfer: {transfer_id}")
        return handle

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        active = 0
        if _service:
            active = sum(1 for h in _service.list_transfers() if not h.done)
        return {
            "name": "File Transfer",
            "version": "1.0.0",
            "status": "running" if _service else "not running",
            "active_transfers": active,
            "history": _history is not None,
        }

    # === Transfers ===

    @app.post("/transfers/send", response_model=TransferStatus,
              status_code=202, tags=["Transfers"])
    async def send_file(request: SendRequest):
        """Start sending a file; poll GET /transfers/{id} for progress."""
        service = require_service()

        file_path = Path(request.file_path)
        if not file_path.is_absolute():
            file_path = file_path.resolve()

        logger.info(f"Send request for {file_path} to {request.host}:{request.port}")

        try:
            handle = await service.start_send(file_path, request.host, request.port)
        except FileAccessError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return TransferStatus(**handle.to_dict())

    @app.post("/transfers/receive", response_model=TransferStatus,
              status_code=202, tags=["Transfers"])
    async def receive_file(request: ReceiveRequest):
        """Start listening for one file."""
        service = require_service()

        try:
            handle = await service.start_receive(Path(request.save_dir), request.port,
                                                 host=request.host)
        except FileAccessError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except BindError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return TransferStatus(**handle.to_dict())

    @app.get("/transfers", response_model=List[TransferStatus], tags=["Transfers"])
    async def list_transfers():
        """List transfers started since the server came up."""
        service = require_service()
        return [TransferStatus(**h.to_dict()) for h in service.list_transfers()]

    @app.get("/transfers/{transfer_id}", response_model=TransferStatus, tags=["Transfers"])
    async def get_transfer(transfer_id: str):
        """Current progress of one transfer."""
        return TransferStatus(**get_handle(transfer_id).to_dict())

    @app.post("/transfers/{transfer_id}/abort", tags=["Transfers"])
    async def abort_transfer(transfer_id: str):
        """Abort a running transfer."""
        get_handle(transfer_id)
        return {"aborted": _service.abort(transfer_id)}

    @app.delete("/transfers/{transfer_id}", status_code=204, tags=["Transfers"])
    async def forget_transfer(transfer_id: str):
        """Drop a finished transfer from the list."""
        get_handle(transfer_id)
        if not _service.forget(transfer_id):
            raise HTTPException(status_code=409, detail="Transfer is still running")
        return Response(status_code=204)

    @app.get("/transfers/{transfer_id}/stream", tags=["Transfers"])
    async def stream_transfer(transfer_id: str):
        """
        Transfer progress as Server-Sent Events.

        One event per poll interval until the transfer finishes, then a
        final event carrying the terminal phase.
        """
        handle = get_handle(transfer_id)

        async def event_generator():
            last = None
            while not handle.done:
                data = handle.to_dict()
                if data != last:
                    yield f"data: {json.dumps(data)}\n\n"
                    last = data
                else:
                    yield ": heartbeat\n\n"
                await asyncio.sleep(_poll_interval)

            yield f"data: {json.dumps(handle.to_dict())}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            }
        )

    # === History ===

    @app.get("/history", response_model=List[HistoryEntry], tags=["History"])
    async def get_history(direction: Optional[TransferDirection] = Query(None),
                          limit: Optional[int] = Query(None, ge=1)):
        """Completed transfers, oldest first."""
        if _history is None or not _history.is_connected:
            raise HTTPException(status_code=503, detail="Transfer history not available")

        records = await _history.get_all_transfers(direction=direction, limit=limit)
        return [HistoryEntry(**r.to_dict()) for r in records]

    return app


async def run_api_server(service, history: Optional[TransferHistory] = None,
                         host: str = "127.0.0.1", port: int = 8000,
                         poll_interval: float = 0.1):
    """
    Run the API server.

    Args:
        service: TransferService instance
        history: Transfer history (optional)
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(service, history, poll_interval=poll_interval)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
