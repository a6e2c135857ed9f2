"""
PTY CRUD routes and the terminal WebSocket endpoint.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from ..terminal.models import (
    CreatePtyRequest,
    CreatePtyResponse,
    PtySessionInfo,
    TerminalSize,
)
from ..terminal.registry import SessionRegistry
from .auth import validate_websocket_connection, verify_token
from .websocket_handler import PtySocketHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pty", dependencies=[Depends(verify_token)])

# Authenticated inside the endpoint: HTTP dependencies cannot refuse an upgrade
ws_router = APIRouter(prefix="/pty")


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


@router.get("", response_model=List[PtySessionInfo])
async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    return registry.list()


@router.post("", response_model=CreatePtyResponse, status_code=201)
async def create_session(
    body: CreatePtyRequest, registry: SessionRegistry = Depends(get_registry)
):
    # SpawnError propagates to the 500 handler
    session = await registry.create(body)
    return CreatePtyResponse(name=session.name, cwd=session.cwd)


@router.get("/{name}", response_model=PtySessionInfo)
async def get_session(name: str, registry: SessionRegistry = Depends(get_registry)):
    return registry.require(name).info()


@router.post("/{name}/resize")
async def resize_session(
    name: str, body: TerminalSize, registry: SessionRegistry = Depends(get_registry)
):
    registry.resize(name, body.cols, body.rows)
    return {"ok": True}


@router.delete("/{name}")
async def kill_session(name: str, registry: SessionRegistry = Depends(get_registry)):
    registry.kill(name)
    return {"ok": True}


@ws_router.websocket("/{name}/ws")
async def pty_websocket(
    websocket: WebSocket,
    name: str,
    cursor: int = 0,
    cols: int = 80,
    rows: int = 24,
):
    subprotocol = await validate_websocket_connection(websocket)
    if subprotocol is None:
        return  # Connection was refused by the validator

    registry: SessionRegistry = websocket.app.state.registry
    handler = PtySocketHandler(registry, name, websocket, cursor, cols, rows)

    try:
        if not await handler.on_open(subprotocol):
            return

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            handler.on_message(message)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        handler.on_error(e)
    finally:
        await handler.on_close()
