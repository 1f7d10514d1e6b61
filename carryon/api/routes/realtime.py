"""
Websocket endpoint
==================

WS /ws?token=<jwt>&role=<customer|driver>

Frames in both directions are JSON objects ``{"event": ..., "data": ...}``.
A missing or invalid token still connects, as ``Anonymous``, but every
room join is refused.  However the socket ends, the hub forgets it and a
driver is marked offline.
"""

import json
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from carryon.domain.errors import ValidationError
from carryon.domain.identity import ANONYMOUS, Driver
from carryon.realtime import events

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.websocket = websocket

    async def send(self, message: dict[str, Any]) -> None:
        await self.websocket.send_json(message)


@router.websocket("/ws")
async def realtime(websocket: WebSocket, token: Optional[str] = None, role: Optional[str] = None):
    state = websocket.app.state
    identity = state.tokens.resolve(token, role)

    vehicle_type, online = None, False
    if isinstance(identity, Driver):
        driver = await state.presence.get_driver(identity.id)
        if driver is None:
            identity = ANONYMOUS
        else:
            vehicle_type, online = driver.vehicle_type, driver.is_online

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    await state.hub.connect(connection, identity, vehicle_type=vehicle_type, online=online)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                error = ValidationError("Frames must be JSON objects")
                payload = events.ErrorEvent(code=error.code, message=error.message)
                await connection.send({"event": events.ERROR, "data": payload.dump()})
                continue
            await state.gateway.handle(connection.id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await state.hub.disconnect(connection.id)
