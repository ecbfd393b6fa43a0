# warpio_gateway/api/terminal.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..core.context import context
from ..core.session import TerminalSession, Transport
from ..utils.logger import get_logger

router = APIRouter(tags=["Terminal"])
logger = get_logger("warpio_gateway.terminal")


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.application_state == WebSocketState.CONNECTED
        and websocket.client_state == WebSocketState.CONNECTED
    )


class WebSocketTransport(Transport):
    """JSON text frames carry events; binary frames are raw terminal input."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        if not _is_open(self.websocket):
            return
        try:
            await self.websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError, OSError):
            # Client is gone; output in flight is dropped.
            logger.debug("Dropped %s event for closed connection", event.get("type"))

    async def receive(self) -> Optional[Dict[str, Any]]:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return None
            raw = message.get("bytes")
            if raw is not None:
                return {"type": "data", "data": raw}
            text = message.get("text")
            if text is None:
                continue
            try:
                payload = json.loads(text)
            except ValueError:
                logger.debug("Ignoring malformed terminal frame")
                continue
            if isinstance(payload, dict):
                return payload


@router.websocket("/ws/terminal")
async def terminal_socket(websocket: WebSocket):
    await websocket.accept()
    session = TerminalSession(
        WebSocketTransport(websocket),
        tokens=context.tokens,
        provisioner=context.provisioner,
        config=context.config,
    )
    context.sessions.add(session)
    try:
        await session.run()
    finally:
        context.sessions.remove(session)
        if _is_open(websocket):
            try:
                await websocket.close()
            except (RuntimeError, OSError):
                pass
