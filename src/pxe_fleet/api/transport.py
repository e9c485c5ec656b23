"""Starlette WebSocket adapter for the broadcaster's observer transport."""

from __future__ import annotations

from starlette.websockets import WebSocket, WebSocketState


class WebSocketTransport:
    """Server side of one observer connection, backed by a WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if (
            self.websocket.application_state == WebSocketState.DISCONNECTED
            or self.websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return
        await self.websocket.close(code)
