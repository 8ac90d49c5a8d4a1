from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol

from starlette.websockets import WebSocket, WebSocketState

from interview_relay.errors import TransportClosed
from interview_relay.system_metrics import increment_metric

logger = logging.getLogger("interview_relay.transport")


class Transport(Protocol):
    async def send(self, connection_id: str, payload: dict) -> bool:
        ...

    async def close(self, connection_id: str, reason: str = "") -> None:
        ...

    def detach(self, connection_id: str) -> None:
        ...


class WebSocketTransport:
    """Delivers JSON payloads to attached websockets, one send lock per socket."""

    def __init__(self):
        self._sockets: dict[str, WebSocket] = {}
        self._send_locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sockets

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket
        self._send_locks.setdefault(connection_id, asyncio.Lock())

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self._send_locks.pop(connection_id, None)

    async def _send_text_with_lock(self, connection_id: str, encoded_payload: str) -> None:
        websocket = self._sockets.get(connection_id)
        send_lock = self._send_locks.get(connection_id)
        if websocket is None or send_lock is None:
            raise TransportClosed(f"connection {connection_id} is not attached")
        if websocket.client_state != WebSocketState.CONNECTED:
            raise TransportClosed(f"connection {connection_id} is closed")
        async with send_lock:
            try:
                await websocket.send_text(encoded_payload)
            except Exception as exc:
                raise TransportClosed(str(exc)) from exc

    async def send(self, connection_id: str, payload: dict) -> bool:
        try:
            encoded = json.dumps(payload, default=str)
        except Exception as exc:
            logger.warning("ws payload encode failed | connection_id=%s err=%s", connection_id, exc)
            return False
        try:
            await self._send_text_with_lock(connection_id, encoded)
        except TransportClosed as exc:
            increment_metric("ws_send_skipped", 1)
            logger.debug("ws send skipped | connection_id=%s reason=%s", connection_id, exc.message)
            return False
        increment_metric("ws_messages_sent", 1)
        return True

    async def close(self, connection_id: str, reason: str = "") -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None or websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.close(code=1000, reason=str(reason or "")[:120])
        except Exception as exc:
            logger.warning("ws close failed | connection_id=%s err=%s", connection_id, exc)
