import asyncio
import json

import pytest
from starlette.websockets import WebSocketState

from interview_relay.session.transport import WebSocketTransport


class SlowWebSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_text(self, payload: str):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.sent.append(payload)
        self.in_flight -= 1


@pytest.mark.asyncio
async def test_send_serializes_single_connection():
    transport = WebSocketTransport()
    ws = SlowWebSocket()
    transport.attach("c1", ws)

    results = await asyncio.gather(*[transport.send("c1", {"index": i}) for i in range(50)])

    assert all(results)
    assert ws.max_in_flight == 1
    decoded = [json.loads(item)["index"] for item in ws.sent]
    assert sorted(decoded) == list(range(50))


@pytest.mark.asyncio
async def test_send_to_closed_or_unknown_connection_is_skipped(fake_websocket):
    transport = WebSocketTransport()
    ws = fake_websocket()
    ws.client_state = WebSocketState.DISCONNECTED
    transport.attach("c1", ws)

    assert await transport.send("c1", {"type": "pong"}) is False
    assert await transport.send("missing", {"type": "pong"}) is False
    assert ws.sent == []


@pytest.mark.asyncio
async def test_send_failure_does_not_raise(fake_websocket):
    class BrokenWebSocket(fake_websocket):
        async def send_text(self, payload: str):
            raise RuntimeError("socket reset")

    transport = WebSocketTransport()
    transport.attach("c1", BrokenWebSocket())

    assert await transport.send("c1", {"type": "pong"}) is False


@pytest.mark.asyncio
async def test_detach_and_close(fake_websocket):
    transport = WebSocketTransport()
    ws = fake_websocket()
    transport.attach("c1", ws)
    assert "c1" in transport

    await transport.close("c1", reason="idle")
    assert ws.close_code == 1000

    transport.detach("c1")
    assert "c1" not in transport
    assert await transport.send("c1", {"type": "pong"}) is False
