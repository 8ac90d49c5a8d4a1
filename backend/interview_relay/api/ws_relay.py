from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect
from dataclasses import dataclass
import json
import logging
import uuid

from core.config import AUTO_ANALYZE_ANSWERS, WS_MAX_TEXT_BYTES
from core.logger import log_event
from interview_relay.ai.gateway import CompletionGateway, build_openai_client
from interview_relay.ai.transcriber import SpeechTranscriber
from interview_relay.router.engine import MessageRouter
from interview_relay.router.events import ConnectionClosed, ConnectionOpened, MessageReceived
from interview_relay.session.registry import ConnectionRegistry
from interview_relay.session.store import SessionStore
from interview_relay.session.transport import WebSocketTransport

logger = logging.getLogger("interview_relay.ws")

router = APIRouter()


@dataclass
class RelayRuntime:
    registry: ConnectionRegistry
    store: SessionStore
    transport: WebSocketTransport
    gateway: CompletionGateway
    transcriber: SpeechTranscriber
    router: MessageRouter


def build_runtime(api_key: str | None = None, auto_analyze_answers: bool = AUTO_ANALYZE_ANSWERS) -> RelayRuntime:
    client = build_openai_client(api_key)
    registry = ConnectionRegistry()
    store = SessionStore()
    transport = WebSocketTransport()
    gateway = CompletionGateway(client=client)
    return RelayRuntime(
        registry=registry,
        store=store,
        transport=transport,
        gateway=gateway,
        transcriber=SpeechTranscriber(client=client),
        router=MessageRouter(
            registry=registry,
            store=store,
            transport=transport,
            gateway=gateway,
            auto_analyze_answers=auto_analyze_answers,
        ),
    )


runtime = build_runtime()


@router.websocket("/ws")
async def relay_ws(websocket: WebSocket):
    connection_id = uuid.uuid4().hex
    relay = runtime.router

    await websocket.accept()
    runtime.transport.attach(connection_id, websocket)
    relay.start()
    await relay.submit(ConnectionOpened(connection_id=connection_id))

    stop_reason = "client_disconnect"
    try:
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                break

            text_payload = msg.get("text")
            if text_payload is None:
                # binary frames are not part of the relay protocol
                await relay.submit(MessageReceived(connection_id=connection_id, payload=None))
                continue

            if len(text_payload.encode("utf-8")) > WS_MAX_TEXT_BYTES:
                logger.warning(
                    "WS message too large | connection_id=%s bytes=%s",
                    connection_id,
                    len(text_payload.encode("utf-8")),
                )
                stop_reason = "message_too_large"
                await websocket.close(code=1009, reason="Message too large")
                break

            try:
                payload = json.loads(text_payload)
            except json.JSONDecodeError as exc:
                logger.warning("Invalid WS JSON | connection_id=%s err=%s", connection_id, exc)
                payload = None
            await relay.submit(MessageReceived(connection_id=connection_id, payload=payload))
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        stop_reason = "receive_error"
        logger.warning("WS receive failed | connection_id=%s err=%s", connection_id, exc)
    finally:
        log_event("ws_relay", "socket_closed", connection_id, reason=stop_reason)
        await relay.submit(ConnectionClosed(connection_id=connection_id, reason=stop_reason))
