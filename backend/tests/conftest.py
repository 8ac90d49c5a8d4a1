import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from starlette.websockets import WebSocketState


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interview_relay.ai.gateway import CompletionGateway  # noqa: E402
from interview_relay.router.engine import MessageRouter  # noqa: E402
from interview_relay.router.events import ConnectionClosed, ConnectionOpened, MessageReceived  # noqa: E402
from interview_relay.session.registry import ConnectionRegistry  # noqa: E402
from interview_relay.session.store import SessionStore  # noqa: E402
from interview_relay.session.transport import WebSocketTransport  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")


class FakeWebSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.close_code = None

    async def send_text(self, payload: str):
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str = ""):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def messages(self, message_type: str | None = None) -> list[dict]:
        decoded = [json.loads(item) for item in self.sent]
        if message_type is None:
            return decoded
        return [item for item in decoded if item.get("type") == message_type]


class FakeCompletions:
    def __init__(self, content=None, error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeTranscriptions:
    def __init__(self, text: str = "", language: str | None = "en", error: Exception | None = None):
        self.text = text
        self.language = language
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        audio_file = kwargs.get("file")
        self.calls.append({**kwargs, "file_name": getattr(audio_file, "name", None), "body": audio_file.read()})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text, language=self.language, duration=1.5)


class FakeOpenAIClient:
    def __init__(self, content=None, error: Exception | None = None, transcript_text: str = ""):
        self.chat = SimpleNamespace(completions=FakeCompletions(content=content, error=error))
        self.audio = SimpleNamespace(transcriptions=FakeTranscriptions(text=transcript_text, error=error))


class RelayHarness:
    """Router wired to fake sockets and a fake OpenAI client."""

    def __init__(
        self,
        content=None,
        error: Exception | None = None,
        configured: bool = True,
        auto_analyze_answers: bool = True,
    ):
        self.client = FakeOpenAIClient(content=content, error=error) if configured else None
        self.registry = ConnectionRegistry()
        self.store = SessionStore()
        self.transport = WebSocketTransport()
        self.gateway = CompletionGateway(client=self.client, model="test-model")
        self.router = MessageRouter(
            registry=self.registry,
            store=self.store,
            transport=self.transport,
            gateway=self.gateway,
            auto_analyze_answers=auto_analyze_answers,
        )
        self.sockets: dict[str, FakeWebSocket] = {}

    async def __aenter__(self):
        self.router.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.router.stop()

    async def connect(self, connection_id: str) -> FakeWebSocket:
        ws = FakeWebSocket()
        self.sockets[connection_id] = ws
        self.transport.attach(connection_id, ws)
        await self.router.submit(ConnectionOpened(connection_id=connection_id))
        await self.router.drain()
        return ws

    async def send(self, connection_id: str, payload) -> None:
        await self.router.submit(MessageReceived(connection_id=connection_id, payload=payload))
        await self.router.drain()

    async def disconnect(self, connection_id: str) -> None:
        await self.router.submit(ConnectionClosed(connection_id=connection_id))
        await self.router.drain()

    async def join(self, connection_id: str, name: str, role: str, session_id: str) -> FakeWebSocket:
        ws = await self.connect(connection_id)
        await self.send(connection_id, {"type": "register", "name": name, "role": role})
        await self.send(connection_id, {"type": "join-session", "sessionId": session_id})
        return ws


@pytest.fixture
def relay_harness():
    return RelayHarness


@pytest.fixture
def fake_openai_client():
    return FakeOpenAIClient


@pytest.fixture
def fake_websocket():
    return FakeWebSocket
