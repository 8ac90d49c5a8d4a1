from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from interview_relay.errors import RelayError


class Delivery(str, Enum):
    SENDER = "sender"
    ALL = "all"
    OTHERS = "others"
    INTERVIEWERS = "interviewers"


@dataclass
class ConnectionOpened:
    connection_id: str


@dataclass
class MessageReceived:
    connection_id: str
    payload: Any = None


@dataclass
class ConnectionClosed:
    connection_id: str
    reason: str = "client_disconnect"


@dataclass
class IdleSweep:
    connection_ttl_sec: float
    session_ttl_sec: float


@dataclass
class AIRequestContext:
    """
    Where an AI result goes once the gateway call finishes.
    Captured when the request is spawned.
    """
    request_type: str
    requester_id: str
    session_id: Optional[str] = None
    delivery: Delivery = Delivery.SENDER
    event_type: str = "ai-response"
    fanout: tuple[tuple[Delivery, str], ...] = ()
    extra: dict = field(default_factory=dict)


@dataclass
class AICompleted:
    context: AIRequestContext
    result: Any = None
    error: Optional[RelayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


RouterEvent = ConnectionOpened | MessageReceived | ConnectionClosed | AICompleted | IdleSweep
