from interview_relay.router.engine import MessageRouter
from interview_relay.router.events import (
    AICompleted,
    AIRequestContext,
    ConnectionClosed,
    ConnectionOpened,
    Delivery,
    IdleSweep,
    MessageReceived,
)

__all__ = [
    "AICompleted",
    "AIRequestContext",
    "ConnectionClosed",
    "ConnectionOpened",
    "Delivery",
    "IdleSweep",
    "MessageReceived",
    "MessageRouter",
]
