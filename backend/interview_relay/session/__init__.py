from interview_relay.session.models import Connection, Note, Participant, Question, Session, TranscriptEntry
from interview_relay.session.registry import ConnectionRegistry
from interview_relay.session.store import SessionStore
from interview_relay.session.transport import Transport, WebSocketTransport

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Note",
    "Participant",
    "Question",
    "Session",
    "SessionStore",
    "TranscriptEntry",
    "Transport",
    "WebSocketTransport",
]
