from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import time
import uuid

from core.state import ConnectionState


INTERVIEWER = "interviewer"
CANDIDATE = "candidate"
VALID_ROLES = frozenset({INTERVIEWER, CANDIDATE})


def iso_timestamp(ts: float | None = None) -> str:
    value = time.time() if ts is None else float(ts)
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def short_id() -> str:
    return uuid.uuid4().hex[:9]


@dataclass
class Connection:
    """
    One transport connection. Created at open, removed at close.
    """
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    name: Optional[str] = None
    role: Optional[str] = None  # interviewer | candidate | None until registered
    session_id: Optional[str] = None
    connected_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)

    @property
    def is_registered(self) -> bool:
        return bool(self.name) and self.role in VALID_ROLES

    @property
    def state(self) -> ConnectionState:
        if not self.is_registered:
            return ConnectionState.CONNECTED
        if self.session_id:
            return ConnectionState.IN_SESSION
        return ConnectionState.REGISTERED

    def to_dict(self) -> dict:
        return {
            "clientId": self.connection_id,
            "name": self.name,
            "role": self.role,
            "sessionId": self.session_id,
            "state": self.state.value,
            "connectedAt": iso_timestamp(self.connected_at),
        }


@dataclass
class Participant:
    connection_id: str
    name: str
    role: str
    joined_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "clientId": self.connection_id,
            "name": self.name,
            "role": self.role,
            "joinedAt": iso_timestamp(self.joined_at),
        }


@dataclass
class TranscriptEntry:
    """
    A transcription fragment. Only entries with is_final=True are kept
    on the session.
    """
    connection_id: str
    speaker: str
    role: str
    text: str
    confidence: float = 0.0
    is_final: bool = False
    language: str = "en"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "clientId": self.connection_id,
            "speaker": self.speaker,
            "role": self.role,
            "text": self.text,
            "confidence": self.confidence,
            "isFinal": self.is_final,
            "language": self.language,
            "timestamp": iso_timestamp(self.created_at),
        }


@dataclass
class Question:
    connection_id: str
    interviewer: str
    question: str
    category: str = "general"
    difficulty: str = "medium"
    question_id: str = field(default_factory=short_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.question_id,
            "clientId": self.connection_id,
            "interviewer": self.interviewer,
            "question": self.question,
            "category": self.category,
            "difficulty": self.difficulty,
            "timestamp": iso_timestamp(self.created_at),
        }


@dataclass
class Note:
    connection_id: str
    author: str
    role: str
    note: str
    category: str = "general"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "clientId": self.connection_id,
            "author": self.author,
            "role": self.role,
            "note": self.note,
            "category": self.category,
            "timestamp": iso_timestamp(self.created_at),
        }


@dataclass
class Session:
    session_id: str
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    participants: list[Participant] = field(default_factory=list)
    transcript: list[TranscriptEntry] = field(default_factory=list)
    questions: list[Question] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)

    def find_question(self, question_id: str | None) -> Question | None:
        if not question_id:
            return None
        for item in self.questions:
            if item.question_id == question_id:
                return item
        return None

    def summary(self) -> dict:
        return {
            "id": self.session_id,
            "createdAt": iso_timestamp(self.created_at),
            "participantCount": len(self.participants),
            "questionCount": len(self.questions),
            "transcriptLength": len(self.transcript),
        }

    def to_dict(self, include_notes: bool = True) -> dict:
        payload = {
            "id": self.session_id,
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
            "participants": [item.to_dict() for item in self.participants],
            "transcript": [item.to_dict() for item in self.transcript],
            "questions": [item.to_dict() for item in self.questions],
        }
        if include_notes:
            payload["notes"] = [item.to_dict() for item in self.notes]
        return payload
