from __future__ import annotations

import time
from threading import Lock

from interview_relay.errors import MissingField, NotFound
from interview_relay.session.models import (
    Connection,
    Note,
    Participant,
    Question,
    Session,
    TranscriptEntry,
)


class SessionStore:
    """In-process interview session state.

    Sessions are created on first join and outlive their participants; only
    ``cleanup_idle`` removes them. All mutation happens on the router's
    dispatch path.
    """

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise NotFound("session", session_id)
        return session

    def join_session(self, connection: Connection, session_id: str) -> tuple[Session, str | None]:
        session_key = str(session_id or "").strip()
        if not session_key:
            raise MissingField("sessionId")

        previous_session_id = connection.session_id
        if previous_session_id and previous_session_id != session_key:
            self.leave_session(connection.connection_id, previous_session_id)

        now_ts = time.time()
        with self._lock:
            session = self._sessions.get(session_key)
            if session is None:
                session = Session(session_id=session_key, created_at=now_ts, updated_at=now_ts)
                self._sessions[session_key] = session

            # rejoining the same session replaces the old participant record
            session.participants = [
                item for item in session.participants if item.connection_id != connection.connection_id
            ]
            session.participants.append(
                Participant(
                    connection_id=connection.connection_id,
                    name=str(connection.name or ""),
                    role=str(connection.role or ""),
                    joined_at=now_ts,
                )
            )
            session.updated_at = now_ts

        return session, previous_session_id if previous_session_id != session_key else None

    def leave_session(self, connection_id: str, session_id: str | None) -> bool:
        if not session_id:
            return False
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            before = len(session.participants)
            session.participants = [item for item in session.participants if item.connection_id != connection_id]
            session.updated_at = time.time()
            return len(session.participants) != before

    def update_participant(self, session_id: str, connection: Connection) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            for item in session.participants:
                if item.connection_id == connection.connection_id:
                    item.name = str(connection.name or "")
                    item.role = str(connection.role or "")

    def append_transcript(self, session_id: str, entry: TranscriptEntry) -> bool:
        if not entry.is_final:
            return False
        session = self.require(session_id)
        with self._lock:
            session.transcript.append(entry)
            session.updated_at = time.time()
        return True

    def append_question(self, session_id: str, question: Question) -> Question:
        session = self.require(session_id)
        with self._lock:
            session.questions.append(question)
            session.updated_at = time.time()
        return question

    def append_note(self, session_id: str, note: Note) -> Note:
        session = self.require(session_id)
        with self._lock:
            session.notes.append(note)
            session.updated_at = time.time()
        return note

    def list(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def list_summaries(self) -> list[dict]:
        return [item.summary() for item in self.list()]

    def cleanup_idle(self, ttl_sec: float) -> int:
        cutoff = time.time() - max(1.0, float(ttl_sec or 3600.0))
        removed = 0
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.participants:
                    continue
                if float(session.updated_at or 0.0) <= cutoff:
                    self._sessions.pop(session_id, None)
                    removed += 1
        return removed
