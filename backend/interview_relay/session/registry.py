from __future__ import annotations

import time
import uuid
from threading import Lock

from interview_relay.errors import InvalidRole, MissingField, NotFound
from interview_relay.session.models import Connection, VALID_ROLES


class ConnectionRegistry:
    def __init__(self):
        self._lock = Lock()
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def open(self, connection_id: str | None = None) -> Connection:
        connection = Connection(connection_id=str(connection_id or uuid.uuid4().hex))
        with self._lock:
            self._connections[connection.connection_id] = connection
        return connection

    def register(self, connection_id: str, name: str, role: str) -> Connection:
        normalized_role = str(role or "").strip().lower()
        if normalized_role not in VALID_ROLES:
            raise InvalidRole(role)
        normalized_name = str(name or "").strip()
        if not normalized_name:
            raise MissingField("name")

        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise NotFound("connection", connection_id)
            connection.name = normalized_name
            connection.role = normalized_role
            connection.last_seen_at = time.time()
            return connection

    def lookup(self, connection_id: str) -> Connection:
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            raise NotFound("connection", connection_id)
        return connection

    def get(self, connection_id: str) -> Connection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def set_session(self, connection_id: str, session_id: str | None) -> None:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise NotFound("connection", connection_id)
            connection.session_id = session_id

    def touch(self, connection_id: str) -> None:
        with self._lock:
            if connection_id in self._connections:
                self._connections[connection_id].last_seen_at = time.time()

    def remove(self, connection_id: str) -> Connection | None:
        with self._lock:
            return self._connections.pop(connection_id, None)

    def list(self) -> list[Connection]:
        with self._lock:
            return list(self._connections.values())

    def all_ids(self) -> list[str]:
        with self._lock:
            return list(self._connections.keys())

    def connections_in_session(self, session_id: str, role: str | None = None) -> list[Connection]:
        if not session_id:
            return []
        with self._lock:
            return [
                item
                for item in self._connections.values()
                if item.session_id == session_id and (role is None or item.role == role)
            ]

    def idle_connections(self, ttl_sec: float) -> list[str]:
        cutoff = time.time() - max(1.0, float(ttl_sec or 1800.0))
        with self._lock:
            return [
                connection_id
                for connection_id, item in self._connections.items()
                if float(item.last_seen_at or 0.0) <= cutoff
            ]
