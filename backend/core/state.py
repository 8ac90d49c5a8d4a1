# backend/core/state.py

from enum import Enum

class ConnectionState(str, Enum):
    CONNECTED = "connected"
    REGISTERED = "registered"
    IN_SESSION = "in_session"
    DISCONNECTED = "disconnected"
