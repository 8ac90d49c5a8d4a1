from __future__ import annotations


class RelayError(Exception):
    """Base class for errors reported back to the originating client."""

    code = "RelayError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = str(message or self.code)

    def to_payload(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidRole(RelayError):
    code = "InvalidRole"

    def __init__(self, role: object = None, message: str = ""):
        self.role = role
        super().__init__(message or f"Invalid role {role!r}; expected 'interviewer' or 'candidate'")


class MissingField(RelayError):
    code = "MissingField"

    def __init__(self, field: str):
        self.field = str(field)
        super().__init__(f"Missing required field: {self.field}")

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class NotFound(RelayError):
    code = "NotFound"
    status_code = 404

    def __init__(self, kind: str, key: str):
        self.kind = str(kind)
        self.key = str(key)
        super().__init__(f"{self.kind.capitalize()} not found: {self.key}")


class NotRegistered(RelayError):
    code = "NotRegistered"
    status_code = 409

    def __init__(self):
        super().__init__("Please register before joining a session")


class NotInSession(RelayError):
    code = "NotInSession"
    status_code = 409

    def __init__(self):
        super().__init__("Join a session before sending session messages")


class UnknownMessageType(RelayError):
    code = "UnknownMessageType"

    def __init__(self, message_type: str):
        self.message_type = str(message_type)
        super().__init__(f"Unknown message type: {self.message_type}")


class UnknownRequestType(RelayError):
    code = "UnknownRequestType"

    def __init__(self, request_type: str):
        self.request_type = str(request_type)
        super().__init__(f"Unknown AI request type: {self.request_type}")


class InvalidMessage(RelayError):
    code = "InvalidMessage"


class UpstreamUnavailable(RelayError):
    code = "UpstreamUnavailable"
    status_code = 503


class MalformedCompletion(RelayError):
    code = "MalformedCompletion"
    status_code = 502

    def __init__(self, raw_text: str, message: str = "Failed to parse AI response"):
        self.raw_text = str(raw_text or "")
        super().__init__(message)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["rawResponse"] = self.raw_text
        return payload


class InternalError(RelayError):
    code = "InternalError"
    status_code = 500

    def __init__(self, message: str = "Internal error while handling message"):
        super().__init__(message)


class TransportClosed(RelayError):
    code = "TransportClosed"
    status_code = 410
