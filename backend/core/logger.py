import json
import logging
from typing import Any

logger = logging.getLogger("interview_relay.events")

# interview content never reaches the log, only its size
REDACTED_FIELDS = frozenset({"text", "transcript", "prompt", "answer", "question", "note", "raw_response"})


def _redacted(value: Any) -> dict:
    text = str(value or "")
    return {"redacted": True, "length": len(text), "words": len(text.split())}


def _scrub(value: Any, field: str = "") -> Any:
    if field.lower() in REDACTED_FIELDS:
        if isinstance(value, (list, tuple)):
            return [_redacted(item) for item in value]
        return _redacted(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(k): _scrub(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_scrub(item) for item in value]
    return str(value)


def log_event(component: str, event: str, connection_id: str, level: int = logging.INFO, **fields) -> None:
    """Emit one JSON line describing a relay lifecycle event.

    Fields whose value is None are dropped.
    """
    record = {
        "component": component or "relay",
        "event": event or "unknown",
        "connection_id": connection_id or "",
    }
    for key, value in fields.items():
        if value is not None:
            record[key] = _scrub(value, key)
    logger.log(level, json.dumps(record, ensure_ascii=False, default=str))
