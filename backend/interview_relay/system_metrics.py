import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "ws_connections_active": 0.0,
    "ws_connections_total": 0.0,
    "ws_messages_received": 0.0,
    "ws_messages_sent": 0.0,
    "ws_send_skipped": 0.0,
    "ws_message_errors": 0.0,
    "sessions_active": 0.0,
    "sessions_cleaned": 0.0,
    "connections_idle_closed": 0.0,
    "ai_requests_started": 0.0,
    "ai_requests_failed": 0.0,
    "ai_latency_total_ms": 0.0,
    "ai_latency_samples": 0.0,
    "transcriptions_total": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def observe_ai_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["ai_latency_total_ms"] = float(_metrics.get("ai_latency_total_ms", 0.0)) + latency
        _metrics["ai_latency_samples"] = float(_metrics.get("ai_latency_samples", 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("ai_latency_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for key, value in data.items():
        if key == "ai_latency_total_ms":
            payload[key] = float(value or 0.0)
        else:
            payload[key] = int(value or 0.0)
    payload["avg_ai_latency_ms"] = round(float(data.get("ai_latency_total_ms") or 0.0) / latency_samples, 2)

    if extra:
        payload.update(extra)
    return payload
