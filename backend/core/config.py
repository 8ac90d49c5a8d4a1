import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()
MODEL_NAME = str(os.getenv("MODEL_NAME") or "gpt-4o-mini").strip()
STT_MODEL = str(os.getenv("STT_MODEL") or "whisper-1").strip()

PORT = int(os.getenv("PORT", "3000"))
BACKEND_URL = str(os.getenv("BACKEND_URL") or f"http://localhost:{PORT}").strip().rstrip("/")
RELAY_URL = str(os.getenv("RELAY_URL") or f"ws://localhost:{PORT}/ws").strip()

WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))
TRANSCRIBE_MAX_BYTES = max(1024, int(os.getenv("TRANSCRIBE_MAX_BYTES", str(25 * 1024 * 1024))))
AUTO_ANALYZE_ANSWERS = _env_flag("AUTO_ANALYZE_ANSWERS", "true")

SESSION_IDLE_TTL_SEC = max(60, int(os.getenv("SESSION_IDLE_TTL_SEC", "3600")))
CONNECTION_IDLE_TTL_SEC = max(60, int(os.getenv("CONNECTION_IDLE_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))


def get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return ["*"]
    return [item.strip() for item in raw.split(",") if item.strip()]
