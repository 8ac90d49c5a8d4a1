from fastapi import FastAPI, UploadFile, File, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import asyncio
import logging
import time

from core.config import (
    BACKEND_URL,
    CONNECTION_IDLE_TTL_SEC,
    PORT,
    RELAY_URL,
    SESSION_CLEANUP_INTERVAL_SEC,
    SESSION_IDLE_TTL_SEC,
    TRANSCRIBE_MAX_BYTES,
    get_allowed_origins,
)
from interview_relay.ai.prompts import (
    ANALYZE_ANSWER,
    GENERATE_QUESTIONS,
    GET_FEEDBACK,
    IMPROVE_TRANSCRIPTION,
    SUGGEST_FOLLOWUP,
)
from interview_relay.api.ws_relay import router as relay_ws_router, runtime
from interview_relay.errors import RelayError
from interview_relay.router.events import IdleSweep
from interview_relay.schemas import (
    AnalyzeAnswerRequest,
    FeedbackRequest,
    FollowupRequest,
    GenerateQuestionsRequest,
    ImproveTranscriptionRequest,
)
from interview_relay.session.models import iso_timestamp
from interview_relay.system_metrics import get_metrics_snapshot

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

app = FastAPI(title="Interview Relay")
logger = logging.getLogger("interview_relay.main")

_allowed_origins = get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)
app.include_router(relay_ws_router)

_started_at = time.time()
_session_cleanup_task: asyncio.Task | None = None


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    body = {"success": False, "error": exc.message, "timestamp": iso_timestamp()}
    body.update(exc.to_payload())
    return JSONResponse(status_code=exc.status_code, content=body)


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info("[SYSTEM] relay_url=%s backend_url=%s", RELAY_URL, BACKEND_URL)
    if not runtime.gateway.configured:
        logger.warning("[SYSTEM] AI gateway not configured; AI requests will fail with UpstreamUnavailable")

    runtime.router.start()

    async def _session_cleanup_loop():
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
            await runtime.router.submit(
                IdleSweep(
                    connection_ttl_sec=CONNECTION_IDLE_TTL_SEC,
                    session_ttl_sec=SESSION_IDLE_TTL_SEC,
                )
            )

    _session_cleanup_task = asyncio.create_task(_session_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_cleanup_task
    if _session_cleanup_task is not None:
        _session_cleanup_task.cancel()
        try:
            await _session_cleanup_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_cleanup_task = None
    await runtime.router.stop()
    logger.info("[SYSTEM] shutdown complete")


@app.get("/")
async def root():
    return {
        "message": "Interview Relay",
        "endpoints": {
            "websocket": RELAY_URL,
            "health": f"{BACKEND_URL}/health",
            "clients": f"{BACKEND_URL}/clients",
            "sessions": f"{BACKEND_URL}/sessions",
            "ai": {
                "generateQuestions": "POST /ai/generate-questions",
                "analyzeAnswer": "POST /ai/analyze-answer",
                "getFeedback": "POST /ai/get-feedback",
                "suggestFollowup": "POST /ai/suggest-followup",
                "improveTranscription": "POST /ai/improve-transcription",
            },
            "transcribe": "POST /transcribe",
        },
        "timestamp": iso_timestamp(),
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "connectedClients": len(runtime.registry),
        "activeSessions": len(runtime.store),
        "aiConfigured": runtime.gateway.configured,
        "uptime": round(time.time() - _started_at, 3),
        "timestamp": iso_timestamp(),
    }


@app.get("/clients")
async def list_clients():
    clients = [item.to_dict() for item in runtime.registry.list()]
    return {
        "totalClients": len(clients),
        "clients": clients,
        "timestamp": iso_timestamp(),
    }


@app.get("/sessions")
async def list_sessions():
    sessions = runtime.store.list_summaries()
    return {
        "totalSessions": len(sessions),
        "sessions": sessions,
        "timestamp": iso_timestamp(),
    }


@app.get("/sessions/{session_id}")
async def get_session(session_id: str, include_notes: bool = False):
    session = runtime.store.require(session_id)
    return {
        "session": session.to_dict(include_notes=include_notes),
        "timestamp": iso_timestamp(),
    }


@app.post("/ai/generate-questions")
async def generate_questions(req: GenerateQuestionsRequest):
    questions = await runtime.gateway.complete(GENERATE_QUESTIONS, req.to_data())
    return {"success": True, "questions": questions, "timestamp": iso_timestamp()}


@app.post("/ai/analyze-answer")
async def analyze_answer(req: AnalyzeAnswerRequest):
    analysis = await runtime.gateway.complete(ANALYZE_ANSWER, req.to_data())
    return {"success": True, "analysis": analysis, "timestamp": iso_timestamp()}


@app.post("/ai/get-feedback")
async def get_feedback(req: FeedbackRequest):
    data = req.to_data()
    if req.session_id and not req.transcript:
        session = runtime.store.require(req.session_id)
        data["transcript"] = [item.to_dict() for item in session.transcript]
        data.setdefault("questions", [item.question for item in session.questions])
    feedback = await runtime.gateway.complete(GET_FEEDBACK, data)
    return {"success": True, "feedback": feedback, "timestamp": iso_timestamp()}


@app.post("/ai/suggest-followup")
async def suggest_followup(req: FollowupRequest):
    followup = await runtime.gateway.complete(SUGGEST_FOLLOWUP, req.to_data())
    return {"success": True, "followup": followup, "timestamp": iso_timestamp()}


@app.post("/ai/improve-transcription")
async def improve_transcription(req: ImproveTranscriptionRequest):
    improved = await runtime.gateway.complete(IMPROVE_TRANSCRIPTION, req.to_data())
    return {"success": True, "improved": improved, "timestamp": iso_timestamp()}


@app.post("/transcribe")
async def transcribe(
    audio: UploadFile | None = File(None),
    language: str | None = Form(None),
    prompt: str | None = Form(None),
):
    if audio is None:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "No audio file provided", "timestamp": iso_timestamp()},
        )

    content = await audio.read()
    if len(content) > TRANSCRIBE_MAX_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "success": False,
                "error": f"Audio file exceeds {TRANSCRIBE_MAX_BYTES} bytes",
                "timestamp": iso_timestamp(),
            },
        )

    result = await runtime.transcriber.transcribe(
        content,
        filename=audio.filename or "audio.webm",
        language=language,
        prompt=prompt,
    )
    payload = {"success": True, "timestamp": iso_timestamp()}
    payload.update(result.to_dict())
    return payload


@app.get("/system/metrics")
def system_metrics():
    return get_metrics_snapshot(
        extra={
            "connected_clients": len(runtime.registry),
            "sessions_total": len(runtime.store),
        }
    )


def run() -> None:
    import uvicorn

    uvicorn.run("interview_relay.main:app", host="0.0.0.0", port=PORT)
