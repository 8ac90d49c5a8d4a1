from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from core.logger import log_event
from core.state import ConnectionState
from interview_relay.ai.gateway import CompletionGateway, normalize_request_type
from interview_relay.ai.prompts import (
    ANALYZE_ANSWER,
    GET_FEEDBACK,
    IMPROVE_TRANSCRIPTION,
    INTERVIEW_INSIGHTS,
    INTERVIEW_SUMMARY,
    REQUEST_POLICIES,
    SUGGEST_FOLLOWUP,
)
from interview_relay.errors import (
    InternalError,
    InvalidMessage,
    InvalidRole,
    MissingField,
    NotInSession,
    NotRegistered,
    RelayError,
    UnknownMessageType,
    UnknownRequestType,
    UpstreamUnavailable,
)
from interview_relay.router.events import (
    AICompleted,
    AIRequestContext,
    ConnectionClosed,
    ConnectionOpened,
    Delivery,
    IdleSweep,
    MessageReceived,
    RouterEvent,
)
from interview_relay.session.models import (
    INTERVIEWER,
    Connection,
    Note,
    Question,
    Session,
    TranscriptEntry,
    iso_timestamp,
)
from interview_relay.session.registry import ConnectionRegistry
from interview_relay.session.store import SessionStore
from interview_relay.session.transport import Transport
from interview_relay.system_metrics import decrement_metric, increment_metric, set_metric

logger = logging.getLogger("interview_relay.router")

Handler = Callable[[Connection, dict], Awaitable[None]]

INTERVIEWER_ONLY_REQUESTS = frozenset({ANALYZE_ANSWER, SUGGEST_FOLLOWUP, INTERVIEW_SUMMARY, INTERVIEW_INSIGHTS})

# results also shared with every interviewer of the requester's session
INTERVIEWER_FANOUT_EVENTS = {
    ANALYZE_ANSWER: "ai_answer_analysis",
    SUGGEST_FOLLOWUP: "ai_followup_questions",
    INTERVIEW_SUMMARY: "ai_interview_summary",
}


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise MissingField(key)
    return str(value).strip()


def _clamp_confidence(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


class MessageRouter:
    """Session-scoped message router.

    Every transport event and every finished AI call goes through one queue
    and is processed to completion before the next, so the registry and the
    session store are only ever mutated from the dispatch loop.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: SessionStore,
        transport: Transport,
        gateway: CompletionGateway,
        auto_analyze_answers: bool = True,
    ):
        self.registry = registry
        self.store = store
        self.transport = transport
        self.gateway = gateway
        self.auto_analyze_answers = bool(auto_analyze_answers)
        self._queue: asyncio.Queue[RouterEvent] = asyncio.Queue()
        self._ai_tasks: set[asyncio.Task] = set()
        self._runner: asyncio.Task | None = None
        self._handlers: dict[str, Handler] = {
            "register": self._on_register,
            "join-session": self._on_join_session,
            "transcription": self._on_transcription,
            "question": self._on_question,
            "answer": self._on_answer,
            "note": self._on_note,
            "ai-request": self._on_ai_request,
            "ping": self._on_ping,
        }

    # ================= LOOP =================

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            # queue is bound to the loop that first waited on it; rebuild per run
            pending: list[RouterEvent] = []
            while not self._queue.empty():
                pending.append(self._queue.get_nowait())
            self._queue = asyncio.Queue()
            for event in pending:
                self._queue.put_nowait(event)
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def stop(self) -> None:
        tasks = list(self._ai_tasks)
        if self._runner is not None:
            tasks.append(self._runner)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ai_tasks.clear()
        self._runner = None

    async def submit(self, event: RouterEvent) -> None:
        await self._queue.put(event)

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.process(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("router event failed | event=%s err=%s", event.__class__.__name__, exc)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until the queue is empty and no AI call is outstanding."""
        while True:
            await self._queue.join()
            pending = [task for task in self._ai_tasks if not task.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    async def process(self, event: RouterEvent) -> None:
        if isinstance(event, MessageReceived):
            await self._on_message(event)
        elif isinstance(event, ConnectionOpened):
            await self._on_open(event)
        elif isinstance(event, ConnectionClosed):
            await self._on_close(event)
        elif isinstance(event, AICompleted):
            await self._on_ai_completed(event)
        elif isinstance(event, IdleSweep):
            await self._on_idle_sweep(event)
        else:
            logger.warning("unknown router event ignored | event=%r", event)

    # ================= DELIVERY =================

    def delivery_set(self, mode: Delivery, sender_id: str | None, session_id: str | None) -> list[str]:
        if mode == Delivery.SENDER:
            return [sender_id] if sender_id else []
        if mode == Delivery.INTERVIEWERS:
            return [item.connection_id for item in self.registry.connections_in_session(session_id, role=INTERVIEWER)]

        if session_id:
            targets = [item.connection_id for item in self.registry.connections_in_session(session_id)]
        else:
            targets = self.registry.all_ids()
        if mode == Delivery.OTHERS:
            targets = [item for item in targets if item != sender_id]
        return targets

    async def send(self, connection_id: str, payload: dict) -> bool:
        return await self.transport.send(connection_id, payload)

    async def deliver(
        self,
        payload: dict,
        mode: Delivery,
        sender_id: str | None = None,
        session_id: str | None = None,
    ) -> list[str]:
        targets = self.delivery_set(mode, sender_id, session_id)
        for connection_id in targets:
            await self.send(connection_id, payload)
        return targets

    async def send_error(self, connection_id: str, error: RelayError, request_type: str = "") -> None:
        payload = {"type": "error", "requestType": request_type or None, "timestamp": iso_timestamp()}
        payload.update(error.to_payload())
        await self.send(connection_id, payload)

    # ================= TRANSPORT EVENTS =================

    async def _on_open(self, event: ConnectionOpened) -> None:
        connection = self.registry.open(event.connection_id)
        increment_metric("ws_connections_active", 1)
        increment_metric("ws_connections_total", 1)
        log_event("router", "connect", connection.connection_id)
        await self.send(connection.connection_id, {
            "type": "connection-confirmed",
            "message": "Connected to interview relay",
            "clientId": connection.connection_id,
            "timestamp": iso_timestamp(),
        })

    async def _on_close(self, event: ConnectionClosed) -> None:
        connection = self.registry.remove(event.connection_id)
        self.transport.detach(event.connection_id)
        if connection is None:
            return

        decrement_metric("ws_connections_active", 1)
        if connection.session_id:
            self.store.leave_session(connection.connection_id, connection.session_id)
            await self.deliver(
                self._presence_payload("user-left", connection),
                Delivery.OTHERS,
                sender_id=connection.connection_id,
                session_id=connection.session_id,
            )
        log_event(
            "router",
            "disconnect",
            connection.connection_id,
            reason=event.reason,
            state=ConnectionState.DISCONNECTED.value,
            session_id=connection.session_id,
            name=connection.name,
        )

    async def _on_idle_sweep(self, event: IdleSweep) -> None:
        idle_ids = self.registry.idle_connections(event.connection_ttl_sec)
        for connection_id in idle_ids:
            await self.transport.close(connection_id, "idle_timeout")
            await self._on_close(ConnectionClosed(connection_id=connection_id, reason="idle_timeout"))
        if idle_ids:
            increment_metric("connections_idle_closed", float(len(idle_ids)))

        removed = self.store.cleanup_idle(event.session_ttl_sec)
        if removed > 0:
            increment_metric("sessions_cleaned", float(removed))
            logger.info("[SYSTEM] cleaned idle sessions=%s", removed)
        set_metric("sessions_active", float(len(self.store)))

    async def _on_message(self, event: MessageReceived) -> None:
        increment_metric("ws_messages_received", 1)
        payload = event.payload
        message_type = ""
        try:
            if not isinstance(payload, dict):
                raise InvalidMessage("Messages must be JSON objects with a 'type' field")
            message_type = str(payload.get("type") or "").strip().lower()
            if not message_type:
                raise MissingField("type")
            handler = self._handlers.get(message_type)
            if handler is None:
                raise UnknownMessageType(message_type)

            connection = self.registry.lookup(event.connection_id)
            self.registry.touch(connection.connection_id)
            log_event("router", "message_received", connection.connection_id, message_type=message_type)
            await handler(connection, payload)
        except RelayError as exc:
            increment_metric("ws_message_errors", 1)
            log_event(
                "router",
                "message_rejected",
                event.connection_id,
                level=logging.WARNING,
                message_type=message_type,
                code=exc.code,
            )
            await self.send_error(event.connection_id, exc, message_type)
        except Exception as exc:
            increment_metric("ws_message_errors", 1)
            logger.exception("handler failed | connection_id=%s type=%s err=%s", event.connection_id, message_type, exc)
            await self.send_error(event.connection_id, InternalError(), message_type)

    # ================= HANDLERS =================

    @staticmethod
    def _presence_payload(event_type: str, connection: Connection) -> dict:
        return {
            "type": event_type,
            "clientId": connection.connection_id,
            "name": connection.name,
            "role": connection.role,
            "sessionId": connection.session_id,
            "timestamp": iso_timestamp(),
        }

    def _require_session(self, connection: Connection) -> Session:
        if not connection.is_registered:
            raise NotRegistered()
        if not connection.session_id:
            raise NotInSession()
        return self.store.require(connection.session_id)

    async def _on_register(self, connection: Connection, payload: dict) -> None:
        connection = self.registry.register(connection.connection_id, payload.get("name"), payload.get("role"))
        if connection.session_id:
            self.store.update_participant(connection.session_id, connection)

        await self.send(connection.connection_id, {
            "type": "registration-confirmed",
            "name": connection.name,
            "role": connection.role,
            "clientId": connection.connection_id,
            "timestamp": iso_timestamp(),
        })
        log_event("router", "registered", connection.connection_id, role=connection.role, name=connection.name)

    async def _on_join_session(self, connection: Connection, payload: dict) -> None:
        if not connection.is_registered:
            raise NotRegistered()
        session_id = _text(payload, "sessionId")
        rejoining = connection.session_id == session_id

        session, previous_session_id = self.store.join_session(connection, session_id)
        self.registry.set_session(connection.connection_id, session.session_id)
        set_metric("sessions_active", float(len(self.store)))

        if previous_session_id:
            left_payload = self._presence_payload("user-left", connection)
            left_payload["sessionId"] = previous_session_id
            await self.deliver(left_payload, Delivery.ALL, session_id=previous_session_id)

        await self.send(connection.connection_id, {
            "type": "session-joined",
            "sessionId": session.session_id,
            "participants": [item.to_dict() for item in session.participants],
            "timestamp": iso_timestamp(),
        })
        if not rejoining:
            await self.deliver(
                self._presence_payload("user-joined", connection),
                Delivery.OTHERS,
                sender_id=connection.connection_id,
                session_id=session.session_id,
            )
        log_event(
            "router",
            "session_joined",
            connection.connection_id,
            session_id=session.session_id,
            previous_session_id=previous_session_id,
        )

    async def _on_transcription(self, connection: Connection, payload: dict) -> None:
        session = self._require_session(connection)
        entry = TranscriptEntry(
            connection_id=connection.connection_id,
            speaker=str(connection.name),
            role=str(connection.role),
            text=_text(payload, "text"),
            confidence=_clamp_confidence(payload.get("confidence", 0.0)),
            is_final=payload.get("isFinal") is True,
            language=str(payload.get("language") or "en"),
        )
        self.store.append_transcript(session.session_id, entry)

        body = {"type": "transcription"}
        body.update(entry.to_dict())
        await self.deliver(body, Delivery.ALL, sender_id=connection.connection_id, session_id=session.session_id)

    async def _on_question(self, connection: Connection, payload: dict) -> None:
        session = self._require_session(connection)
        question = Question(
            connection_id=connection.connection_id,
            interviewer=str(connection.name),
            question=_text(payload, "question"),
            category=str(payload.get("category") or "general"),
            difficulty=str(payload.get("difficulty") or "medium"),
        )
        self.store.append_question(session.session_id, question)

        body = {"type": "question"}
        body.update(question.to_dict())
        await self.deliver(body, Delivery.ALL, sender_id=connection.connection_id, session_id=session.session_id)

    async def _on_answer(self, connection: Connection, payload: dict) -> None:
        session = self._require_session(connection)
        answer_text = _text(payload, "answer")
        question_id = payload.get("questionId")

        await self.deliver(
            {
                "type": "answer",
                "clientId": connection.connection_id,
                "candidate": connection.name,
                "role": connection.role,
                "answer": answer_text,
                "questionId": question_id,
                "timestamp": iso_timestamp(),
            },
            Delivery.ALL,
            sender_id=connection.connection_id,
            session_id=session.session_id,
        )

        if not self.auto_analyze_answers:
            return
        question = session.find_question(question_id) or (session.questions[-1] if session.questions else None)
        if question is None:
            return

        # analysis goes to interviewers only, including failures
        self._spawn_ai(
            AIRequestContext(
                request_type=ANALYZE_ANSWER,
                requester_id=connection.connection_id,
                session_id=session.session_id,
                delivery=Delivery.INTERVIEWERS,
                event_type="ai_answer_analysis",
                extra={
                    "questionId": question.question_id,
                    "originalQuestion": question.question,
                    "originalAnswer": answer_text,
                    "candidate": connection.name,
                },
            ),
            {
                "question": question.question,
                "answer": answer_text,
                "expectedSkills": payload.get("expectedSkills") or [],
            },
        )

    async def _on_note(self, connection: Connection, payload: dict) -> None:
        session = self._require_session(connection)
        if connection.role != INTERVIEWER:
            raise InvalidRole(connection.role, "Only interviewers can add notes")
        note = Note(
            connection_id=connection.connection_id,
            author=str(connection.name),
            role=str(connection.role),
            note=_text(payload, "note"),
            category=str(payload.get("category") or "general"),
        )
        self.store.append_note(session.session_id, note)

        body = {"type": "note"}
        body.update(note.to_dict())
        await self.deliver(body, Delivery.INTERVIEWERS, sender_id=connection.connection_id, session_id=session.session_id)

    async def _on_ping(self, connection: Connection, payload: dict) -> None:
        await self.send(connection.connection_id, {"type": "pong", "timestamp": iso_timestamp()})

    async def _on_ai_request(self, connection: Connection, payload: dict) -> None:
        raw_request_type = payload.get("requestType")
        if raw_request_type is None or not str(raw_request_type).strip():
            raise MissingField("requestType")
        request_type = normalize_request_type(raw_request_type)
        if request_type not in REQUEST_POLICIES:
            raise UnknownRequestType(str(raw_request_type))

        data = payload.get("data")
        if data is None:
            data = payload.get("requestData") or {}
        if not isinstance(data, dict):
            raise InvalidMessage("'data' must be a JSON object")
        data = dict(data)

        if request_type in INTERVIEWER_ONLY_REQUESTS and connection.role != INTERVIEWER:
            raise InvalidRole(connection.role, f"Only interviewers can request {request_type}")

        session_id = connection.session_id
        fanout: tuple[tuple[Delivery, str], ...] = ()
        if request_type == GET_FEEDBACK and not data.get("transcript"):
            feedback_session_id = str(data.get("sessionId") or session_id or "").strip()
            if not feedback_session_id:
                raise MissingField("sessionId")
            session = self.store.require(feedback_session_id)
            data["transcript"] = [item.to_dict() for item in session.transcript]
            data.setdefault("questions", [item.question for item in session.questions])
        elif request_type == INTERVIEW_INSIGHTS and not data.get("conversationHistory"):
            session = self._require_session(connection)
            data["conversationHistory"] = [item.to_dict() for item in session.transcript]
        elif request_type == INTERVIEW_SUMMARY:
            session = self._require_session(connection)
            if not data.get("questionsAndAnswers") and not data.get("transcript"):
                data["transcript"] = [item.to_dict() for item in session.transcript]
            data.setdefault("notes", [item.to_dict() for item in session.notes])

        if request_type in INTERVIEWER_FANOUT_EVENTS and session_id:
            fanout = ((Delivery.INTERVIEWERS, INTERVIEWER_FANOUT_EVENTS[request_type]),)
        elif request_type == IMPROVE_TRANSCRIPTION and session_id:
            fanout = ((Delivery.ALL, "ai_improved_transcription"),)

        await self.send(connection.connection_id, {
            "type": "ai-processing",
            "requestType": request_type,
            "timestamp": iso_timestamp(),
        })
        self._spawn_ai(
            AIRequestContext(
                request_type=request_type,
                requester_id=connection.connection_id,
                session_id=session_id,
                fanout=fanout,
            ),
            data,
        )

    # ================= AI =================

    def _spawn_ai(self, context: AIRequestContext, data: dict) -> asyncio.Task:
        task = asyncio.create_task(self._run_ai(context, data))
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)
        log_event(
            "router",
            "ai_request_started",
            context.requester_id,
            request_type=context.request_type,
            session_id=context.session_id,
        )
        return task

    async def _run_ai(self, context: AIRequestContext, data: dict) -> None:
        try:
            result = await self.gateway.complete(context.request_type, data)
            event = AICompleted(context=context, result=result)
        except RelayError as exc:
            event = AICompleted(context=context, error=exc)
        except Exception as exc:
            logger.exception("AI task failed | request_type=%s err=%s", context.request_type, exc)
            event = AICompleted(context=context, error=UpstreamUnavailable(str(exc) or exc.__class__.__name__))
        await self.submit(event)

    async def _on_ai_completed(self, event: AICompleted) -> None:
        context = event.context
        timestamp = iso_timestamp()

        if not event.ok:
            error = event.error
            body = {
                "type": "ai-error",
                "requestType": context.request_type,
                "code": error.code,
                "error": error.message,
                "timestamp": timestamp,
            }
            raw_text = getattr(error, "raw_text", None)
            if raw_text is not None:
                body["rawResponse"] = raw_text
            body.update(context.extra)
            await self.deliver(body, context.delivery, sender_id=context.requester_id, session_id=context.session_id)
            log_event(
                "router",
                "ai_request_failed",
                context.requester_id,
                level=logging.WARNING,
                request_type=context.request_type,
                code=error.code,
            )
            return

        body = {
            "type": context.event_type,
            "requestType": context.request_type,
            "data": event.result,
            "timestamp": timestamp,
        }
        body.update(context.extra)
        await self.deliver(body, context.delivery, sender_id=context.requester_id, session_id=context.session_id)

        for mode, event_type in context.fanout:
            if not context.session_id:
                continue
            fanout_body = dict(body)
            fanout_body["type"] = event_type
            fanout_body["sessionId"] = context.session_id
            await self.deliver(fanout_body, mode, sender_id=context.requester_id, session_id=context.session_id)

        log_event("router", "ai_request_completed", context.requester_id, request_type=context.request_type)
