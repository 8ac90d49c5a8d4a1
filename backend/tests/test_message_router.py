import json
import time

import pytest

from interview_relay.router.events import IdleSweep
from interview_relay.session.models import Connection


ANALYSIS = {"score": 8, "strengths": ["structured"], "improvements": [], "feedback": "Good"}


@pytest.mark.asyncio
async def test_connection_confirmed_and_ping(relay_harness):
    async with relay_harness() as relay:
        ws = await relay.connect("c1")
        await relay.send("c1", {"type": "ping"})

    assert ws.messages("connection-confirmed")[0]["clientId"] == "c1"
    assert len(ws.messages("pong")) == 1


@pytest.mark.asyncio
async def test_invalid_role_is_rejected_without_state_change(relay_harness):
    async with relay_harness() as relay:
        ws = await relay.connect("c1")
        await relay.send("c1", {"type": "register", "name": "Eve", "role": "admin"})

        connection = relay.registry.lookup("c1")
        assert connection.name is None
        assert connection.role is None

    errors = ws.messages("error")
    assert errors[0]["code"] == "InvalidRole"
    assert errors[0]["requestType"] == "register"
    assert ws.messages("registration-confirmed") == []


@pytest.mark.asyncio
async def test_malformed_messages_report_errors(relay_harness):
    async with relay_harness() as relay:
        ws = await relay.connect("c1")
        await relay.send("c1", None)
        await relay.send("c1", {"name": "no type"})
        await relay.send("c1", {"type": "dance"})
        await relay.send("c1", {"type": "join-session", "sessionId": "s1"})
        await relay.send("c1", {"type": "register", "name": "Ada", "role": "candidate"})
        await relay.send("c1", {"type": "join-session"})
        await relay.send("c1", {"type": "transcription", "text": "hi", "isFinal": True})

    codes = [item["code"] for item in ws.messages("error")]
    assert codes == [
        "InvalidMessage",
        "MissingField",
        "UnknownMessageType",
        "NotRegistered",
        "MissingField",
        "NotInSession",
    ]
    assert ws.messages("error")[4]["field"] == "sessionId"


@pytest.mark.asyncio
async def test_join_announces_presence(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

    joined = candidate.messages("session-joined")[0]
    assert joined["sessionId"] == "s1"
    assert [item["clientId"] for item in joined["participants"]] == ["i1", "c1"]
    assert [item["clientId"] for item in interviewer.messages("user-joined")] == ["c1"]
    assert candidate.messages("user-joined") == []


@pytest.mark.asyncio
async def test_joining_second_session_leaves_the_first(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "A")
        candidate = await relay.join("c1", "Cal", "candidate", "A")
        await relay.send("c1", {"type": "join-session", "sessionId": "B"})

        assert [item.connection_id for item in relay.store.require("A").participants] == ["i1"]
        assert [item.connection_id for item in relay.store.require("B").participants] == ["c1"]
        assert relay.registry.lookup("c1").session_id == "B"

        await relay.send("i1", {"type": "question", "question": "Anyone there?"})

    left = interviewer.messages("user-left")
    assert left[0]["clientId"] == "c1"
    assert left[0]["sessionId"] == "A"
    assert candidate.messages("question") == []


@pytest.mark.asyncio
async def test_transcription_broadcasts_but_persists_only_final(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

        await relay.send("c1", {"type": "transcription", "text": "I wor", "isFinal": False})
        assert relay.store.require("s1").transcript == []

        await relay.send("c1", {"type": "transcription", "text": "I worked on billing", "isFinal": True, "confidence": 3})
        await relay.send("c1", {"type": "transcription", "text": "for two years", "isFinal": True})

        transcript = relay.store.require("s1").transcript

    assert [item.text for item in transcript] == ["I worked on billing", "for two years"]
    assert transcript[0].confidence == 1.0
    assert len(interviewer.messages("transcription")) == 3
    assert len(candidate.messages("transcription")) == 3
    assert interviewer.messages("transcription")[0]["isFinal"] is False


@pytest.mark.asyncio
async def test_candidate_note_reaches_nobody(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

        await relay.send("c1", {"type": "note", "note": "I did great"})
        assert relay.store.require("s1").notes == []

        await relay.send("i1", {"type": "note", "note": "Strong on SQL"})
        assert [item.note for item in relay.store.require("s1").notes] == ["Strong on SQL"]

    assert candidate.messages("error")[0]["code"] == "InvalidRole"
    assert [item["note"] for item in interviewer.messages("note")] == ["Strong on SQL"]
    assert candidate.messages("note") == []


@pytest.mark.asyncio
async def test_ai_request_returns_parsed_result_to_sender(relay_harness):
    async with relay_harness(content=json.dumps(ANALYSIS)) as relay:
        ws = await relay.join("i1", "Ivy", "interviewer", "s1")
        await relay.send("i1", {
            "type": "ai-request",
            "requestType": "analyze-answer",
            "data": {"question": "Describe a hard bug", "answer": "A race in the cache"},
        })
        call = relay.client.chat.completions.calls[0]

    assert ws.messages("ai-processing")[0]["requestType"] == "analyze_answer"
    response = ws.messages("ai-response")[0]
    assert response["requestType"] == "analyze_answer"
    assert response["data"] == ANALYSIS
    assert (call["temperature"], call["max_tokens"]) == (0.3, 1000)


@pytest.mark.asyncio
async def test_ai_request_malformed_completion_includes_raw_text(relay_harness):
    async with relay_harness(content="Sorry, I cannot help with that") as relay:
        ws = await relay.join("i1", "Ivy", "interviewer", "s1")
        await relay.send("i1", {
            "type": "ai-request",
            "requestType": "analyze_answer",
            "data": {"question": "Q", "answer": "A"},
        })

    error = ws.messages("ai-error")[0]
    assert error["code"] == "MalformedCompletion"
    assert error["requestType"] == "analyze_answer"
    assert error["rawResponse"] == "Sorry, I cannot help with that"
    assert ws.messages("ai-response") == []


@pytest.mark.asyncio
async def test_ai_request_validation_and_unconfigured_gateway(relay_harness):
    async with relay_harness(configured=False) as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        ws = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("c1", {"type": "ai-request"})
        await relay.send("c1", {"type": "ai-request", "requestType": "write_poem"})
        await relay.send("c1", {"type": "ai-request", "requestType": "interview_summary"})
        await relay.send("c1", {"type": "ai-request", "requestType": "suggest_followup", "data": {"answer": "A"}})
        await relay.send("i1", {"type": "ai-request", "requestType": "suggest_followup", "data": {"answer": "A"}})
        await relay.send("c1", {
            "type": "ai-request",
            "requestType": "improve_transcription",
            "data": {"text": "um so i uh worked"},
        })

    assert [item["code"] for item in ws.messages("error")] == [
        "MissingField",
        "UnknownRequestType",
        "InvalidRole",
        "InvalidRole",
    ]
    assert [item["code"] for item in ws.messages("ai-error")] == ["UpstreamUnavailable"]

    followup_error = interviewer.messages("ai-error")[0]
    assert followup_error["code"] == "MissingField"
    assert followup_error["requestType"] == "suggest_followup"


@pytest.mark.asyncio
async def test_answer_analysis_goes_to_interviewers_only(relay_harness):
    async with relay_harness(content=json.dumps(ANALYSIS)) as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

        await relay.send("i1", {"type": "question", "question": "How do you test async code?"})
        question_id = interviewer.messages("question")[0]["id"]
        await relay.send("c1", {"type": "answer", "answer": "With an event loop fixture", "questionId": question_id})

    assert len(interviewer.messages("answer")) == 1
    assert len(candidate.messages("answer")) == 1

    analysis = interviewer.messages("ai_answer_analysis")
    assert len(analysis) == 1
    assert analysis[0]["data"] == ANALYSIS
    assert analysis[0]["questionId"] == question_id
    assert analysis[0]["originalAnswer"] == "With an event loop fixture"
    assert analysis[0]["candidate"] == "Cal"
    assert candidate.messages("ai_answer_analysis") == []


@pytest.mark.asyncio
async def test_answer_analysis_failure_stays_with_interviewers(relay_harness):
    async with relay_harness(content="not json") as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("i1", {"type": "question", "question": "Why?"})
        await relay.send("c1", {"type": "answer", "answer": "Because"})

    assert interviewer.messages("ai-error")[0]["code"] == "MalformedCompletion"
    assert candidate.messages("ai-error") == []


@pytest.mark.asyncio
async def test_answer_without_question_or_auto_analysis_skips_ai(relay_harness):
    async with relay_harness(content=json.dumps(ANALYSIS), auto_analyze_answers=False) as relay:
        await relay.join("i1", "Ivy", "interviewer", "s1")
        await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("i1", {"type": "question", "question": "Why?"})
        await relay.send("c1", {"type": "answer", "answer": "Because"})
        assert relay.client.chat.completions.calls == []

    async with relay_harness(content=json.dumps(ANALYSIS)) as relay:
        await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("c1", {"type": "answer", "answer": "Unprompted"})
        assert relay.client.chat.completions.calls == []


@pytest.mark.asyncio
async def test_interview_summary_fans_out_to_interviewers(relay_harness):
    summary = {"overall_rating": 7, "recommendation": "hire"}
    async with relay_harness(content=json.dumps(summary)) as relay:
        lead = await relay.join("i1", "Ivy", "interviewer", "s1")
        panel = await relay.join("i2", "Pat", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("c1", {"type": "transcription", "text": "I led the migration", "isFinal": True})
        await relay.send("i1", {"type": "note", "note": "clear ownership"})

        await relay.send("i1", {"type": "ai-request", "requestType": "interview_summary"})
        prompt = relay.client.chat.completions.calls[0]["messages"][1]["content"]

    assert "I led the migration" in prompt
    assert "clear ownership" in prompt
    assert lead.messages("ai-response")[0]["data"] == summary
    assert panel.messages("ai_interview_summary")[0]["sessionId"] == "s1"
    assert len(lead.messages("ai_interview_summary")) == 1
    assert candidate.messages("ai_interview_summary") == []


@pytest.mark.asyncio
async def test_get_feedback_uses_session_transcript(relay_harness):
    async with relay_harness(content='{"overall_score": 6}') as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("i1", {"type": "question", "question": "Walk me through a deploy"})
        await relay.send("c1", {"type": "transcription", "text": "We use blue green", "isFinal": True})
        await relay.send("i1", {"type": "ai-request", "requestType": "get_feedback", "data": {"position": "SRE"}})
        call = relay.client.chat.completions.calls[0]

    assert "We use blue green" in call["messages"][1]["content"]
    assert (call["temperature"], call["max_tokens"]) == (0.3, 2000)
    assert interviewer.messages("ai-response")[0]["data"] == {"overall_score": 6}


@pytest.mark.asyncio
async def test_sole_participant_disconnect_keeps_empty_session(relay_harness):
    async with relay_harness() as relay:
        await relay.join("c1", "Cal", "candidate", "s1")
        await relay.disconnect("c1")

        assert "s1" in relay.store
        assert relay.store.require("s1").participants == []
        assert len(relay.registry) == 0
        assert "c1" not in relay.transport


@pytest.mark.asyncio
async def test_disconnect_notifies_remaining_participants(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        await relay.join("c1", "Cal", "candidate", "s1")
        await relay.disconnect("c1")
        await relay.disconnect("c1")

    assert [item["clientId"] for item in interviewer.messages("user-left")] == ["c1"]


@pytest.mark.asyncio
async def test_idle_sweep_closes_stale_connections_and_empty_sessions(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

        relay.store.join_session(Connection(connection_id="ghost", name="Gus", role="candidate"), "old")
        relay.store.leave_session("ghost", "old")
        relay.store.require("old").updated_at = time.time() - 7200  # test-only direct mutation
        relay.registry.lookup("c1").last_seen_at = time.time() - 7200

        await relay.router.submit(IdleSweep(connection_ttl_sec=600, session_ttl_sec=600))
        await relay.router.drain()

        assert relay.registry.get("c1") is None
        assert relay.registry.get("i1") is not None
        assert "old" not in relay.store
        assert "s1" in relay.store

    assert candidate.close_code == 1000
    assert interviewer.messages("user-left")[0]["clientId"] == "c1"


@pytest.mark.asyncio
async def test_candidate_cannot_request_answer_analysis(relay_harness):
    async with relay_harness(content=json.dumps(ANALYSIS)) as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("c1", {
            "type": "ai-request",
            "requestType": "analyze_answer",
            "data": {"question": "Q", "answer": "A", "expectedSkills": ["X"]},
        })
        assert relay.client.chat.completions.calls == []

    assert candidate.messages("error")[0]["code"] == "InvalidRole"
    assert candidate.messages("ai-response") == []
    assert candidate.messages("ai-processing") == []
    assert interviewer.messages("ai_answer_analysis") == []


@pytest.mark.asyncio
async def test_requested_answer_analysis_reaches_every_interviewer(relay_harness):
    async with relay_harness(content=json.dumps(ANALYSIS)) as relay:
        lead = await relay.join("i1", "Ivy", "interviewer", "s1")
        panel = await relay.join("i2", "Pat", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("i1", {
            "type": "ai-request",
            "requestType": "analyze_answer",
            "data": {"question": "Q", "answer": "A"},
        })

    assert lead.messages("ai-response")[0]["data"] == ANALYSIS
    shared = panel.messages("ai_answer_analysis")
    assert len(shared) == 1
    assert shared[0]["data"] == ANALYSIS
    assert shared[0]["sessionId"] == "s1"
    assert len(lead.messages("ai_answer_analysis")) == 1
    assert candidate.messages("ai_answer_analysis") == []
    assert candidate.messages("ai-response") == []


@pytest.mark.asyncio
async def test_followup_suggestions_reach_interviewers_only(relay_harness):
    followups = {"followups": ["What would you change?"]}
    async with relay_harness(content=json.dumps(followups)) as relay:
        lead = await relay.join("i1", "Ivy", "interviewer", "s1")
        panel = await relay.join("i2", "Pat", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("i1", {
            "type": "ai-request",
            "requestType": "suggest-followup",
            "data": {"previousQuestion": "Design a cache", "answer": "LRU with TTL"},
        })
        call = relay.client.chat.completions.calls[0]

    assert (call["temperature"], call["max_tokens"]) == (0.6, 500)
    assert lead.messages("ai-response")[0]["requestType"] == "suggest_followup"
    assert panel.messages("ai_followup_questions")[0]["data"] == followups
    assert candidate.messages("ai_followup_questions") == []


@pytest.mark.asyncio
async def test_handler_failure_reports_internal_error_and_loop_survives(relay_harness, monkeypatch):
    async with relay_harness() as relay:
        ws = await relay.join("i1", "Ivy", "interviewer", "s1")

        def _broken_append(session_id, question):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(relay.store, "append_question", _broken_append)
        await relay.send("i1", {"type": "question", "question": "Still there?"})
        await relay.send("i1", {"type": "ping"})

        assert relay.router.running

    error = ws.messages("error")[0]
    assert error["code"] == "InternalError"
    assert error["requestType"] == "question"
    assert "store unavailable" not in error["message"]
    assert len(ws.messages("pong")) == 1


@pytest.mark.asyncio
async def test_string_is_final_is_not_persisted(relay_harness):
    async with relay_harness() as relay:
        ws = await relay.join("c1", "Cal", "candidate", "s1")
        await relay.send("c1", {"type": "transcription", "text": "partial", "isFinal": "false"})
        await relay.send("c1", {"type": "transcription", "text": "also partial", "isFinal": 1})

        assert relay.store.require("s1").transcript == []

    assert [item["isFinal"] for item in ws.messages("transcription")] == [False, False]


@pytest.mark.asyncio
async def test_reregister_and_rejoin_do_not_repeat_user_joined(relay_harness):
    async with relay_harness() as relay:
        interviewer = await relay.join("i1", "Ivy", "interviewer", "s1")
        candidate = await relay.join("c1", "Cal", "candidate", "s1")

        await relay.send("c1", {"type": "register", "name": "Calvin", "role": "candidate"})
        await relay.send("c1", {"type": "join-session", "sessionId": "s1"})

        participants = relay.store.require("s1").participants

    assert [item["clientId"] for item in interviewer.messages("user-joined")] == ["c1"]
    assert [(item.connection_id, item.name) for item in participants] == [("i1", "Ivy"), ("c1", "Calvin")]
    assert candidate.messages("registration-confirmed")[-1]["name"] == "Calvin"
    assert len(candidate.messages("session-joined")) == 2
