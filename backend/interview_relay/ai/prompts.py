from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from interview_relay.errors import MissingField

GENERATE_QUESTIONS = "generate_questions"
ANALYZE_ANSWER = "analyze_answer"
SUGGEST_FOLLOWUP = "suggest_followup"
GET_FEEDBACK = "get_feedback"
IMPROVE_TRANSCRIPTION = "improve_transcription"
INTERVIEW_INSIGHTS = "interview_insights"
INTERVIEW_SUMMARY = "interview_summary"


def _require(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, tuple, dict)) and not value:
            continue
        return value
    raise MissingField(keys[0])


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _join_lines(value: Any) -> str:
    if isinstance(value, str):
        return value
    lines = []
    for item in _as_list(value):
        if isinstance(item, dict):
            speaker = item.get("speaker") or item.get("role") or "Unknown"
            text = item.get("text") or item.get("question") or item.get("note") or ""
            lines.append(f"{speaker}: {text}")
        else:
            lines.append(str(item))
    return "\n".join(lines)


def build_generate_questions_prompt(data: dict) -> str:
    position = _require(data, "position", "jobRole")
    level = data.get("level") or data.get("experienceLevel") or "mid"
    category = data.get("category") or "technical"
    count = data.get("count") or 5
    skills = ", ".join(str(item) for item in _as_list(data.get("skillsRequired") or data.get("skills")))
    return f"""
Generate {count} {category} interview questions for a {level} level {position} position.

Required skills: {skills or "not specified"}

Return a JSON array only, one object per question:
[{{"question": "...", "category": "{category}", "difficulty": "easy|medium|hard", "expectedSkills": ["skill1", "skill2"], "timeEstimate": "2-3 minutes"}}]
"""


def build_analyze_answer_prompt(data: dict) -> str:
    question = _require(data, "question")
    answer = _require(data, "answer")
    expected = ", ".join(str(item) for item in _as_list(data.get("expectedSkills") or data.get("expectedPoints")))
    return f"""
Analyze this interview answer.

Question: "{question}"
Answer: "{answer}"
Expected skills: {expected or "not specified"}

Return JSON only:
{{
  "overall_score": 0-10,
  "strengths": ["strength1", "strength2"],
  "weaknesses": ["weakness1", "weakness2"],
  "technical_accuracy": 0-10,
  "communication_clarity": 0-10,
  "completeness": 0-10,
  "recommendations": ["rec1", "rec2"],
  "followup_questions": ["q1", "q2"]
}}
"""


def build_suggest_followup_prompt(data: dict) -> str:
    previous_question = _require(data, "previousQuestion", "question")
    answer = _require(data, "answer")
    context = data.get("context") or ""
    return f"""
Based on this interview exchange, suggest one follow-up question.

Previous question: "{previous_question}"
Candidate answer: "{answer}"
Context: {context}

Return JSON only:
{{
  "followup_question": "...",
  "reasoning": "why this follow-up is valuable",
  "category": "technical|behavioral|clarification|deeper_dive",
  "difficulty": "easy|medium|hard"
}}
"""


def build_get_feedback_prompt(data: dict) -> str:
    transcript = _join_lines(_require(data, "transcript"))
    questions = _join_lines(data.get("questions") or [])
    position = data.get("position") or data.get("jobRole") or "not specified"
    return f"""
Provide comprehensive interview feedback for this session.

Position: {position}
Questions asked:
{questions or "none recorded"}

Full transcript:
{transcript}

Return JSON only:
{{
  "overall_score": 0-10,
  "recommendation": "hire|maybe|no_hire",
  "summary": "brief overall assessment",
  "technical_skills": {{"score": 0-10, "comments": "..."}},
  "communication": {{"score": 0-10, "comments": "..."}},
  "problem_solving": {{"score": 0-10, "comments": "..."}},
  "strengths": ["strength1", "strength2"],
  "areas_for_improvement": ["area1", "area2"]
}}
"""


def build_improve_transcription_prompt(data: dict) -> str:
    text = _require(data, "text", "rawTranscription")
    context = data.get("context") or ""
    return f"""
Improve this transcribed text for clarity and grammar while preserving the original meaning.

Original: "{text}"
Context: {context}

Return JSON only:
{{
  "improved_text": "...",
  "changes_made": ["change1", "change2"],
  "confidence": 0-1
}}
"""


def build_interview_insights_prompt(data: dict) -> str:
    history = _join_lines(_require(data, "conversationHistory", "transcript"))
    job_role = data.get("jobRole") or data.get("position") or "not specified"
    return f"""
Give real-time guidance to the interviewer based on the conversation so far.

Job role: {job_role}
Conversation:
{history}

Return JSON only:
{{
  "key_observations": ["..."],
  "areas_to_explore": ["..."],
  "red_flags": ["..."],
  "suggested_next_questions": ["..."],
  "candidate_engagement": "low|medium|high"
}}
"""


def build_interview_summary_prompt(data: dict) -> str:
    transcript = _join_lines(_require(data, "questionsAndAnswers", "transcript"))
    candidate_name = data.get("candidateName") or "the candidate"
    job_role = data.get("jobRole") or data.get("position") or "not specified"
    notes = _join_lines(data.get("notes") or [])
    return f"""
Write an end-of-interview summary for {candidate_name}, interviewing for: {job_role}.

Interview record:
{transcript}

Interviewer notes:
{notes or "none"}

Return JSON only:
{{
  "overall_rating": 0-10,
  "recommendation": "strong_hire|hire|maybe|no_hire",
  "summary": "...",
  "strengths": ["..."],
  "concerns": ["..."],
  "next_steps": ["..."]
}}
"""


@dataclass(frozen=True)
class PromptPolicy:
    system_prompt: str
    temperature: float
    max_tokens: int
    build: Callable[[dict], str]


REQUEST_POLICIES: dict[str, PromptPolicy] = {
    GENERATE_QUESTIONS: PromptPolicy(
        system_prompt="You are an expert technical interviewer. Generate relevant, insightful questions. Output JSON only.",
        temperature=0.7,
        max_tokens=1500,
        build=build_generate_questions_prompt,
    ),
    ANALYZE_ANSWER: PromptPolicy(
        system_prompt="You are an expert interviewer analyzing responses. Be fair and constructive. Output JSON only.",
        temperature=0.3,
        max_tokens=1000,
        build=build_analyze_answer_prompt,
    ),
    SUGGEST_FOLLOWUP: PromptPolicy(
        system_prompt="You are an expert at asking insightful follow-up questions. Output JSON only.",
        temperature=0.6,
        max_tokens=500,
        build=build_suggest_followup_prompt,
    ),
    GET_FEEDBACK: PromptPolicy(
        system_prompt="You are a senior interviewer providing a thorough, fair candidate assessment. Output JSON only.",
        temperature=0.3,
        max_tokens=2000,
        build=build_get_feedback_prompt,
    ),
    IMPROVE_TRANSCRIPTION: PromptPolicy(
        system_prompt="You improve transcribed speech while preserving its meaning. Output JSON only.",
        temperature=0.1,
        max_tokens=500,
        build=build_improve_transcription_prompt,
    ),
    INTERVIEW_INSIGHTS: PromptPolicy(
        system_prompt="You are an interview coach assisting the interviewer in real time. Output JSON only.",
        temperature=0.5,
        max_tokens=1500,
        build=build_interview_insights_prompt,
    ),
    INTERVIEW_SUMMARY: PromptPolicy(
        system_prompt="You are a hiring manager writing a concise interview summary. Output JSON only.",
        temperature=0.3,
        max_tokens=2500,
        build=build_interview_summary_prompt,
    ),
}
