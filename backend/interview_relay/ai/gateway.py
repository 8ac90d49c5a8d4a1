from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

from openai import AsyncOpenAI

from core.config import MODEL_NAME, OPENAI_API_KEY
from interview_relay.ai.prompts import REQUEST_POLICIES
from interview_relay.errors import MalformedCompletion, UnknownRequestType, UpstreamUnavailable
from interview_relay.system_metrics import increment_metric, observe_ai_latency_ms

logger = logging.getLogger("interview_relay.ai.gateway")

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\[{][\s\S]*?[\]}])\s*```", re.IGNORECASE)


def normalize_request_type(value: object) -> str:
    return str(value or "").strip().lower().replace("-", "_")


def parse_completion(raw_text: str) -> Any:
    """Parse model output as JSON, tolerating a single fenced ```json block."""
    text = str(raw_text or "").strip()
    if not text:
        raise MalformedCompletion(raw_text, "AI response was empty")

    try:
        return json.loads(text)
    except ValueError:
        pass

    fenced = _FENCED_JSON.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except ValueError:
            pass

    raise MalformedCompletion(raw_text)


def build_openai_client(api_key: str | None = None) -> AsyncOpenAI | None:
    key = str(api_key if api_key is not None else OPENAI_API_KEY).strip()
    if not key:
        logger.warning("OPENAI_API_KEY not configured; AI requests will report UpstreamUnavailable")
        return None
    return AsyncOpenAI(api_key=key)


class CompletionGateway:
    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self.client = client
        self.model = str(model or MODEL_NAME)

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def call_llm(self, system_prompt: str, prompt: str, temperature: float, max_tokens: int) -> str:
        if self.client is None:
            raise UpstreamUnavailable("AI service is not configured (missing OPENAI_API_KEY)")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception as exc:
            logger.warning("completion call failed | model=%s err=%s", self.model, exc)
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__) from exc

        try:
            message = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise MalformedCompletion("", "AI response had no message content") from exc
        return str(message or "")

    async def complete(self, request_type: str, data: dict | None = None) -> Any:
        normalized = normalize_request_type(request_type)
        policy = REQUEST_POLICIES.get(normalized)
        if policy is None:
            raise UnknownRequestType(request_type)

        prompt = policy.build(dict(data or {}))
        increment_metric("ai_requests_started", 1)
        started = time.perf_counter()
        try:
            raw = await self.call_llm(policy.system_prompt, prompt, policy.temperature, policy.max_tokens)
            return parse_completion(raw)
        except (UpstreamUnavailable, MalformedCompletion):
            increment_metric("ai_requests_failed", 1)
            raise
        finally:
            observe_ai_latency_ms((time.perf_counter() - started) * 1000.0)
