from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from openai import AsyncOpenAI

from core.config import STT_MODEL
from interview_relay.errors import MissingField, UpstreamUnavailable
from interview_relay.system_metrics import increment_metric

logger = logging.getLogger("interview_relay.ai.transcriber")


@dataclass
class TranscriptionResult:
    text: str
    language: Optional[str] = None
    duration: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "language": self.language,
            "duration": self.duration,
        }


class SpeechTranscriber:
    """Forwards uploaded audio to the speech-to-text endpoint."""

    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self.client = client
        self.model = str(model or STT_MODEL)

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def transcribe_file(
        self,
        path: Path,
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        if self.client is None:
            raise UpstreamUnavailable("Transcription service is not configured (missing OPENAI_API_KEY)")

        kwargs = {"model": self.model, "response_format": "verbose_json"}
        if language:
            kwargs["language"] = language
        if prompt:
            kwargs["prompt"] = prompt

        try:
            with open(path, "rb") as audio_file:
                response = await self.client.audio.transcriptions.create(file=audio_file, **kwargs)
        except Exception as exc:
            logger.warning("transcription call failed | model=%s err=%s", self.model, exc)
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__) from exc

        increment_metric("transcriptions_total", 1)
        duration = getattr(response, "duration", None)
        return TranscriptionResult(
            text=str(getattr(response, "text", "") or ""),
            language=getattr(response, "language", None) or language,
            duration=float(duration) if duration is not None else None,
        )

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        if not audio:
            raise MissingField("audio")

        suffix = Path(filename or "").suffix or ".webm"
        with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as f:
            f.write(audio)
            path = f.name

        try:
            return await self.transcribe_file(Path(path), language=language, prompt=prompt)
        finally:
            os.unlink(path)
