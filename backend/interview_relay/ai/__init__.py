from interview_relay.ai.gateway import CompletionGateway, build_openai_client, normalize_request_type, parse_completion
from interview_relay.ai.transcriber import SpeechTranscriber, TranscriptionResult

__all__ = [
    "CompletionGateway",
    "SpeechTranscriber",
    "TranscriptionResult",
    "build_openai_client",
    "normalize_request_type",
    "parse_completion",
]
