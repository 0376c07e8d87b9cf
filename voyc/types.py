"""Type definitions for JSON payloads exchanged with remote services."""

from __future__ import annotations

from typing import Literal, TypedDict


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(TypedDict, total=False):
    """OpenAI-compatible chat completion body, also accepted by Baseten."""

    model: str
    messages: list[ChatMessage]
    temperature: float
    max_tokens: int
    stream: bool


class ChatUsage(TypedDict, total=False):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class TranscriptionResponse(TypedDict, total=False):
    """Batch speech-to-text response (ElevenLabs and OpenAI share these keys)."""

    text: str
    language: str
    language_code: str
    language_probability: float
    duration: float


class RealtimeConfigMessage(TypedDict, total=False):
    """First message on a realtime transcription socket."""

    type: Literal["config"]
    model_id: str
    audio_format: Literal["pcm"]
    sample_rate: int
    language_code: str
    vad: bool


class RealtimeAudioMessage(TypedDict):
    type: Literal["audio"]
    data: str


class RealtimeServerMessage(TypedDict, total=False):
    type: Literal["transcript", "error", "info"]
    text: str
    is_final: bool
    message: str


class StateResponse(TypedDict):
    """Returned by the control server's /state endpoint."""

    state: str
    time_in_state_s: float
    error: str | None
    active: bool


class HealthCheck(TypedDict):
    status: Literal["healthy", "unhealthy"]
    provider: str
    provider_configured: bool
