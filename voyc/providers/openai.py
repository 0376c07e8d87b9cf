"""OpenAI speech-to-text and chat-completion refinement."""

from __future__ import annotations

import logging
import time

import aiohttp

from voyc.errors import ProviderError, ProviderGenericError
from voyc.providers.base import (
    TranscribeOptions,
    TranscribeResult,
    TranscriptionProvider,
    parse_json,
    raise_for_status,
    send_request,
)
from voyc.providers.chat import ChatRefiner

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"
DEFAULT_REFINEMENT_MODEL = "gpt-4o-mini"
WAV_HEADER_SIZE = 44
PCM_BYTES_PER_SECOND = 32_000

REFINEMENT_PROMPT = (
    "You are a text formatting assistant. Improve the formatting of transcribed "
    "speech while preserving the original meaning.\n\n"
    "Instructions:\n"
    "1. Add proper punctuation (periods, commas, question marks, exclamation points)\n"
    "2. Capitalize sentences and proper nouns correctly\n"
    "3. Fix obvious transcription errors and homophones\n"
    "4. Maintain the original tone and intent\n"
    "5. Do NOT add explanations, commentary, or markdown\n"
    "6. Do NOT expand or elaborate on the content\n"
    "7. Output only the formatted text, nothing else\n\n"
    "Input is raw speech-to-text. Output only the improved text."
)


def estimate_duration(audio: bytes) -> float:
    """Seconds of 16 kHz mono int16 audio in a WAV container."""
    return max(0, len(audio) - WAV_HEADER_SIZE) / PCM_BYTES_PER_SECOND


class OpenAITranscriptionProvider(TranscriptionProvider):
    """Batch transcription through ``/audio/transcriptions``."""

    name = "openai"
    display_name = "OpenAI Whisper"

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_TRANSCRIPTION_MODEL,
        timeout_s: float = 30.0,
        temperature: float = 0.0,
    ) -> None:
        super().__init__(api_key, endpoint or DEFAULT_ENDPOINT, model, timeout_s)
        self._temperature = temperature

    def build_form(self, audio: bytes, options: TranscribeOptions) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("model", options.model_id or self._model)
        if options.language:
            form.add_field("language", options.language)
        form.add_field("response_format", "json")
        form.add_field("temperature", str(self._temperature))
        form.add_field("file", audio, filename="audio.wav", content_type="audio/wav")
        return form

    async def transcribe(
        self, audio: bytes, options: TranscribeOptions | None = None
    ) -> TranscribeResult:
        self._require_api_key()
        if not audio:
            raise ProviderGenericError(self.name, "No audio data provided")

        options = options or TranscribeOptions()
        duration = options.duration or estimate_duration(audio)
        logger.debug("Transcribing %d bytes (%.2fs) with %s", len(audio), duration, self.name)

        started = time.monotonic()
        try:
            response = await send_request(
                self.name,
                f"{self._endpoint}/audio/transcriptions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Accept": "application/json",
                },
                timeout_s=self._timeout_s,
                data=self.build_form(audio, options),
            )
            raise_for_status(self.name, response)
            payload = parse_json(self.name, response)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderGenericError(self.name, f"Transcription failed: {e}") from e
        latency_ms = (time.monotonic() - started) * 1000

        text = payload.get("text")
        if not isinstance(text, str):
            raise ProviderGenericError(self.name, "Response has no text")

        return TranscribeResult(
            text=text.strip(),
            language=payload.get("language") or options.language,
            duration=float(payload.get("duration") or duration),
            latency_ms=latency_ms,
        )


class OpenAIRefiner(ChatRefiner):
    """Refinement through ``/chat/completions``."""

    name = "openai"
    display_name = "OpenAI GPT"
    system_prompt = REFINEMENT_PROMPT

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_REFINEMENT_MODEL,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(
            api_key,
            endpoint or DEFAULT_ENDPOINT,
            model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_s=timeout_s,
        )

    def request_url(self) -> str:
        return f"{self._endpoint}/chat/completions"

    def request_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
