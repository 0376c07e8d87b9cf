"""Baseten-hosted LLaMA refinement."""

from __future__ import annotations

import logging

from voyc.providers.base import ProcessContext, ProcessResult
from voyc.providers.chat import ChatRefiner

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.1-8b"
TARGET_LATENCY_MS = 250

REFINEMENT_PROMPT = (
    "You are a text formatting assistant. Your task is to improve the formatting "
    "of transcribed speech while preserving the original meaning.\n\n"
    "Rules:\n"
    "1. Add proper punctuation (periods, commas, question marks)\n"
    "2. Capitalize sentences and proper nouns\n"
    "3. Fix obvious transcription errors (homophones, similar-sounding words)\n"
    "4. Preserve the original wording unless clearly incorrect\n"
    "5. Do NOT add explanations or commentary\n"
    "6. Do NOT change the meaning or intent\n"
    "7. Keep responses concise for speed\n\n"
    "Input is raw speech-to-text output. Output only the formatted text."
)


class BasetenRefiner(ChatRefiner):
    """
    Refinement against a Baseten model deployment.

    Baseten endpoints are deployment specific, so ``endpoint`` is the full
    predict URL rather than an API root.
    """

    name = "baseten"
    display_name = "Baseten LLaMA"
    system_prompt = REFINEMENT_PROMPT

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(
            api_key,
            endpoint,
            model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_s=timeout_s,
        )

    def request_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Api-Key {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def process(self, text: str, context: ProcessContext | None = None) -> ProcessResult:
        result = await super().process(text, context)
        if result.latency_ms > TARGET_LATENCY_MS:
            logger.warning(
                "Baseten latency %.0fms exceeded %dms target",
                result.latency_ms, TARGET_LATENCY_MS,
            )
        return result
