"""Shared plumbing for refiners that speak the chat-completions protocol."""

from __future__ import annotations

import logging
import time
from typing import Any

from voyc.errors import ProviderAuthError, ProviderError, ProviderGenericError
from voyc.providers.base import (
    ProcessContext,
    ProcessResult,
    RefinementProvider,
    parse_json,
    raise_for_status,
    send_request,
)
from voyc.types import ChatCompletionRequest, ChatMessage

logger = logging.getLogger(__name__)

TERMINAL_PREFIX = "[Terminal input] "
COMMAND_PREFIX = "[Command] "

# Chat models like to announce their answer; these openers are removed.
PREAMBLES = (
    "Sure, here's the corrected text:",
    "Sure, here is the corrected text:",
    "Sure, here's the formatted text:",
    "Sure, here is the formatted text:",
    "Sure, here you go:",
    "Sure!",
    "Sure:",
    "Sure,",
    "Here's the corrected text:",
    "Here is the corrected text:",
    "Here's the formatted text:",
    "Here is the formatted text:",
    "Here's the text:",
    "Here is the text:",
    "Corrected text:",
    "Formatted text:",
    "Output:",
    "Of course!",
    "Certainly!",
)


def build_user_message(text: str, context: ProcessContext | None) -> str:
    if context is None:
        return text
    if context.target_app == "terminal":
        return f"{TERMINAL_PREFIX}{text}"
    if context.is_command:
        return f"{COMMAND_PREFIX}{text}"
    return text


def clean_reply(text: str) -> str:
    """Strip chat preambles and wrapping quotes from a model reply."""
    text = text.strip()
    lowered = text.lower()
    for preamble in PREAMBLES:
        if lowered.startswith(preamble.lower()):
            text = text[len(preamble):].strip()
            lowered = text.lower()

    for quote in ('"', "'"):
        if len(text) >= 2 and text.startswith(quote) and text.endswith(quote):
            text = text[1:-1].strip()
    return text


def extract_reply(payload: dict[str, Any]) -> str | None:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0] or {}
        message = choice.get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(choice.get("text"), str):
            return choice["text"]
    if isinstance(payload.get("text"), str):
        return payload["text"]
    return None


class ChatRefiner(RefinementProvider):
    """Sends the transcript as the user turn of a one-shot chat completion."""

    system_prompt: str = ""

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(api_key, endpoint, model, timeout_s)
        self._temperature = temperature
        self._max_tokens = max_tokens

    def build_request(self, text: str, context: ProcessContext | None = None) -> ChatCompletionRequest:
        messages: list[ChatMessage] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": build_user_message(text, context)},
        ]
        return {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": False,
        }

    def request_url(self) -> str:
        return self._endpoint

    def request_headers(self) -> dict[str, str]:
        raise NotImplementedError

    async def process(self, text: str, context: ProcessContext | None = None) -> ProcessResult:
        self._require_configuration()
        if not text:
            return ProcessResult(text="", latency_ms=0.0, modified=False)

        started = time.monotonic()
        try:
            response = await send_request(
                self.name,
                self.request_url(),
                headers=self.request_headers(),
                timeout_s=self._timeout_s,
                json_body=dict(self.build_request(text, context)),
            )
            raise_for_status(self.name, response)
            payload = parse_json(self.name, response)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderGenericError(self.name, f"Refinement failed: {e}") from e
        latency_ms = (time.monotonic() - started) * 1000

        reply = extract_reply(payload)
        if reply is None:
            raise ProviderGenericError(self.name, "No text in response")
        refined = clean_reply(reply)
        if not refined:
            raise ProviderGenericError(self.name, "Empty response")

        usage = payload.get("usage") or {}
        result = ProcessResult(
            text=refined,
            latency_ms=latency_ms,
            modified=refined != text,
            tokens_used=usage.get("total_tokens"),
            model=payload.get("model") or self._model,
        )
        logger.debug(
            "%s refinement done in %.0fms (%d -> %d chars)",
            self.name, latency_ms, len(text), len(refined),
        )
        return result

    def _require_configuration(self) -> None:
        if not self._api_key:
            raise ProviderAuthError(self.name, "API key not configured")
        if not self._endpoint:
            raise ProviderGenericError(self.name, "Endpoint not configured")
