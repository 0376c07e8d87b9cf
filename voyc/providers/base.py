"""Capability interfaces shared by transcription and refinement providers."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import aiohttp

from voyc.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderGenericError,
    ProviderNetworkError,
    ProviderRateLimitError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


@dataclass
class TranscribeOptions:
    language: str | None = None
    model_id: str | None = None
    duration: float | None = None


@dataclass(frozen=True)
class TranscribeResult:
    text: str
    language: str | None = None
    duration: float = 0.0
    latency_ms: float = 0.0
    confidence: float | None = None


@dataclass
class StreamOptions:
    language: str | None = None
    model_id: str | None = None
    sample_rate: int = 16_000
    vad_enabled: bool = True


@dataclass
class ProcessContext:
    language: str | None = None
    confidence: float | None = None
    audio_duration: float | None = None
    target_app: str = "default"
    is_command: bool = False


@dataclass(frozen=True)
class ProcessResult:
    text: str
    latency_ms: float
    modified: bool
    tokens_used: int | None = None
    model: str | None = None


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str]
    body: str

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


def parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def error_detail(body: str) -> str:
    """Best human-readable message from an error response body."""
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        detail = payload.get("detail")
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
        if isinstance(detail, str):
            return detail
    return body


def translate_http_error(provider: str, response: HttpResponse) -> ProviderError:
    status = response.status
    if status == 401:
        return ProviderAuthError(provider, "Invalid API key")
    if status == 429:
        return ProviderRateLimitError(provider, parse_retry_after(response.header("retry-after")))
    if 500 <= status < 600:
        return ProviderNetworkError(provider, f"Server error {status}")
    if 400 <= status < 500:
        return ProviderGenericError(provider, f"HTTP {status}: {error_detail(response.body)}")
    return ProviderNetworkError(provider, f"Unexpected status {status}")


def raise_for_status(provider: str, response: HttpResponse) -> None:
    if 200 <= response.status < 300:
        return
    raise translate_http_error(provider, response)


def parse_json(provider: str, response: HttpResponse) -> dict[str, Any]:
    try:
        payload = json.loads(response.body)
    except ValueError as e:
        raise ProviderGenericError(provider, f"Invalid JSON response: {e}") from e
    if not isinstance(payload, dict):
        raise ProviderGenericError(provider, "Unexpected response payload")
    return payload


async def send_request(
    provider: str,
    url: str,
    *,
    headers: dict[str, str],
    timeout_s: float = DEFAULT_TIMEOUT_S,
    data: aiohttp.FormData | None = None,
    json_body: dict[str, Any] | None = None,
) -> HttpResponse:
    """POST to ``url`` and return the raw response. Transport failures raise."""
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, headers=headers, data=data, json=json_body) as response:
                body = await response.text()
                return HttpResponse(
                    status=response.status,
                    headers={k.lower(): v for k, v in response.headers.items()},
                    body=body,
                )
    except asyncio.TimeoutError as e:
        raise ProviderNetworkError(provider, f"Request timed out after {timeout_s}s") from e
    except aiohttp.ClientError as e:
        raise ProviderNetworkError(provider, str(e)) from e


class StreamConnection(ABC):
    """A live duplex transcription session."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def send(self, frame: bytes) -> None:
        """Queue a PCM frame for upload."""
        ...

    @abstractmethod
    def on_partial(self, callback: Callable[[str], None]) -> Callable[[], None]:
        ...

    @abstractmethod
    def on_final(self, callback: Callable[[str], None]) -> Callable[[], None]:
        ...

    @abstractmethod
    async def finish(self) -> TranscribeResult:
        """Signal end of audio and wait for the final transcript."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Tear the connection down without waiting for results."""
        ...


class TranscriptionProvider(ABC):
    """Speech-to-text backend. Batch providers implement :meth:`transcribe`."""

    name: str = ""
    display_name: str = ""
    supports_streaming: bool = False
    supports_batch: bool = True
    experimental: bool = False

    def __init__(self, api_key: str, endpoint: str, model: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._model = model
        self._timeout_s = timeout_s

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def update_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    @abstractmethod
    async def transcribe(
        self, audio: bytes, options: TranscribeOptions | None = None
    ) -> TranscribeResult:
        ...

    async def open_stream(self, options: StreamOptions | None = None) -> StreamConnection:
        raise ProviderGenericError(self.name, "Streaming is not supported")

    async def dispose(self) -> None:
        """Release connections held by this provider."""

    def _require_api_key(self) -> None:
        if not self._api_key:
            raise ProviderAuthError(self.name, "API key not configured")


class RefinementProvider(ABC):
    """Language-model text clean-up backend."""

    name: str = ""
    display_name: str = ""

    def __init__(self, api_key: str, endpoint: str, model: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._model = model
        self._timeout_s = timeout_s

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return bool(self._api_key) and bool(self._endpoint)

    def update_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    @abstractmethod
    async def process(self, text: str, context: ProcessContext | None = None) -> ProcessResult:
        ...

    async def dispose(self) -> None:
        """Release connections held by this provider."""
