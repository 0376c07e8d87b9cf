"""ElevenLabs Scribe speech-to-text, batch and realtime."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from typing import Any, Callable
from urllib.parse import quote

import aiohttp

from voyc.audio import StreamChunker
from voyc.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderGenericError,
    ProviderNetworkError,
    ProviderRateLimitError,
)
from voyc.events import CallbackList
from voyc.providers.base import (
    StreamConnection,
    StreamOptions,
    TranscribeOptions,
    TranscribeResult,
    TranscriptionProvider,
    parse_json,
    raise_for_status,
    send_request,
)
from voyc.types import RealtimeConfigMessage

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.elevenlabs.io/v1"
DEFAULT_BATCH_MODEL = "scribe_v2"
DEFAULT_REALTIME_MODEL = "scribe_v2_realtime"
PCM_BYTES_PER_SECOND = 32_000
FINALIZE_TIMEOUT_S = 5.0


class ElevenLabsProvider(TranscriptionProvider):
    """Batch transcription through ``/speech-to-text``."""

    name = "elevenlabs"
    display_name = "ElevenLabs Scribe"

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_BATCH_MODEL,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(api_key, endpoint or DEFAULT_ENDPOINT, model, timeout_s)

    def build_form(self, audio: bytes, options: TranscribeOptions) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("model_id", options.model_id or self._model)
        if options.language:
            form.add_field("language_code", options.language)
        form.add_field("audio", audio, filename="audio.wav", content_type="audio/wav")
        return form

    async def transcribe(
        self, audio: bytes, options: TranscribeOptions | None = None
    ) -> TranscribeResult:
        self._require_api_key()
        if not audio:
            raise ProviderGenericError(self.name, "No audio data provided")

        options = options or TranscribeOptions()
        logger.debug("Transcribing %d bytes with %s", len(audio), self.name)

        started = time.monotonic()
        try:
            response = await send_request(
                self.name,
                f"{self._endpoint}/speech-to-text",
                headers={"xi-api-key": self._api_key, "Accept": "application/json"},
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
            language=payload.get("language_code") or options.language,
            duration=options.duration or max(0, len(audio) - 44) / PCM_BYTES_PER_SECOND,
            latency_ms=latency_ms,
            confidence=payload.get("language_probability"),
        )


class ElevenLabsStream(StreamConnection):
    """
    One realtime transcription socket.

    Frames are re-chunked to 100 ms and queued for a writer task; a reader
    task folds server messages into the transcript. Final segments
    accumulate, and every update publishes ``final + interim`` to
    ``on_partial`` observers.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        websocket: Any,
        provider_name: str = "elevenlabs-realtime",
        finalize_timeout_s: float = FINALIZE_TIMEOUT_S,
        on_closed: Callable[["ElevenLabsStream"], None] | None = None,
    ) -> None:
        self._session = session
        self._ws = websocket
        self._provider = provider_name
        self._finalize_timeout_s = finalize_timeout_s
        self._on_closed = on_closed

        self._final_text = ""
        self._interim_text = ""
        self._error: str | None = None
        self._open = True
        self._ended = False
        self._bytes_sent = 0

        self._outgoing: asyncio.Queue[dict | None] = asyncio.Queue()
        self._finished = asyncio.Event()
        self._chunker = StreamChunker(self._queue_chunk)
        self._partial_callbacks: CallbackList[Callable[[str], None]] = CallbackList("partial")
        self._final_callbacks: CallbackList[Callable[[str], None]] = CallbackList("final")

        self._reader = asyncio.create_task(self._read_loop())
        self._writer = asyncio.create_task(self._write_loop())

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def text(self) -> str:
        return self._final_text + self._interim_text

    def on_partial(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._partial_callbacks.add(callback)

    def on_final(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._final_callbacks.add(callback)

    def send(self, frame: bytes) -> None:
        if not self._open or self._ended:
            logger.debug("Dropping frame, stream is not accepting audio")
            return
        self._chunker.append(frame)

    async def send_config(self, options: StreamOptions, model: str) -> None:
        message: RealtimeConfigMessage = {
            "type": "config",
            "model_id": options.model_id or model,
            "audio_format": "pcm",
            "sample_rate": options.sample_rate,
            "vad": options.vad_enabled,
        }
        if options.language:
            message["language_code"] = options.language
        await self._ws.send_json(message)

    async def finish(self) -> TranscribeResult:
        if not self._open:
            raise ProviderNetworkError(self._provider, "Stream already closed")

        started = time.monotonic()
        self._chunker.flush()
        self._ended = True
        self._outgoing.put_nowait({"type": "end"})

        timed_out = False
        try:
            await asyncio.wait_for(self._finished.wait(), timeout=self._finalize_timeout_s)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("No close from server %.1fs after end of audio", self._finalize_timeout_s)
        finally:
            await self.close()

        if self._error is not None:
            raise ProviderGenericError(self._provider, f"Server error: {self._error}")

        text = self.text.strip()
        if not text and timed_out:
            raise ProviderNetworkError(self._provider, "Timed out waiting for final transcript")

        return TranscribeResult(
            text=text,
            duration=self._bytes_sent / PCM_BYTES_PER_SECOND,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False

        current = asyncio.current_task()
        for task in (self._writer, self._reader):
            if task is not current and not task.done():
                task.cancel()
        for task in (self._writer, self._reader):
            if task is not current:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        try:
            await self._ws.close()
        except aiohttp.ClientError as e:
            logger.debug("Error closing realtime socket: %s", e)
        if self._session is not None:
            await self._session.close()

        self._partial_callbacks.clear()
        self._final_callbacks.clear()
        if self._on_closed is not None:
            self._on_closed(self)

    def _queue_chunk(self, chunk: bytes, is_final: bool) -> None:
        self._bytes_sent += len(chunk)
        self._outgoing.put_nowait(
            {"type": "audio", "data": base64.b64encode(chunk).decode("ascii")}
        )

    async def _write_loop(self) -> None:
        while True:
            message = await self._outgoing.get()
            if message is None:
                return
            try:
                await self._ws.send_json(message)
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.error("Failed to send %s message: %s", message.get("type"), e)
                self._error = f"Failed to send audio: {e}"
                self._finished.set()
                return

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            self._finished.set()

    def _handle_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.error("Unparseable realtime message: %.200s", raw)
            return

        kind = message.get("type")
        if kind == "transcript":
            text = message.get("text") or ""
            if message.get("is_final"):
                self._final_text += text
                self._interim_text = ""
                self._final_callbacks.emit(self._final_text)
            else:
                self._interim_text = text
            self._partial_callbacks.emit(self.text)
        elif kind == "error":
            self._error = message.get("message") or "unknown error"
            logger.error("Realtime server error: %s", self._error)
        elif kind == "info":
            logger.debug("Realtime server info: %s", message.get("message"))
        else:
            logger.warning("Unknown realtime message type: %s", kind)


class ElevenLabsRealtimeProvider(TranscriptionProvider):
    """Streaming transcription over a websocket. Experimental."""

    name = "elevenlabs-realtime"
    display_name = "ElevenLabs Realtime"
    supports_streaming = True
    supports_batch = False
    experimental = True

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_REALTIME_MODEL,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(api_key, endpoint or DEFAULT_ENDPOINT, model, timeout_s)
        self._streams: set[ElevenLabsStream] = set()

    @property
    def open_streams(self) -> int:
        return len(self._streams)

    def websocket_url(self) -> str:
        base = self._endpoint
        if base.startswith("https:"):
            base = "wss:" + base[len("https:"):]
        elif base.startswith("http:"):
            base = "ws:" + base[len("http:"):]
        return f"{base}/speech-to-text/realtime?xi-api-key={quote(self._api_key, safe='')}"

    async def transcribe(
        self, audio: bytes, options: TranscribeOptions | None = None
    ) -> TranscribeResult:
        raise ProviderGenericError(
            self.name, "Batch transcription is not supported, use open_stream()"
        )

    async def open_stream(self, options: StreamOptions | None = None) -> StreamConnection:
        self._require_api_key()
        options = options or StreamOptions()

        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, connect=self._timeout_s))
        try:
            websocket = await session.ws_connect(self.websocket_url())
        except aiohttp.WSServerHandshakeError as e:
            await session.close()
            if e.status == 401:
                raise ProviderAuthError(self.name, "Invalid API key") from e
            if e.status == 429:
                raise ProviderRateLimitError(self.name) from e
            if 400 <= e.status < 500:
                raise ProviderGenericError(self.name, f"HTTP {e.status}: {e.message}") from e
            raise ProviderNetworkError(self.name, f"Handshake failed with status {e.status}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            raise ProviderNetworkError(self.name, f"Connection failed: {e}") from e
        except asyncio.CancelledError:
            await session.close()
            raise

        stream = ElevenLabsStream(
            session,
            websocket,
            provider_name=self.name,
            on_closed=self._streams.discard,
        )
        self._streams.add(stream)
        try:
            await stream.send_config(options, self._model)
        except (aiohttp.ClientError, ConnectionError) as e:
            await stream.close()
            raise ProviderNetworkError(self.name, f"Failed to send config: {e}") from e

        logger.debug("Realtime stream opened with %s", options.model_id or self._model)
        return stream

    async def dispose(self) -> None:
        for stream in list(self._streams):
            await stream.close()
        self._streams.clear()
