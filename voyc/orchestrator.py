"""Drives one dictation cycle from hotkey to delivered text."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, Callable

from voyc.audio import AudioAccumulator, AudioFormat
from voyc.config import Config
from voyc.delivery import DeliveryOutcome
from voyc.endpoint import EndpointDetector
from voyc.errors import DeliveryError, ProviderError, StateError
from voyc.events import CallbackList
from voyc.metrics import LatencyAlert, LatencyRecord, MetricsTracker
from voyc.providers.base import (
    ProcessContext,
    StreamConnection,
    StreamOptions,
    TranscribeOptions,
    TranscribeResult,
    TranscriptionProvider,
)
from voyc.providers.factory import ProviderFactory
from voyc.refine import PipelineConfig, PipelineResult, RefinementPipeline, RefinementStage
from voyc.state import (
    DictationState,
    DictationStateMachine,
    StateTransition,
    TransitionReason,
)

if TYPE_CHECKING:
    from voyc.audio import AudioSource
    from voyc.delivery import Delivery

logger = logging.getLogger(__name__)

TERMINAL_APP = "terminal"


def new_session_id() -> str:
    return f"voyc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class DictationOrchestrator:
    """
    Sequences capture, transcription, refinement and delivery.

    Everything runs on one asyncio loop. ``start()`` opens the capture and
    schedules a cycle task that waits for the user (or the silence timeout)
    to stop, then walks the state machine through ``processing`` and
    ``injecting`` back to ``idle``. ``abort()`` may be called at any point:
    it returns to ``idle`` at once, cancels the cycle task and discards the
    captured audio.

    Transcription failures end the cycle in ``error``. Refinement and
    delivery failures do not; the cycle finishes with the best text
    available.
    """

    def __init__(
        self,
        config: Config,
        capture: "AudioSource",
        delivery: "Delivery",
        factory: ProviderFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config.copy()
        self._capture = capture
        self._delivery = delivery
        self._factory = factory or ProviderFactory(self._config.provider, self._config.refinement)
        self._clock = clock

        self._state = DictationStateMachine(clock=clock)
        self._accumulator = AudioAccumulator(self._audio_format(), clock=clock)
        self._detector = EndpointDetector.from_config(self._config.endpoint)
        self._detector.on_silence_timeout(self._on_silence_timeout)
        self._metrics = MetricsTracker(
            self._config.latency.thresholds,
            alerts_enabled=self._config.latency.alerts_enabled,
        )
        self._pipeline = self._build_pipeline()

        # Per-cycle state
        self._cycle_config = self._config
        self._cycle_provider: TranscriptionProvider | None = None
        self._cycle_pipeline = self._pipeline
        self._config_pending = False
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._stop_reason = TransitionReason.USER_TOGGLE
        self._stream: StreamConnection | None = None
        self._session_id: str | None = None
        self._record: LatencyRecord | None = None
        self._terminal = False

        self._text_callbacks: CallbackList[Callable[[str, DeliveryOutcome], None]] = CallbackList("text")
        self._error_callbacks: CallbackList[Callable[[str], None]] = CallbackList("error")
        self._latency_callbacks: CallbackList[Callable[[LatencyRecord], None]] = CallbackList("latency")
        self._partial_callbacks: CallbackList[Callable[[str], None]] = CallbackList("partial")

    # -- Accessors ---------------------------------------------------------

    @property
    def state(self) -> DictationState:
        return self._state.state

    @property
    def state_machine(self) -> DictationStateMachine:
        return self._state

    @property
    def metrics(self) -> MetricsTracker:
        return self._metrics

    @property
    def factory(self) -> ProviderFactory:
        return self._factory

    @property
    def pipeline(self) -> RefinementPipeline:
        return self._pipeline

    @property
    def config(self) -> Config:
        return self._config.copy()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def terminal_mode(self) -> bool:
        return self._terminal

    @property
    def is_active(self) -> bool:
        return self._state.state not in (DictationState.IDLE, DictationState.ERROR)

    # -- Subscriptions -----------------------------------------------------

    def on_state_change(self, callback: Callable[[StateTransition], None]) -> Callable[[], None]:
        return self._state.subscribe(callback)

    def on_text(self, callback: Callable[[str, DeliveryOutcome], None]) -> Callable[[], None]:
        return self._text_callbacks.add(callback)

    def on_error(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._error_callbacks.add(callback)

    def on_latency(self, callback: Callable[[LatencyRecord], None]) -> Callable[[], None]:
        return self._latency_callbacks.add(callback)

    def on_alert(self, callback: Callable[[LatencyAlert], None]) -> Callable[[], None]:
        return self._metrics.on_alert(callback)

    def on_partial(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Interim transcript updates while a streaming provider is active."""
        return self._partial_callbacks.add(callback)

    # -- Commands ----------------------------------------------------------

    async def toggle(self, terminal: bool = False, reason: TransitionReason = TransitionReason.HOTKEY) -> bool:
        if self._state.can_stop:
            return self.stop(reason)
        if self._state.can_start:
            return await self.start(terminal=terminal, reason=reason)
        logger.debug("Ignoring toggle during %s", self._state.state.value)
        return False

    async def start(
        self,
        terminal: bool = False,
        reason: TransitionReason = TransitionReason.USER_TOGGLE,
    ) -> bool:
        """Begin capturing. Returns ``False`` if a cycle could not start."""
        if self._config_pending and not self.is_active:
            await self._apply_config()

        if self._state.state == DictationState.ERROR:
            self._state.reset(reason)

        if not self._state.can_start:
            logger.warning("Cannot start dictation in state %s", self._state.state.value)
            return False

        config = self._cycle_config = self._config.copy()
        if not self._factory.is_configured():
            self._fail(f"Transcription provider not configured: {self._factory.current_type.value}")
            return False

        if not self._state.start(reason):
            return False

        self._session_id = session_id = new_session_id()
        self._terminal = terminal
        self._accumulator.clear()
        self._detector.reset()
        self._detector.configure(
            silence_threshold_db=config.endpoint.silence_threshold_db,
            min_silent_frames=config.endpoint.min_silent_frames,
            silence_timeout_s=config.endpoint.silence_timeout_s,
        )
        self._record = LatencyRecord(
            session_id=session_id,
            capture_start=self._clock(),
            provider=self._factory.current_type.value,
        )
        self._stop_event = asyncio.Event()
        self._stop_reason = TransitionReason.USER_TOGGLE

        provider = self._cycle_provider = self._factory.get_current_provider()
        self._cycle_pipeline = self._pipeline
        if provider.supports_streaming:
            try:
                stream = await provider.open_stream(
                    StreamOptions(
                        language=config.provider.language,
                        sample_rate=config.audio.sample_rate,
                    )
                )
            except ProviderError as e:
                self._fail(str(e))
                return False
            if self._session_id != session_id or self._state.state != DictationState.STARTING:
                # Aborted while connecting
                await stream.close()
                return False
            stream.on_partial(self._partial_callbacks.emit)
            self._stream = stream

        loop = asyncio.get_running_loop()
        try:
            self._capture.start(lambda frame: loop.call_soon_threadsafe(self._handle_frame, frame))
        except Exception as e:
            logger.error("Failed to start audio capture: %s", e)
            await self._close_stream()
            self._fail(f"Capture start failed: {e}")
            return False

        self._state.mark_capture_started()
        self._task = asyncio.create_task(
            self._run_cycle(session_id, self._stop_event, self._record)
        )
        logger.info("Dictation started (session %s%s)", session_id, ", terminal" if terminal else "")
        return True

    def stop(self, reason: TransitionReason = TransitionReason.USER_TOGGLE) -> bool:
        """End capture; processing continues in the cycle task."""
        if not self._state.can_stop:
            logger.debug("Cannot stop dictation in state %s", self._state.state.value)
            return False

        self._capture.stop()
        if self._record is not None:
            self._record.capture_end = self._clock()
        self._state.stop(reason)
        self._stop_reason = reason
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Dictation stopped (%s)", reason.value)
        return True

    async def abort(self) -> None:
        """Return to ``idle`` immediately and drop the in-flight cycle."""
        task, self._task = self._task, None
        if task is None and self._state.is_idle and self._stream is None:
            return

        logger.warning("Dictation aborted")
        self._state.reset(TransitionReason.ABORT)
        self._capture.stop()

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

        await self._close_stream()
        self._accumulator.clear()
        self._detector.reset()
        self._record = None
        self._session_id = None
        if self._config_pending:
            await self._apply_config()

    def reset(self) -> bool:
        """Clear an ``error`` state."""
        return self._state.reset(TransitionReason.USER_TOGGLE)

    async def wait_for_cycle(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def update_config(self, config: Config) -> None:
        """
        Apply new settings. An in-flight cycle keeps its snapshot.

        Provider, pipeline and audio changes wait until the current cycle
        ends, so its provider is never disposed underneath it.
        """
        self._config = config.copy()
        self._metrics.update_thresholds(self._config.latency.thresholds)
        self._metrics.set_alerts_enabled(self._config.latency.alerts_enabled)
        if self.is_active:
            self._config_pending = True
            logger.debug("Cycle in progress, deferring provider changes")
            return
        await self._apply_config()

    async def _apply_config(self) -> None:
        self._config_pending = False
        await self._factory.update_config(self._config.provider, self._config.refinement)
        self._accumulator = AudioAccumulator(self._audio_format(), clock=self._clock)
        self._detector.configure(
            silence_threshold_db=self._config.endpoint.silence_threshold_db,
            min_silent_frames=self._config.endpoint.min_silent_frames,
            silence_timeout_s=self._config.endpoint.silence_timeout_s,
        )
        self._pipeline = self._build_pipeline()
        logger.debug("Orchestrator configuration updated")

    async def dispose(self) -> None:
        await self.abort()
        await self._factory.dispose()
        self._detector.dispose()
        self._metrics.dispose()
        self._state.dispose()
        for callbacks in (
            self._text_callbacks,
            self._error_callbacks,
            self._latency_callbacks,
            self._partial_callbacks,
        ):
            callbacks.clear()

    # -- Cycle -------------------------------------------------------------

    def _handle_frame(self, frame: bytes) -> None:
        if self._state.state != DictationState.LISTENING:
            return
        self._accumulator.append(frame)
        if self._stream is not None:
            self._stream.send(frame)
        self._detector.process_frame(frame)

    def _on_silence_timeout(self) -> None:
        if self._state.can_stop:
            logger.info("Silence timeout reached, stopping")
            self.stop(TransitionReason.SILENCE_DETECTED)

    async def _run_cycle(self, session_id: str, stop_event: asyncio.Event, record: LatencyRecord) -> None:
        try:
            await stop_event.wait()
            await self._process(record)
        except StateError as e:
            logger.debug("Cycle %s abandoned: %s", session_id, e)
        except Exception as e:
            logger.exception("Dictation cycle failed")
            self._fail(f"Unexpected error: {e}")
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                if self._config_pending and not self.is_active:
                    await self._apply_config()

    async def _process(self, record: LatencyRecord) -> None:
        config = self._cycle_config

        self._advance(self._state.mark_capture_stopped(self._stop_reason), DictationState.PROCESSING)

        duration = self._accumulator.duration()
        if duration < config.audio.min_audio_s:
            logger.info("Discarding %.2fs of audio, below %.2fs minimum", duration, config.audio.min_audio_s)
            await self._close_stream()
            self._accumulator.clear()
            self._state.reset(TransitionReason.ABORT)
            return

        try:
            result = await self._transcribe(config, duration)
        except ProviderError as e:
            logger.error("Transcription failed: %s", e)
            self._fail(str(e))
            return
        finally:
            self._accumulator.clear()

        record.stt_complete = self._clock()
        text = result.text.strip()
        if not text:
            logger.info("Empty transcription, nothing to deliver")
            self._state.reset(TransitionReason.STT_COMPLETE)
            return

        if config.privacy.log_transcripts:
            logger.info("Transcript: %s", text)
        else:
            logger.info("Transcribed %d characters in %.0fms", len(text), result.latency_ms)

        reason = TransitionReason.STT_COMPLETE
        if config.refinement.enabled:
            refined = await self._refine(text, result)
            if refined is not None:
                record.post_process_complete = self._clock()
                record.refiner = config.refinement.refiner.value
                if refined.used_provider("baseten"):
                    record.baseten_ms = refined.stage_latency("baseten")
                text = refined.text
                reason = TransitionReason.POSTPROCESS_COMPLETE

        if record.post_process_complete is None:
            record.post_process_complete = record.stt_complete

        self._advance(self._state.mark_stt_complete(reason), DictationState.INJECTING)

        outcome = await self._deliver(text)
        record.injection_complete = self._clock()

        self._advance(self._state.mark_complete(), DictationState.IDLE)
        self._metrics.complete(record)
        self._latency_callbacks.emit(record)
        self._text_callbacks.emit(text, outcome)

    async def _transcribe(self, config: Config, duration: float) -> TranscribeResult:
        stream, self._stream = self._stream, None
        if stream is not None:
            return await stream.finish()

        provider = self._cycle_provider
        audio = self._accumulator.to_container()
        logger.debug("Sending %.2fs of audio (%d bytes) to %s", duration, len(audio), provider.name)
        return await provider.transcribe(
            audio,
            TranscribeOptions(language=config.provider.language, duration=duration),
        )

    async def _refine(self, text: str, result: TranscribeResult) -> PipelineResult | None:
        pipeline = self._cycle_pipeline
        if not any(stage.provider.is_configured() for stage in pipeline.stages):
            logger.warning("Refinement enabled but no refiner is configured, skipping")
            return None

        context = ProcessContext(
            language=result.language,
            confidence=result.confidence,
            audio_duration=result.duration,
            target_app=TERMINAL_APP if self._terminal else "default",
        )
        refined = await pipeline.process(text, context)
        if refined.has_errors:
            logger.warning("Refinement had errors, using %s text", "refined" if refined.modified else "original")
        return refined

    async def _deliver(self, text: str) -> DeliveryOutcome:
        try:
            outcome = await asyncio.to_thread(self._delivery.deliver, text, self._terminal)
        except DeliveryError as e:
            logger.error("Delivery failed: %s", e)
            outcome = DeliveryOutcome.FAILED

        if outcome == DeliveryOutcome.FAILED:
            self._error_callbacks.emit("Failed to deliver text")
        elif outcome == DeliveryOutcome.CLIPBOARD_ONLY:
            logger.info("Text copied to clipboard, paste manually")
        return outcome

    def _advance(self, accepted: bool, target: DictationState) -> None:
        if not accepted:
            raise StateError(self._state.state.value, target.value)

    def _fail(self, message: str) -> None:
        self._state.mark_error(message)
        self._error_callbacks.emit(message)

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()

    def _audio_format(self) -> AudioFormat:
        return AudioFormat(
            sample_rate=self._config.audio.sample_rate,
            channels=self._config.audio.channels,
        )

    def _build_pipeline(self) -> RefinementPipeline:
        refiner = self._factory.get_refiner(self._config.refinement.refiner)
        return RefinementPipeline(
            PipelineConfig.from_refinement(self._config.refinement),
            [RefinementStage(refiner.name, refiner)],
            clock=self._clock,
        )
