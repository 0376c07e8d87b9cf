"""Tests for the dictation orchestrator."""

from __future__ import annotations

import asyncio
from typing import Callable
from unittest.mock import MagicMock

import numpy as np
import pytest

from voyc.audio import AudioSource
from voyc.config import Config, ProviderType, RefinementConfig
from voyc.delivery import Delivery, DeliveryOutcome
from voyc.errors import ProviderAuthError, ProviderNetworkError
from voyc.orchestrator import DictationOrchestrator, new_session_id
from voyc.providers.base import (
    ProcessContext,
    ProcessResult,
    RefinementProvider,
    StreamConnection,
    StreamOptions,
    TranscribeOptions,
    TranscribeResult,
    TranscriptionProvider,
)
from voyc.providers.factory import ProviderFactory
from voyc.state import DictationState, TransitionReason

S = DictationState

# 30 ms frames at 16 kHz
SPEECH = (np.sin(2 * np.pi * 440 * np.arange(480) / 16000) * 16383).astype("<i2").tobytes()
SILENCE = bytes(960)
CYCLE_TIMEOUT_S = 2.0


class FakeCapture(AudioSource):
    """Audio source driven by the test."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.on_frame: Callable[[bytes], None] | None = None
        self.started = 0
        self.stopped = 0

    def start(self, on_frame: Callable[[bytes], None]) -> None:
        if self.error is not None:
            raise self.error
        self.on_frame = on_frame
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def push(self, frame: bytes, count: int = 1) -> None:
        for _ in range(count):
            self.on_frame(frame)


class FakeDelivery(Delivery):
    def __init__(self, outcome: DeliveryOutcome = DeliveryOutcome.AUTO_PASTE) -> None:
        self.outcome = outcome
        self.delivered: list[tuple[str, bool]] = []

    def deliver(self, text: str, terminal: bool = False) -> DeliveryOutcome:
        self.delivered.append((text, terminal))
        return self.outcome


class StubProvider(TranscriptionProvider):
    """Batch provider returning canned text after an optional delay."""

    name = "stub"

    def __init__(self, text: str = "hello world", error: Exception | None = None, delay_s: float = 0.0) -> None:
        super().__init__("key", "https://stt.example", "stub-model")
        self.text = text
        self.error = error
        self.delay_s = delay_s
        self.calls: list[tuple[bytes, TranscribeOptions | None]] = []

    async def transcribe(self, audio: bytes, options: TranscribeOptions | None = None) -> TranscribeResult:
        self.calls.append((audio, options))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return TranscribeResult(text=self.text, language="en", duration=options.duration, latency_ms=1.0)


class FakeStream(StreamConnection):
    def __init__(self, text: str) -> None:
        self.text = text
        self.frames: list[bytes] = []
        self.closed = False
        self.finished = False
        self._partial: Callable[[str], None] | None = None

    @property
    def is_open(self) -> bool:
        return not self.closed

    def send(self, frame: bytes) -> None:
        self.frames.append(frame)
        if self._partial is not None and len(self.frames) == 1:
            self._partial("hel")

    def on_partial(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self._partial = callback
        return lambda: None

    def on_final(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return lambda: None

    async def finish(self) -> TranscribeResult:
        self.finished = True
        self.closed = True
        return TranscribeResult(text=self.text, duration=len(b"".join(self.frames)) / 32000)

    async def close(self) -> None:
        self.closed = True


class StubStreamingProvider(TranscriptionProvider):
    name = "stub-realtime"
    supports_streaming = True
    supports_batch = False

    def __init__(self, text: str = "hello world", error: Exception | None = None) -> None:
        super().__init__("key", "wss://stt.example", "stub-rt")
        self.text = text
        self.error = error
        self.streams: list[FakeStream] = []
        self.options: StreamOptions | None = None

    async def transcribe(self, audio: bytes, options: TranscribeOptions | None = None) -> TranscribeResult:
        raise AssertionError("batch transcription used with a streaming provider")

    async def open_stream(self, options: StreamOptions | None = None) -> StreamConnection:
        if self.error is not None:
            raise self.error
        self.options = options
        stream = FakeStream(self.text)
        self.streams.append(stream)
        return stream


class StubRefiner(RefinementProvider):
    name = "baseten"

    def __init__(self, reply: str = "Hello, world.", error: Exception | None = None) -> None:
        super().__init__("key", "https://refine.example", "llama")
        self.reply = reply
        self.error = error
        self.contexts: list[ProcessContext | None] = []

    async def process(self, text: str, context: ProcessContext | None = None) -> ProcessResult:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return ProcessResult(text=self.reply, latency_ms=1.0, modified=self.reply != text)


class StubFactory(ProviderFactory):
    """Real factory bookkeeping with fixed provider instances."""

    def __init__(self, config: Config, provider: TranscriptionProvider, refiner: RefinementProvider | None = None) -> None:
        super().__init__(config.provider, config.refinement)
        self.provider = provider
        self.refiner = refiner

    def get_current_provider(self) -> TranscriptionProvider:
        return self.provider

    def get_refiner(self, refiner_type=None) -> RefinementProvider:
        if self.refiner is not None:
            return self.refiner
        return super().get_refiner(refiner_type)


def make_config(refine: bool = False) -> Config:
    config = Config()
    config.provider.elevenlabs_api_key = "el-key"
    config.endpoint.silence_timeout_s = 0.05
    config.endpoint.min_silent_frames = 10
    config.refinement = RefinementConfig(enabled=refine)
    return config


class Harness:
    """Orchestrator wired to fakes, with every emitted event recorded."""

    def __init__(
        self,
        provider: TranscriptionProvider | None = None,
        refiner: RefinementProvider | None = None,
        config: Config | None = None,
        delivery: FakeDelivery | None = None,
        capture: FakeCapture | None = None,
    ) -> None:
        self.config = config or make_config(refine=refiner is not None)
        self.provider = provider or StubProvider()
        self.capture = capture or FakeCapture()
        self.delivery = delivery or FakeDelivery()
        self.orchestrator = DictationOrchestrator(
            self.config,
            self.capture,
            self.delivery,
            StubFactory(self.config, self.provider, refiner),
        )
        self.transitions = []
        self.texts: list[tuple[str, DeliveryOutcome]] = []
        self.errors: list[str] = []
        self.records = []
        self.orchestrator.on_state_change(self.transitions.append)
        self.orchestrator.on_text(lambda text, outcome: self.texts.append((text, outcome)))
        self.orchestrator.on_error(self.errors.append)
        self.orchestrator.on_latency(self.records.append)

    @property
    def states(self) -> list[DictationState]:
        return [t.to_state for t in self.transitions]

    async def speak_and_wait(self, speech_frames: int = 10, silent_frames: int = 12) -> None:
        """Push speech then silence and wait for the cycle to finish."""
        self.capture.push(SPEECH, speech_frames)
        self.capture.push(SILENCE, silent_frames)
        await asyncio.wait_for(self.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

    async def speak_and_stop(self, frames: int = 10) -> None:
        """Push speech, stop by hand and wait for the cycle to finish."""
        self.capture.push(SPEECH, frames)
        await asyncio.sleep(0.01)
        assert self.orchestrator.stop()
        await asyncio.wait_for(self.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)


class TestHappyPath:
    """End-to-end cycles that deliver text."""

    def test_silence_timeout_cycle(self) -> None:
        """Test speech then silence runs the full cycle back to idle."""
        h = Harness()

        async def scenario() -> None:
            assert await h.orchestrator.start()
            assert h.orchestrator.state == S.LISTENING
            await h.speak_and_wait()

        asyncio.run(scenario())

        assert h.states == [S.STARTING, S.LISTENING, S.STOPPING, S.PROCESSING, S.INJECTING, S.IDLE]
        assert h.transitions[2].reason == TransitionReason.SILENCE_DETECTED
        assert h.delivery.delivered == [("hello world", False)]
        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]
        assert h.capture.stopped == 1
        assert h.errors == []

    def test_silence_only_cycle(self) -> None:
        """Test a cycle of nothing but silence still ends at the timeout."""
        h = Harness()

        async def scenario() -> None:
            assert await h.orchestrator.start()
            h.capture.push(SILENCE, 12)
            await asyncio.wait_for(h.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())

        assert h.states == [S.STARTING, S.LISTENING, S.STOPPING, S.PROCESSING, S.INJECTING, S.IDLE]
        assert h.transitions[2].reason == TransitionReason.SILENCE_DETECTED
        assert len(h.provider.calls[0][0]) == 44 + 12 * len(SILENCE)
        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]
        stamps = h.records[0].timestamps()
        assert None not in stamps
        assert stamps == sorted(stamps)

    def test_latency_record(self) -> None:
        """Test one record per cycle with ordered timestamps."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_wait()

        asyncio.run(scenario())

        assert len(h.records) == 1
        record = h.records[0]
        assert record.is_complete
        stamps = record.timestamps()
        assert None not in stamps
        assert stamps == sorted(stamps)
        assert record.post_process_complete == record.stt_complete
        assert record.post_process_ms == 0
        assert record.provider == "elevenlabs"
        assert record.session_id.startswith("voyc_")
        assert h.orchestrator.metrics.last_record is record

    def test_audio_sent_as_container(self) -> None:
        """Test the batch provider receives a WAV with every captured frame."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_wait(speech_frames=10, silent_frames=12)

        asyncio.run(scenario())

        audio, options = h.provider.calls[0]
        assert audio[:4] == b"RIFF"
        assert len(audio) == 44 + 22 * len(SPEECH)
        assert options.duration == pytest.approx(22 * 0.03)

    def test_manual_stop(self) -> None:
        """Test stop() ends capture with the given reason."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.transitions[2].reason == TransitionReason.USER_TOGGLE
        assert h.transitions[3].reason == TransitionReason.USER_TOGGLE
        assert h.texts[0][0] == "hello world"

    def test_toggle(self) -> None:
        """Test toggle starts when idle and stops when listening."""
        h = Harness()

        async def scenario() -> None:
            assert await h.orchestrator.toggle()
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            assert await h.orchestrator.toggle()
            await asyncio.wait_for(h.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())

        assert h.transitions[0].reason == TransitionReason.HOTKEY
        assert h.transitions[2].reason == TransitionReason.HOTKEY
        assert h.states[-1] == S.IDLE

    def test_toggle_ignored_while_processing(self) -> None:
        """Test a toggle during processing does nothing."""
        h = Harness(provider=StubProvider(delay_s=0.05))

        async def scenario() -> None:
            await h.orchestrator.start()
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            h.orchestrator.stop()
            await asyncio.sleep(0.01)
            assert h.orchestrator.state == S.PROCESSING
            assert await h.orchestrator.toggle() is False
            await asyncio.wait_for(h.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())
        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]

    def test_terminal_mode(self) -> None:
        """Test the terminal flag reaches delivery."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start(terminal=True)
            assert h.orchestrator.terminal_mode
            await h.speak_and_stop()

        asyncio.run(scenario())
        assert h.delivery.delivered == [("hello world", True)]

    def test_frames_ignored_outside_listening(self) -> None:
        """Test frames arriving after stop are not accumulated."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            on_frame = h.capture.on_frame
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            h.orchestrator.stop()
            on_frame(SPEECH)
            await asyncio.wait_for(h.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())
        audio, _ = h.provider.calls[0]
        assert len(audio) == 44 + 10 * len(SPEECH)

    def test_consecutive_cycles(self) -> None:
        """Test each cycle gets a fresh session and buffer."""
        h = Harness()

        async def scenario() -> list[str]:
            sessions = []
            for _ in range(2):
                await h.orchestrator.start()
                sessions.append(h.orchestrator.session_id)
                await h.speak_and_stop()
            return sessions

        sessions = asyncio.run(scenario())
        assert sessions[0] != sessions[1]
        assert len(h.provider.calls[1][0]) == 44 + 10 * len(SPEECH)
        assert len(h.records) == 2


class TestRefinement:
    """Tests for the refinement step inside a cycle."""

    def test_refined_text_delivered(self) -> None:
        """Test refined text replaces the transcript."""
        refiner = StubRefiner(reply="Hello, world.")
        h = Harness(refiner=refiner)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.texts == [("Hello, world.", DeliveryOutcome.AUTO_PASTE)]
        assert h.transitions[4].reason == TransitionReason.POSTPROCESS_COMPLETE
        record = h.records[0]
        assert record.post_process_complete is not None
        assert record.refiner == "baseten"
        assert record.baseten_ms is not None
        assert refiner.contexts[0].language == "en"

    def test_terminal_context(self) -> None:
        """Test terminal mode is passed to the refiner."""
        refiner = StubRefiner()
        h = Harness(refiner=refiner)

        async def scenario() -> None:
            await h.orchestrator.start(terminal=True)
            await h.speak_and_stop()

        asyncio.run(scenario())
        assert refiner.contexts[0].target_app == "terminal"

    def test_refinement_failure_delivers_transcript(self) -> None:
        """Test a refiner error falls back to the raw transcript."""
        h = Harness(refiner=StubRefiner(error=ProviderNetworkError("baseten", "timeout")))

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]
        assert h.states[-1] == S.IDLE
        assert h.errors == []

    def test_unconfigured_refiner_skipped(self) -> None:
        """Test refinement with no configured refiner is skipped."""
        config = make_config(refine=True)
        h = Harness(config=config)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.texts[0][0] == "hello world"
        assert h.records[0].post_process_complete == h.records[0].stt_complete
        assert h.transitions[4].reason == TransitionReason.STT_COMPLETE


class TestFailures:
    """Tests for errors during a cycle."""

    def test_auth_error_enters_error_state(self) -> None:
        """Test a provider auth failure ends in error and reset returns to idle."""
        h = Harness(provider=StubProvider(error=ProviderAuthError("stub", "Invalid API key")))

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_wait()

        asyncio.run(scenario())

        assert h.orchestrator.state == S.ERROR
        assert h.states == [S.STARTING, S.LISTENING, S.STOPPING, S.PROCESSING, S.ERROR]
        assert h.errors == ["stub authentication failed: Invalid API key"]
        assert h.orchestrator.state_machine.last_error == h.errors[0]
        assert h.delivery.delivered == []
        assert h.records == []

        assert h.orchestrator.reset()
        assert h.orchestrator.state == S.IDLE

    def test_start_from_error_resets(self) -> None:
        """Test start() clears a previous error."""
        h = Harness(provider=StubProvider(error=ProviderNetworkError("stub")))

        async def scenario() -> bool:
            await h.orchestrator.start()
            await h.speak_and_stop()
            assert h.orchestrator.state == S.ERROR
            h.provider.error = None
            started = await h.orchestrator.start()
            await h.speak_and_stop()
            return started

        assert asyncio.run(scenario())
        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]

    def test_provider_not_configured(self) -> None:
        """Test start without a key goes to error."""
        config = make_config()
        config.provider.elevenlabs_api_key = ""
        h = Harness(config=config)

        assert asyncio.run(h.orchestrator.start()) is False
        assert h.orchestrator.state == S.ERROR
        assert h.errors == ["Transcription provider not configured: elevenlabs"]
        assert h.capture.started == 0

    def test_capture_start_failure(self) -> None:
        """Test a device error at start goes to error."""
        h = Harness(capture=FakeCapture(error=OSError("device busy")))

        assert asyncio.run(h.orchestrator.start()) is False
        assert h.orchestrator.state == S.ERROR
        assert h.errors == ["Capture start failed: device busy"]

    def test_short_audio_discarded(self) -> None:
        """Test audio below the minimum duration is dropped silently."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop(frames=2)

        asyncio.run(scenario())

        assert h.provider.calls == []
        assert h.orchestrator.state == S.IDLE
        assert h.transitions[-1].reason == TransitionReason.ABORT
        assert h.texts == []

    def test_empty_transcript(self) -> None:
        """Test a blank transcript returns to idle without delivery."""
        h = Harness(provider=StubProvider(text="   "))

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.delivery.delivered == []
        assert h.orchestrator.state == S.IDLE
        assert h.transitions[-1].reason == TransitionReason.STT_COMPLETE

    def test_delivery_failure_is_not_fatal(self) -> None:
        """Test a failed delivery reports an error but completes the cycle."""
        h = Harness(delivery=FakeDelivery(DeliveryOutcome.FAILED))

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        assert h.errors == ["Failed to deliver text"]
        assert h.orchestrator.state == S.IDLE
        assert h.texts == [("hello world", DeliveryOutcome.FAILED)]


class TestAbort:
    """Tests for abort()."""

    def test_abort_while_listening(self) -> None:
        """Test abort discards audio and returns to idle."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            await h.orchestrator.abort()

        asyncio.run(scenario())

        assert h.orchestrator.state == S.IDLE
        assert h.transitions[-1].reason == TransitionReason.ABORT
        assert h.capture.stopped == 1
        assert h.provider.calls == []
        assert h.orchestrator.session_id is None

    def test_abort_while_processing(self) -> None:
        """Test abort cancels an in-flight transcription."""
        h = Harness(provider=StubProvider(delay_s=5))

        async def scenario() -> None:
            await h.orchestrator.start()
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            h.orchestrator.stop()
            await asyncio.sleep(0.01)
            assert h.orchestrator.state == S.PROCESSING
            await asyncio.wait_for(h.orchestrator.abort(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())

        assert h.orchestrator.state == S.IDLE
        assert h.delivery.delivered == []
        assert h.texts == []

    def test_abort_is_idempotent(self) -> None:
        """Test a second abort adds no transitions."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.orchestrator.abort()
            count = len(h.transitions)
            await h.orchestrator.abort()
            assert len(h.transitions) == count

        asyncio.run(scenario())

    def test_abort_when_idle(self) -> None:
        """Test abort does nothing when no cycle exists."""
        h = Harness()
        asyncio.run(h.orchestrator.abort())
        assert h.transitions == []
        assert h.capture.stopped == 0


class TestStreaming:
    """Tests for cycles with a streaming provider."""

    def test_streaming_cycle(self) -> None:
        """Test frames are streamed and the final transcript delivered."""
        provider = StubStreamingProvider()
        h = Harness(provider=provider)
        partials: list[str] = []
        h.orchestrator.on_partial(partials.append)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        stream = provider.streams[0]
        assert len(stream.frames) == 10
        assert stream.finished
        assert partials == ["hel"]
        assert provider.options.sample_rate == 16000
        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]

    def test_stream_open_failure(self) -> None:
        """Test a connection failure at start goes to error."""
        h = Harness(provider=StubStreamingProvider(error=ProviderNetworkError("stub-realtime", "refused")))

        assert asyncio.run(h.orchestrator.start()) is False
        assert h.orchestrator.state == S.ERROR
        assert h.errors == ["stub-realtime network error: refused"]
        assert h.capture.started == 0

    def test_abort_closes_stream(self) -> None:
        """Test abort tears down the open stream."""
        provider = StubStreamingProvider()
        h = Harness(provider=provider)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.orchestrator.abort()

        asyncio.run(scenario())
        assert provider.streams[0].closed
        assert not provider.streams[0].finished


class TestAlertsAndConfig:
    """Tests for latency alerts and configuration updates."""

    def test_latency_alert(self) -> None:
        """Test a slow transcription fires the STT alert."""
        config = make_config()
        config.latency.thresholds.stt_latency_ms = 1
        h = Harness(provider=StubProvider(delay_s=0.02), config=config)
        on_alert = MagicMock()
        h.orchestrator.on_alert(on_alert)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())

        names = [c.args[0].name for c in on_alert.call_args_list]
        assert "stt_latency" in names

    def test_alerts_disabled(self) -> None:
        """Test alerting can be switched off."""
        config = make_config()
        config.latency.thresholds.stt_latency_ms = 1
        config.latency.alerts_enabled = False
        h = Harness(provider=StubProvider(delay_s=0.02), config=config)
        on_alert = MagicMock()
        h.orchestrator.on_alert(on_alert)

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.speak_and_stop()

        asyncio.run(scenario())
        on_alert.assert_not_called()

    def test_update_config(self) -> None:
        """Test new settings are visible and a copy is kept."""
        h = Harness()
        config = make_config()
        config.endpoint.silence_timeout_s = 12
        config.latency.thresholds.total_latency_ms = 900

        asyncio.run(h.orchestrator.update_config(config))
        config.endpoint.silence_timeout_s = 99

        assert h.orchestrator.config.endpoint.silence_timeout_s == 12
        assert h.orchestrator.metrics.thresholds.total_latency_ms == 900

    def test_config_snapshot_per_cycle(self) -> None:
        """Test a mid-cycle config change does not affect that cycle."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            h.capture.push(SPEECH, 10)
            await asyncio.sleep(0.01)
            changed = make_config()
            changed.audio.min_audio_s = 10
            await h.orchestrator.update_config(changed)
            h.orchestrator.stop()
            await asyncio.wait_for(h.orchestrator.wait_for_cycle(), CYCLE_TIMEOUT_S)

        asyncio.run(scenario())
        assert h.texts[0][0] == "hello world"

    def test_provider_switch_waits_for_cycle(self) -> None:
        """Test a provider switch mid-cycle applies only to the next cycle."""
        h = Harness()
        factory = h.orchestrator.factory
        realtime = StubStreamingProvider(text="from realtime")

        async def scenario() -> None:
            await h.orchestrator.start()
            changed = make_config()
            changed.provider.provider = ProviderType.ELEVENLABS_REALTIME
            factory.provider = realtime
            await h.orchestrator.update_config(changed)
            assert factory.current_type == ProviderType.ELEVENLABS

            await h.speak_and_wait()
            assert realtime.streams == []
            assert factory.current_type == ProviderType.ELEVENLABS_REALTIME

            await h.orchestrator.start()
            assert len(realtime.streams) == 1
            await h.orchestrator.abort()

        asyncio.run(scenario())

        assert h.texts == [("hello world", DeliveryOutcome.AUTO_PASTE)]
        assert len(h.provider.calls) == 1
        assert h.errors == []

    def test_abort_applies_pending_config(self) -> None:
        """Test settings deferred during a cycle are applied on abort."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            changed = make_config()
            changed.provider.provider = ProviderType.ELEVENLABS_REALTIME
            await h.orchestrator.update_config(changed)
            await h.orchestrator.abort()

        asyncio.run(scenario())
        assert h.orchestrator.factory.current_type == ProviderType.ELEVENLABS_REALTIME

    def test_dispose(self) -> None:
        """Test dispose aborts and drops subscribers."""
        h = Harness()

        async def scenario() -> None:
            await h.orchestrator.start()
            await h.orchestrator.dispose()

        asyncio.run(scenario())
        assert h.orchestrator.state == S.IDLE
        assert h.orchestrator.state_machine.history == []


class TestSessionId:
    """Tests for new_session_id()."""

    def test_format(self) -> None:
        """Test ids are prefixed and unique."""
        first, second = new_session_id(), new_session_id()
        assert first.startswith("voyc_")
        assert first != second
