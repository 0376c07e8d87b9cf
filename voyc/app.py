"""Desktop runner: global hotkeys, microphone and the orchestrator."""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, Any, Coroutine

from voyc.capture import SoundDeviceCapture, get_device_name, list_input_devices
from voyc.config import Config
from voyc.delivery import DeliveryOutcome, create_delivery
from voyc.orchestrator import DictationOrchestrator
from voyc.providers.factory import display_name, is_experimental
from voyc.state import DictationState, StateTransition, TransitionReason

if TYPE_CHECKING:
    from voyc.metrics import LatencyAlert

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_S = 5.0

STATE_MESSAGES = {
    DictationState.LISTENING: "🎙️ Listening...",
    DictationState.PROCESSING: "⏳ Transcribing...",
}


def resolve_key(name: str) -> Any:
    """Map a configured key name to a pynput key."""
    from pynput import keyboard

    try:
        return getattr(keyboard.Key, name.lower())
    except AttributeError:
        return keyboard.KeyCode.from_char(name)


class DictationApp:
    """
    Toggle-to-talk dictation on the desktop.

    The orchestrator lives on an asyncio loop in a background thread. The
    pynput listener runs on the main thread and hands key presses to that
    loop with ``run_coroutine_threadsafe``.
    """

    def __init__(self, config: Config | None = None) -> None:
        self._config = config or Config()
        self._loop = asyncio.new_event_loop()
        self._loop_thread: threading.Thread | None = None
        self._orchestrator: DictationOrchestrator | None = None
        self._shutting_down = False

    @property
    def orchestrator(self) -> DictationOrchestrator | None:
        return self._orchestrator

    def setup(self) -> None:
        """Initialize all components."""
        self._print_banner()
        self._print_devices()

        self._orchestrator = DictationOrchestrator(
            self._config,
            capture=SoundDeviceCapture(self._config.audio),
            delivery=create_delivery(self._config.delivery),
        )
        self._orchestrator.on_state_change(self._on_state_change)
        self._orchestrator.on_text(self._on_text)
        self._orchestrator.on_error(self._on_error)
        self._orchestrator.on_alert(self._on_alert)

        self._loop_thread = threading.Thread(target=self._loop.run_forever, name="voyc-loop", daemon=True)
        self._loop_thread.start()

        self._print_instructions()

    def _print_banner(self) -> None:
        print("=" * 60)
        print("🎙️ VOYC - Voice Dictation")
        print("=" * 60)

    def _print_devices(self) -> None:
        print("\n🎤 Available audio input devices:")
        print("-" * 50)
        for device in list_input_devices():
            print(f"  {device}")
        print("-" * 50)

        device_name = get_device_name(self._config.audio.device_id)
        if self._config.audio.device_id is not None:
            print(f"\n✅ Using input device [{self._config.audio.device_id}]: {device_name}")
        else:
            print(f"\n✅ Using DEFAULT input device: {device_name}")

        provider = self._config.provider.provider
        label = display_name(provider)
        if is_experimental(provider):
            label += " (experimental)"
        print(f"🗣️  Transcription: {label}")
        if self._config.refinement.enabled:
            print(f"✨ Refinement: {self._config.refinement.refiner.value}")
        print(f"🔊 Delivery: {self._config.delivery.mode.value}")

    def _print_instructions(self) -> None:
        keys = self._config.keybinds
        print("\n" + "=" * 60)
        print("📌 INSTRUCTIONS:")
        print(f"   • Press {keys.toggle_key.upper()} to start talking, again to stop.")
        print(f"   • Press {keys.terminal_toggle_key.upper()} to dictate into a terminal.")
        print(f"   • Press {keys.abort_key.upper()} to cancel. Ctrl+C quits.")
        if self._config.endpoint.silence_timeout_s > 0:
            print(f"   • Dictation stops after {self._config.endpoint.silence_timeout_s:.0f}s of silence.")
        print("=" * 60)
        print(f"\n🟢 Ready! Press {keys.toggle_key.upper()} to start dictating...\n")

    def _on_state_change(self, transition: StateTransition) -> None:
        message = STATE_MESSAGES.get(transition.to_state)
        if message:
            print(message)

    def _on_text(self, text: str, outcome: DeliveryOutcome) -> None:
        if self._config.privacy.log_transcripts:
            print(f"\n✅ Output: \"{text}\"")
        else:
            print(f"\n✅ Delivered {len(text)} characters")
        if outcome == DeliveryOutcome.CLIPBOARD_ONLY:
            print("   📋 Text is on the clipboard, paste it manually")
        print("---")

    def _on_error(self, message: str) -> None:
        print(f"❌ {message}")

    def _on_alert(self, alert: "LatencyAlert") -> None:
        print(f"🐢 Slow: {alert}")

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        """Run a coroutine on the orchestrator's loop from another thread."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def toggle(self, terminal: bool = False) -> None:
        if self._orchestrator is None:
            logger.error("App not initialized. Call setup() first.")
            return
        self.submit(self._orchestrator.toggle(terminal=terminal, reason=TransitionReason.HOTKEY))

    def abort(self) -> None:
        if self._orchestrator is None or not self._orchestrator.is_active:
            return
        print("🚫 Cancelled")
        self.submit(self._orchestrator.abort())

    def shutdown(self) -> None:
        """Shutdown the application gracefully."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutting down...")

        if self._orchestrator is not None and self._loop.is_running():
            future = self.submit(self._orchestrator.dispose())
            try:
                future.result(timeout=SHUTDOWN_TIMEOUT_S)
            except FutureTimeoutError:
                logger.warning("Timed out disposing orchestrator")

        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._loop_thread is not None and self._loop_thread.is_alive():
            self._loop_thread.join(timeout=2.0)

    def run(self) -> None:
        """Run the application with keyboard listener."""
        from pynput import keyboard

        self.setup()

        toggle_key = resolve_key(self._config.keybinds.toggle_key)
        terminal_key = resolve_key(self._config.keybinds.terminal_toggle_key)
        abort_key = resolve_key(self._config.keybinds.abort_key)

        def on_press(key: keyboard.Key | keyboard.KeyCode | None) -> None:
            if key == toggle_key:
                self.toggle()
            elif key == terminal_key:
                self.toggle(terminal=True)
            elif key == abort_key:
                self.abort()

        # Handle Ctrl+C
        def handle_sigint(sig: int, frame: object) -> None:
            self.shutdown()
            raise SystemExit(0)

        signal.signal(signal.SIGINT, handle_sigint)

        with keyboard.Listener(on_press=on_press) as listener:
            listener.join()

        self.shutdown()
