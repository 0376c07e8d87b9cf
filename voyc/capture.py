"""Microphone capture through sounddevice."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import sounddevice as sd

from voyc.audio import AudioFormat, AudioSource, FrameCallback

if TYPE_CHECKING:
    from voyc.config import AudioConfig

logger = logging.getLogger(__name__)

FIRST_CHANNEL_INDEX = 0


@dataclass
class AudioDevice:
    index: int
    name: str
    is_default: bool = False

    def __str__(self) -> str:
        marker = " (DEFAULT)" if self.is_default else ""
        return f"[{self.index}] {self.name}{marker}"


def list_input_devices() -> list[AudioDevice]:
    default_input = sd.default.device[FIRST_CHANNEL_INDEX]
    return [
        AudioDevice(index=i, name=dev["name"], is_default=(i == default_input))  # type: ignore[index]
        for i, dev in enumerate(sd.query_devices())
        if dev["max_input_channels"] > 0  # type: ignore[index]
    ]


class SoundDeviceCapture(AudioSource):
    """Microphone capture as mono 16 kHz int16 via a sounddevice raw stream."""

    def __init__(self, config: "AudioConfig") -> None:
        self._config = config
        self._stream: sd.RawInputStream | None = None
        self._on_frame: FrameCallback | None = None
        self._lock = threading.Lock()

    @property
    def audio_format(self) -> AudioFormat:
        return AudioFormat(sample_rate=self._config.sample_rate, channels=self._config.channels)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._stream is not None

    def start(self, on_frame: FrameCallback) -> None:
        with self._lock:
            if self._stream is not None:
                return
            self._on_frame = on_frame
            self._stream = sd.RawInputStream(
                samplerate=self._config.sample_rate,
                channels=self._config.channels,
                dtype="int16",
                blocksize=self._config.block_size,
                device=self._config.device_id,
                callback=self._audio_callback,
            )
            self._stream.start()
        logger.debug("Capture started on device %s", self._config.device_id)

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            self._on_frame = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error stopping audio stream: %s", e)

    def _audio_callback(
        self,
        indata: memoryview,
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)

        on_frame = self._on_frame
        if on_frame is not None:
            on_frame(bytes(indata))


def get_device_name(device_id: int | None) -> str:
    try:
        if device_id is None:
            device_id = sd.default.device[FIRST_CHANNEL_INDEX]
        return sd.query_devices(device_id)["name"]  # type: ignore[index]
    except (sd.PortAudioError, ValueError) as e:
        logger.debug("Could not resolve device %s: %s", device_id, e)
        return "(unknown)"
