"""In-memory audio buffering and WAV serialization."""

from __future__ import annotations

import base64
import io
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy.io.wavfile import write as wav_write

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16_000
DEFAULT_CHANNELS = 1
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44
STREAM_CHUNK_MS = 100

FrameCallback = Callable[[bytes], None]


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    bits_per_sample: int = BITS_PER_SAMPLE

    @property
    def block_align(self) -> int:
        return self.channels * (self.bits_per_sample // 8)

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align


class AudioAccumulator:
    """
    In-memory store for the PCM frames of one dictation cycle.

    Frames are copied on append. Nothing here touches the filesystem: the
    WAV container is built in a memory buffer and returned as bytes.
    """

    def __init__(
        self,
        audio_format: AudioFormat | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._format = audio_format or AudioFormat()
        self._clock = clock
        self._frames: list[bytes] = []
        self._size = 0
        self._started_at: float | None = None

    @property
    def format(self) -> AudioFormat:
        return self._format

    @property
    def has_data(self) -> bool:
        return self._size > 0

    @property
    def size(self) -> int:
        return self._size

    @property
    def sample_count(self) -> int:
        return self._size // (self._format.bits_per_sample // 8)

    def append(self, frame: bytes) -> None:
        if not frame:
            return
        if self._started_at is None:
            self._started_at = self._clock()
        self._frames.append(bytes(frame))
        self._size += len(frame)

    def clear(self) -> None:
        self._frames = []
        self._size = 0
        self._started_at = None

    def duration(self) -> float:
        """Seconds of audio stored, derived from the byte count."""
        return self._size / self._format.byte_rate

    def elapsed_time(self) -> float:
        """Wall-clock seconds since the first frame was appended."""
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def raw_data(self) -> bytes:
        return b"".join(self._frames)

    def to_container(self) -> bytes:
        """Serialize to a 44-byte-header RIFF/WAVE PCM container."""
        raw = self.raw_data()
        # Trailing bytes that do not make up a whole sample frame are dropped.
        usable = len(raw) - (len(raw) % self._format.block_align)
        samples = np.frombuffer(raw[:usable], dtype="<i2")
        if self._format.channels > 1:
            samples = samples.reshape(-1, self._format.channels)

        buffer = io.BytesIO()
        wav_write(buffer, self._format.sample_rate, samples)
        return buffer.getvalue()

    def to_base64(self) -> str:
        return base64.b64encode(self.raw_data()).decode("ascii")


def calculate_chunk_size(duration_ms: int, audio_format: AudioFormat | None = None) -> int:
    audio_format = audio_format or AudioFormat()
    return (audio_format.byte_rate * duration_ms) // 1000


class StreamChunker:
    """Re-slices arbitrary frames into fixed-size chunks for streaming upload."""

    def __init__(
        self,
        on_chunk: Callable[[bytes, bool], None],
        chunk_size: int | None = None,
    ) -> None:
        self._on_chunk = on_chunk
        self._chunk_size = chunk_size or calculate_chunk_size(STREAM_CHUNK_MS)
        self._pending = bytearray()
        self.total_bytes = 0
        self.chunks_sent = 0

    def append(self, frame: bytes) -> None:
        self._pending.extend(frame)
        self.total_bytes += len(frame)
        while len(self._pending) >= self._chunk_size:
            chunk = bytes(self._pending[: self._chunk_size])
            del self._pending[: self._chunk_size]
            self.chunks_sent += 1
            self._on_chunk(chunk, False)

    def flush(self) -> None:
        """Emit whatever is left as the final chunk."""
        if not self._pending:
            return
        chunk = bytes(self._pending)
        self._pending.clear()
        self.chunks_sent += 1
        self._on_chunk(chunk, True)

    def reset(self) -> None:
        self._pending.clear()
        self.total_bytes = 0
        self.chunks_sent = 0


class AudioSource(ABC):
    """Capture collaborator: pushes PCM frames while started."""

    @abstractmethod
    def start(self, on_frame: FrameCallback) -> None:
        """Begin delivering frames. May call ``on_frame`` from any thread."""
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

