"""Silence and end-of-utterance detection on raw PCM frames."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable

import numpy as np

from voyc.events import CallbackList

if TYPE_CHECKING:
    from voyc.config import EndpointConfig

logger = logging.getLogger(__name__)

FULL_SCALE = 32768.0
BYTES_PER_SAMPLE = 2
DEFAULT_SILENCE_THRESHOLD_DB = -40.0
DEFAULT_MIN_SILENT_FRAMES = 10
DEFAULT_SILENCE_TIMEOUT_S = 30.0


class EndpointState(str, Enum):
    UNKNOWN = "unknown"
    SPEAKING = "speaking"
    SILENT = "silent"


def frame_level_db(frame: bytes) -> float:
    """RMS level of little-endian int16 PCM in dBFS. Silence is ``-inf``."""
    usable = len(frame) - (len(frame) % BYTES_PER_SAMPLE)
    if usable == 0:
        return float("-inf")

    samples = np.frombuffer(frame[:usable], dtype="<i2").astype(np.float64)
    rms = float(np.sqrt(np.mean(samples * samples)))
    if rms == 0.0:
        return float("-inf")
    return 20.0 * math.log10(rms / FULL_SCALE)


def db_to_linear(db: float) -> float:
    return 10.0 ** (db / 20.0)


def linear_to_db(linear: float) -> float:
    if linear <= 0:
        return float("-inf")
    return 20.0 * math.log10(linear)


class EndpointDetector:
    """
    Decides when the speaker has stopped talking.

    Each frame is classified as silent or not by its level. The detector only
    moves from speaking to silent after ``min_silent_frames`` consecutive
    silent frames, so short pauses and breaths do not end the utterance.
    Entering silence arms a timeout; if the detector is still silent when it
    fires, ``on_silence_timeout`` observers run once. Timers are scheduled on
    the running asyncio loop.
    """

    def __init__(
        self,
        silence_threshold_db: float = DEFAULT_SILENCE_THRESHOLD_DB,
        min_silent_frames: int = DEFAULT_MIN_SILENT_FRAMES,
        silence_timeout_s: float = DEFAULT_SILENCE_TIMEOUT_S,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold_db = silence_threshold_db
        self._min_silent_frames = min_silent_frames
        self._timeout_s = silence_timeout_s
        self._loop = loop
        self._clock = clock

        self._state = EndpointState.UNKNOWN
        self._silent_frames = 0
        self._silence_started_at: float | None = None
        self._level_db = float("-inf")
        self._enabled = True
        self._timer: asyncio.TimerHandle | None = None

        self._on_silence_start: CallbackList[Callable[[], None]] = CallbackList("silence_start")
        self._on_silence_end: CallbackList[Callable[[], None]] = CallbackList("silence_end")
        self._on_silence_timeout: CallbackList[Callable[[], None]] = CallbackList("silence_timeout")
        self._on_level: CallbackList[Callable[[float, bool], None]] = CallbackList("level")

    @classmethod
    def from_config(
        cls,
        config: "EndpointConfig",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> "EndpointDetector":
        return cls(
            silence_threshold_db=config.silence_threshold_db,
            min_silent_frames=config.min_silent_frames,
            silence_timeout_s=config.silence_timeout_s,
            loop=loop,
        )

    @property
    def state(self) -> EndpointState:
        return self._state

    @property
    def level_db(self) -> float:
        """Level of the most recent frame."""
        return self._level_db

    @property
    def silent_frame_count(self) -> int:
        return self._silent_frames

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def silence_timeout_s(self) -> float:
        return self._timeout_s

    def on_silence_start(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._on_silence_start.add(callback)

    def on_silence_end(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._on_silence_end.add(callback)

    def on_silence_timeout(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._on_silence_timeout.add(callback)

    def on_level(self, callback: Callable[[float, bool], None]) -> Callable[[], None]:
        return self._on_level.add(callback)

    def process_frame(self, frame: bytes) -> None:
        if not self._enabled:
            return

        level = frame_level_db(frame)
        self._level_db = level
        is_silent = level < self._threshold_db
        self._on_level.emit(level, is_silent)

        if is_silent:
            self._silent_frames += 1
            if (
                self._state != EndpointState.SILENT
                and self._silent_frames >= self._min_silent_frames
            ):
                self._enter_silence()
        else:
            self._silent_frames = 0
            previous = self._state
            self._state = EndpointState.SPEAKING
            if previous == EndpointState.SILENT:
                self._silence_started_at = None
                self._cancel_timer()
                self._on_silence_end.emit()

    def silence_duration(self) -> float:
        """Seconds spent in the current silence, 0 when not silent."""
        if self._state != EndpointState.SILENT or self._silence_started_at is None:
            return 0.0
        return self._clock() - self._silence_started_at

    def configure(
        self,
        silence_threshold_db: float | None = None,
        min_silent_frames: int | None = None,
        silence_timeout_s: float | None = None,
    ) -> None:
        if silence_threshold_db is not None:
            self._threshold_db = silence_threshold_db
        if min_silent_frames is not None:
            self._min_silent_frames = min_silent_frames
        if silence_timeout_s is not None and silence_timeout_s != self._timeout_s:
            self._timeout_s = silence_timeout_s
            self._cancel_timer()

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        self._cancel_timer()
        if enabled:
            self._reset_counters()

    def reset(self) -> None:
        self._cancel_timer()
        self._reset_counters()

    def dispose(self) -> None:
        self.reset()
        for callbacks in (
            self._on_silence_start,
            self._on_silence_end,
            self._on_silence_timeout,
            self._on_level,
        ):
            callbacks.clear()

    def _reset_counters(self) -> None:
        self._state = EndpointState.UNKNOWN
        self._silent_frames = 0
        self._silence_started_at = None
        self._level_db = float("-inf")

    def _enter_silence(self) -> None:
        self._state = EndpointState.SILENT
        self._silence_started_at = self._clock()
        logger.debug("Silence started after %d frames", self._silent_frames)
        self._on_silence_start.emit()
        self._start_timer()

    def _start_timer(self) -> None:
        self._cancel_timer()
        if self._timeout_s <= 0:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._timeout_s, self._timer_fired)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _timer_fired(self) -> None:
        self._timer = None
        if not self._enabled or self._state != EndpointState.SILENT:
            return
        logger.debug("Silence timeout after %.1fs", self._timeout_s)
        self._on_silence_timeout.emit()
