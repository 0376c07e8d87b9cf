"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from typing import Generator

import numpy as np
import pytest

SAMPLE_RATE = 16000
FRAME_SAMPLES = 480  # 30 ms at 16 kHz


def make_frame(amplitude: float = 0.5, samples: int = FRAME_SAMPLES, frequency: float = 440.0) -> bytes:
    """Little-endian int16 PCM sine frame; amplitude is a fraction of full scale."""
    t = np.arange(samples, dtype=np.float64) / SAMPLE_RATE
    wave = np.sin(2 * np.pi * frequency * t) * amplitude
    return (wave * 32767).astype("<i2").tobytes()


def silent_frame(samples: int = FRAME_SAMPLES) -> bytes:
    return np.zeros(samples, dtype="<i2").tobytes()


@pytest.fixture
def speech_frame() -> bytes:
    """One 30 ms frame well above the silence threshold."""
    return make_frame(0.5)


@pytest.fixture
def quiet_frame() -> bytes:
    """One 30 ms frame of digital silence."""
    return silent_frame()


@pytest.fixture
def sample_audio_16k() -> bytes:
    """1 second of a 440 Hz tone at 16 kHz."""
    return make_frame(0.5, samples=SAMPLE_RATE)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Fixture to clean environment variables before/after tests."""
    # Store original values
    env_vars = [
        "VOYC_PROVIDER",
        "VOYC_ELEVENLABS_API_KEY",
        "VOYC_OPENAI_API_KEY",
        "VOYC_BASETEN_API_KEY",
        "VOYC_BASETEN_ENDPOINT",
        "VOYC_ELEVENLABS_ENDPOINT",
        "VOYC_OPENAI_ENDPOINT",
        "VOYC_LANGUAGE",
        "VOYC_AUDIO_DEVICE",
        "VOYC_SILENCE_TIMEOUT",
        "VOYC_REFINE",
        "VOYC_REFINER",
        "VOYC_DELIVERY_MODE",
        "VOYC_LOG_TRANSCRIPTS",
        "VOYC_LATENCY_ALERTS",
        "VOYC_LOG_LEVEL",
    ]
    original_values = {var: os.environ.get(var) for var in env_vars}

    # Clear all
    for var in env_vars:
        os.environ.pop(var, None)

    yield

    # Restore original values
    for var, value in original_values.items():
        if value is not None:
            os.environ[var] = value
        else:
            os.environ.pop(var, None)


@pytest.fixture
def pcm():
    """Factory for PCM frames: ``pcm(amplitude, samples)``; amplitude 0 is silence."""
    return make_frame
