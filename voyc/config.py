"""Configuration for the Voyc application."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum

logger = logging.getLogger(__name__)

ALLOWED_SILENCE_TIMEOUTS = (0, 30, 60)
DEFAULT_ELEVENLABS_ENDPOINT = "https://api.elevenlabs.io/v1"
DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1"
TRUTHY = ("1", "true", "yes", "on")


class ProviderType(str, Enum):
    ELEVENLABS = "elevenlabs"
    ELEVENLABS_REALTIME = "elevenlabs-realtime"
    OPENAI = "openai"


class RefinerType(str, Enum):
    BASETEN = "baseten"
    OPENAI = "openai"


class DeliveryMode(str, Enum):
    PASTE = "paste"
    CLIPBOARD = "clipboard"
    TYPE = "type"


@dataclass
class AudioConfig:
    sample_rate: int = 16_000
    channels: int = 1
    block_ms: int = 30
    device_id: int | None = None
    min_audio_s: float = 0.2

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * (self.block_ms / 1000.0))


@dataclass
class EndpointConfig:
    silence_threshold_db: float = -40.0
    min_silent_frames: int = 10
    silence_timeout_s: float = 30


@dataclass
class ProviderConfig:
    provider: ProviderType = ProviderType.ELEVENLABS
    elevenlabs_api_key: str = ""
    openai_api_key: str = ""
    baseten_api_key: str = ""
    elevenlabs_endpoint: str = DEFAULT_ELEVENLABS_ENDPOINT
    openai_endpoint: str = DEFAULT_OPENAI_ENDPOINT
    baseten_endpoint: str = ""
    language: str | None = None
    model: str | None = None
    timeout_s: float = 30.0

    def api_key_for(self, provider: ProviderType) -> str:
        if provider == ProviderType.OPENAI:
            return self.openai_api_key
        return self.elevenlabs_api_key


@dataclass
class RefinementConfig:
    enabled: bool = False
    refiner: RefinerType = RefinerType.BASETEN
    continue_on_error: bool = True
    max_total_latency_ms: float = 2000
    baseten_model: str = "llama-3.1-8b"
    openai_model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 1024


@dataclass
class ThresholdConfig:
    baseten_post_process_ms: float = 250
    total_latency_ms: float = 2000
    stt_latency_ms: float = 1500


@dataclass
class LatencyConfig:
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    alerts_enabled: bool = True


@dataclass
class DeliveryConfig:
    mode: DeliveryMode = DeliveryMode.PASTE
    paste_delay_s: float = 0.05


@dataclass
class PrivacyConfig:
    log_transcripts: bool = False


@dataclass
class KeybindConfig:
    """Names of pynput ``Key`` members."""

    toggle_key: str = "f9"
    terminal_toggle_key: str = "f10"
    abort_key: str = "esc"


@dataclass
class Config:
    audio: AudioConfig = field(default_factory=AudioConfig)
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    latency: LatencyConfig = field(default_factory=LatencyConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    keybinds: KeybindConfig = field(default_factory=KeybindConfig)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if provider := os.environ.get("VOYC_PROVIDER"):
            try:
                config.provider.provider = ProviderType(provider.lower())
            except ValueError:
                logger.warning("Unknown provider %r, keeping %s", provider, config.provider.provider.value)

        if key := os.environ.get("VOYC_ELEVENLABS_API_KEY"):
            config.provider.elevenlabs_api_key = key

        if key := os.environ.get("VOYC_OPENAI_API_KEY"):
            config.provider.openai_api_key = key

        if key := os.environ.get("VOYC_BASETEN_API_KEY"):
            config.provider.baseten_api_key = key

        if endpoint := os.environ.get("VOYC_ELEVENLABS_ENDPOINT"):
            config.provider.elevenlabs_endpoint = endpoint

        if endpoint := os.environ.get("VOYC_OPENAI_ENDPOINT"):
            config.provider.openai_endpoint = endpoint

        if endpoint := os.environ.get("VOYC_BASETEN_ENDPOINT"):
            config.provider.baseten_endpoint = endpoint

        if lang := os.environ.get("VOYC_LANGUAGE"):
            config.provider.language = None if lang.lower() == "auto" else lang

        if device := os.environ.get("VOYC_AUDIO_DEVICE"):
            config.audio.device_id = int(device)

        if timeout := os.environ.get("VOYC_SILENCE_TIMEOUT"):
            config.endpoint.silence_timeout_s = float(timeout)

        # Refinement
        if refine := os.environ.get("VOYC_REFINE"):
            config.refinement.enabled = refine.lower() in TRUTHY

        if refiner := os.environ.get("VOYC_REFINER"):
            try:
                config.refinement.refiner = RefinerType(refiner.lower())
            except ValueError:
                pass  # Keep default if invalid value

        if mode := os.environ.get("VOYC_DELIVERY_MODE"):
            try:
                config.delivery.mode = DeliveryMode(mode.lower())
            except ValueError:
                pass

        if log_transcripts := os.environ.get("VOYC_LOG_TRANSCRIPTS"):
            config.privacy.log_transcripts = log_transcripts.lower() in TRUTHY

        if alerts := os.environ.get("VOYC_LATENCY_ALERTS"):
            config.latency.alerts_enabled = alerts.lower() in TRUTHY

        if level := os.environ.get("VOYC_LOG_LEVEL"):
            config.log_level = level.upper()

        return config

    def copy(self) -> "Config":
        """Return a snapshot that later edits to this config do not affect."""
        return replace(
            self,
            audio=replace(self.audio),
            endpoint=replace(self.endpoint),
            provider=replace(self.provider),
            refinement=replace(self.refinement),
            latency=replace(self.latency, thresholds=replace(self.latency.thresholds)),
            delivery=replace(self.delivery),
            privacy=replace(self.privacy),
            keybinds=replace(self.keybinds),
        )

    def validate(self) -> list[str]:
        """Return a list of human-readable configuration problems."""
        problems = []

        if self.endpoint.silence_timeout_s not in ALLOWED_SILENCE_TIMEOUTS:
            problems.append(
                f"Silence timeout must be one of {ALLOWED_SILENCE_TIMEOUTS}, "
                f"got {self.endpoint.silence_timeout_s}"
            )

        if self.endpoint.min_silent_frames < 1:
            problems.append("Minimum silent frames must be at least 1")

        if not self.provider.api_key_for(self.provider.provider):
            problems.append(f"No API key configured for {self.provider.provider.value}")

        if self.refinement.enabled:
            if self.refinement.refiner == RefinerType.BASETEN:
                if not self.provider.baseten_api_key:
                    problems.append("Refinement enabled but no Baseten API key configured")
                if not self.provider.baseten_endpoint:
                    problems.append("Refinement enabled but no Baseten endpoint configured")
            elif not self.provider.openai_api_key:
                problems.append("Refinement enabled but no OpenAI API key configured")

        thresholds = self.latency.thresholds
        for name in ("baseten_post_process_ms", "total_latency_ms", "stt_latency_ms"):
            if getattr(thresholds, name) <= 0:
                problems.append(f"Latency threshold {name} must be positive")

        return problems
