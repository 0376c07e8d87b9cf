"""Selection and caching of provider instances."""

from __future__ import annotations

import logging
from dataclasses import replace

from voyc.config import ProviderConfig, ProviderType, RefinementConfig, RefinerType
from voyc.providers.base import RefinementProvider, TranscriptionProvider
from voyc.providers.baseten import BasetenRefiner
from voyc.providers.elevenlabs import (
    DEFAULT_BATCH_MODEL,
    DEFAULT_REALTIME_MODEL,
    ElevenLabsProvider,
    ElevenLabsRealtimeProvider,
)
from voyc.providers.openai import (
    DEFAULT_TRANSCRIPTION_MODEL,
    OpenAIRefiner,
    OpenAITranscriptionProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    ProviderType.ELEVENLABS: DEFAULT_BATCH_MODEL,
    ProviderType.ELEVENLABS_REALTIME: DEFAULT_REALTIME_MODEL,
    ProviderType.OPENAI: DEFAULT_TRANSCRIPTION_MODEL,
}

PROVIDER_CLASSES: dict[ProviderType, type[TranscriptionProvider]] = {
    ProviderType.ELEVENLABS: ElevenLabsProvider,
    ProviderType.ELEVENLABS_REALTIME: ElevenLabsRealtimeProvider,
    ProviderType.OPENAI: OpenAITranscriptionProvider,
}


def _credentials(config: ProviderConfig) -> tuple[str, str, str]:
    return (config.elevenlabs_api_key, config.openai_api_key, config.baseten_api_key)


def _without_credentials(config: ProviderConfig) -> ProviderConfig:
    return replace(config, elevenlabs_api_key="", openai_api_key="", baseten_api_key="")


class ProviderFactory:
    """
    Builds providers on first use and keeps at most one instance per type.

    Switching the active provider disposes every cached instance, so a later
    switch back gets a fresh object. A credential-only change is pushed into
    the live instances instead.
    """

    def __init__(
        self,
        config: ProviderConfig,
        refinement: RefinementConfig | None = None,
    ) -> None:
        self._config = replace(config)
        self._refinement = replace(refinement) if refinement else RefinementConfig()
        self._providers: dict[ProviderType, TranscriptionProvider] = {}
        self._refiners: dict[RefinerType, RefinementProvider] = {}

    @property
    def config(self) -> ProviderConfig:
        return replace(self._config)

    @property
    def current_type(self) -> ProviderType:
        return self._config.provider

    def get_current_provider(self) -> TranscriptionProvider:
        return self.get_provider(self._config.provider)

    def get_provider(self, provider_type: ProviderType) -> TranscriptionProvider:
        provider = self._providers.get(provider_type)
        if provider is None:
            provider = self._create_provider(provider_type)
            self._providers[provider_type] = provider
            logger.debug("Created %s provider", provider_type.value)
        return provider

    def get_refiner(self, refiner_type: RefinerType | None = None) -> RefinementProvider:
        refiner_type = refiner_type or self._refinement.refiner
        refiner = self._refiners.get(refiner_type)
        if refiner is None:
            refiner = self._create_refiner(refiner_type)
            self._refiners[refiner_type] = refiner
            logger.debug("Created %s refiner", refiner_type.value)
        return refiner

    async def update_config(
        self,
        config: ProviderConfig,
        refinement: RefinementConfig | None = None,
    ) -> None:
        previous = self._config
        self._config = replace(config)

        if previous.provider != config.provider:
            logger.info("Provider changed %s -> %s", previous.provider.value, config.provider.value)
            await self._dispose_providers()
            await self._dispose_refiners()
        elif _without_credentials(previous) != _without_credentials(config):
            logger.debug("Provider settings changed, dropping cached instances")
            await self._dispose_providers()
            await self._dispose_refiners()
        elif _credentials(previous) != _credentials(config):
            self._update_keys()

        if refinement is not None:
            previous_refinement = self._refinement
            self._refinement = replace(refinement)
            if previous_refinement != refinement:
                await self._dispose_refiners()

    def is_configured(self, provider_type: ProviderType | None = None) -> bool:
        provider_type = provider_type or self._config.provider
        return bool(self._config.api_key_for(provider_type))

    def available_providers(self) -> list[ProviderType]:
        return [p for p in ProviderType if self.is_configured(p)]

    def capabilities(self, provider_type: ProviderType | None = None) -> dict[str, bool]:
        cls = PROVIDER_CLASSES[provider_type or self._config.provider]
        return {
            "batch": cls.supports_batch,
            "streaming": cls.supports_streaming,
            "experimental": cls.experimental,
        }

    async def dispose(self) -> None:
        await self._dispose_providers()
        await self._dispose_refiners()

    def _create_provider(self, provider_type: ProviderType) -> TranscriptionProvider:
        config = self._config
        model = config.model if provider_type == config.provider and config.model else DEFAULT_MODELS[provider_type]
        if provider_type == ProviderType.OPENAI:
            endpoint = config.openai_endpoint
        else:
            endpoint = config.elevenlabs_endpoint
        return PROVIDER_CLASSES[provider_type](
            config.api_key_for(provider_type),
            endpoint=endpoint,
            model=model,
            timeout_s=config.timeout_s,
        )

    def _create_refiner(self, refiner_type: RefinerType) -> RefinementProvider:
        config = self._config
        refinement = self._refinement
        if refiner_type == RefinerType.OPENAI:
            return OpenAIRefiner(
                config.openai_api_key,
                endpoint=config.openai_endpoint,
                model=refinement.openai_model,
                temperature=refinement.temperature,
                max_tokens=refinement.max_tokens,
                timeout_s=config.timeout_s,
            )
        return BasetenRefiner(
            config.baseten_api_key,
            endpoint=config.baseten_endpoint,
            model=refinement.baseten_model,
            temperature=refinement.temperature,
            max_tokens=refinement.max_tokens,
            timeout_s=config.timeout_s,
        )

    def _update_keys(self) -> None:
        for provider_type, provider in self._providers.items():
            provider.update_api_key(self._config.api_key_for(provider_type))
        for refiner_type, refiner in self._refiners.items():
            if refiner_type == RefinerType.BASETEN:
                refiner.update_api_key(self._config.baseten_api_key)
            else:
                refiner.update_api_key(self._config.openai_api_key)
        logger.debug("Propagated updated API keys to cached providers")

    async def _dispose_providers(self) -> None:
        providers, self._providers = self._providers, {}
        for provider in providers.values():
            await provider.dispose()

    async def _dispose_refiners(self) -> None:
        refiners, self._refiners = self._refiners, {}
        for refiner in refiners.values():
            await refiner.dispose()


def display_name(provider_type: ProviderType) -> str:
    return PROVIDER_CLASSES[provider_type].display_name


def is_experimental(provider_type: ProviderType) -> bool:
    return PROVIDER_CLASSES[provider_type].experimental
