"""Multi-stage text refinement run after transcription."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable

from voyc.errors import ProviderError

if TYPE_CHECKING:
    from voyc.config import RefinementConfig
    from voyc.providers.base import ProcessContext, RefinementProvider

logger = logging.getLogger(__name__)


@dataclass
class RefinementStage:
    name: str
    provider: "RefinementProvider"
    enabled: bool = True


@dataclass(frozen=True)
class StageResult:
    stage_name: str
    provider: str
    text: str
    latency_ms: float
    modified: bool
    executed: bool
    error: str | None = None
    tokens_used: int | None = None
    model: str | None = None


@dataclass(frozen=True)
class PipelineResult:
    text: str
    latency_ms: float
    modified: bool
    stages: list[StageResult] = field(default_factory=list)
    has_errors: bool = False
    total_tokens_used: int | None = None

    def stage_latency(self, provider: str) -> float:
        """Latency of executed stages backed by ``provider``."""
        return sum(s.latency_ms for s in self.stages if s.provider == provider and s.executed)

    def used_provider(self, provider: str) -> bool:
        return any(s.provider == provider and s.executed for s in self.stages)


@dataclass
class PipelineConfig:
    enabled: bool = True
    continue_on_error: bool = True
    max_total_latency_ms: float = 0

    @classmethod
    def from_refinement(cls, config: "RefinementConfig") -> "PipelineConfig":
        return cls(
            enabled=config.enabled,
            continue_on_error=config.continue_on_error,
            max_total_latency_ms=config.max_total_latency_ms,
        )


class RefinementPipeline:
    """
    Runs the transcript through an ordered list of refinement stages.

    Each executed stage's output becomes the next stage's input. A failing
    stage is recorded and skipped; unless ``continue_on_error`` is off, the
    remaining stages still run. Refinement never raises: when nothing
    succeeds the caller gets its input back with ``modified=False``.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        stages: list[RefinementStage] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or PipelineConfig()
        self._stages: list[RefinementStage] = list(stages or [])
        self._clock = clock
        self._last_stage_latencies: dict[str, float] = {}

    @property
    def config(self) -> PipelineConfig:
        return replace(self._config)

    @property
    def stages(self) -> list[RefinementStage]:
        return list(self._stages)

    @property
    def enabled(self) -> bool:
        return self._config.enabled and any(s.enabled for s in self._stages)

    def update_config(self, config: PipelineConfig) -> None:
        self._config = replace(config)

    def add_stage(self, stage: RefinementStage) -> None:
        self._stages.append(stage)

    def remove_stage(self, name: str) -> bool:
        before = len(self._stages)
        self._stages = [s for s in self._stages if s.name != name]
        return len(self._stages) != before

    def set_stage_enabled(self, name: str, enabled: bool) -> bool:
        for stage in self._stages:
            if stage.name == name:
                stage.enabled = enabled
                return True
        return False

    def last_stage_latencies(self) -> dict[str, float]:
        return dict(self._last_stage_latencies)

    async def process(self, text: str, context: "ProcessContext | None" = None) -> PipelineResult:
        self._last_stage_latencies = {}

        if not self._config.enabled:
            logger.debug("Refinement disabled, returning original text")
            return PipelineResult(text=text, latency_ms=0.0, modified=False)

        if not text:
            return PipelineResult(text="", latency_ms=0.0, modified=False)

        started = self._clock()
        current = text
        results: list[StageResult] = []
        tokens = 0

        for stage in self._stages:
            result = await self._run_stage(stage, current, context)
            results.append(result)
            self._last_stage_latencies[stage.name] = result.latency_ms

            if result.error is not None:
                if not self._config.continue_on_error:
                    logger.warning("Refinement stopped at stage %s: %s", stage.name, result.error)
                    break
            elif result.executed:
                current = result.text
                tokens += result.tokens_used or 0

            elapsed_ms = (self._clock() - started) * 1000
            if 0 < self._config.max_total_latency_ms < elapsed_ms:
                logger.warning(
                    "Refinement exceeded %.0fms budget after %s (%.0fms), stopping",
                    self._config.max_total_latency_ms, stage.name, elapsed_ms,
                )
                break

        executed = any(r.executed for r in results)
        return PipelineResult(
            text=current if executed else text,
            latency_ms=(self._clock() - started) * 1000,
            modified=executed and current != text,
            stages=results,
            has_errors=any(r.error is not None for r in results),
            total_tokens_used=tokens or None,
        )

    async def _run_stage(
        self,
        stage: RefinementStage,
        text: str,
        context: "ProcessContext | None",
    ) -> StageResult:
        provider_name = stage.provider.name

        if not stage.enabled:
            logger.debug("Stage %s disabled, skipping", stage.name)
            return StageResult(stage.name, provider_name, text, 0.0, False, executed=False)

        if not stage.provider.is_configured():
            error = f"Provider not configured: {provider_name}"
            logger.warning("%s (stage %s)", error, stage.name)
            return StageResult(stage.name, provider_name, text, 0.0, False, executed=False, error=error)

        started = self._clock()
        try:
            result = await stage.provider.process(text, context)
        except ProviderError as e:
            latency_ms = (self._clock() - started) * 1000
            logger.error("Stage %s failed after %.0fms: %s", stage.name, latency_ms, e)
            return StageResult(
                stage.name, provider_name, text, latency_ms, False, executed=False, error=str(e)
            )

        latency_ms = (self._clock() - started) * 1000
        logger.debug("Stage %s done in %.0fms", stage.name, latency_ms)
        return StageResult(
            stage_name=stage.name,
            provider=provider_name,
            text=result.text,
            latency_ms=latency_ms,
            modified=result.modified,
            executed=True,
            tokens_used=result.tokens_used,
            model=result.model,
        )
