"""Remote speech-to-text and text refinement providers."""

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

__all__ = [
    "ProcessContext",
    "ProcessResult",
    "ProviderFactory",
    "RefinementProvider",
    "StreamConnection",
    "StreamOptions",
    "TranscribeOptions",
    "TranscribeResult",
    "TranscriptionProvider",
]
