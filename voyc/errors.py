"""Exception hierarchy shared by every Voyc component."""

from __future__ import annotations


class VoycError(Exception):
    """Base class for all Voyc errors."""


class ConfigError(VoycError):
    """Configuration is missing or invalid."""


class StateError(VoycError):
    """A requested state transition was rejected."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target


class ProviderError(VoycError):
    """Unexpected failure of a transcription or refinement provider."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderGenericError(ProviderError):
    """Unexpected payload, parse failure or unclassified HTTP error."""

    def __init__(self, provider: str, details: str) -> None:
        super().__init__(provider, f"{provider} error: {details}")
        self.details = details


class ProviderAuthError(ProviderError):
    """Missing or rejected credential. Never retried automatically."""

    def __init__(self, provider: str, details: str | None = None) -> None:
        message = f"{provider} authentication failed"
        if details:
            message += f": {details}"
        super().__init__(provider, message)


class ProviderRateLimitError(ProviderError):
    """The service asked us to slow down."""

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"{provider} rate limit exceeded"
        if retry_after:
            message += f", retry after {retry_after}s"
        super().__init__(provider, message)
        self.retry_after = retry_after


class ProviderNetworkError(ProviderError):
    """Transport failure or 5xx response."""

    def __init__(self, provider: str, details: str | None = None) -> None:
        message = f"{provider} network error"
        if details:
            message += f": {details}"
        super().__init__(provider, message)


class DeliveryError(VoycError):
    """Text could not be handed to the focused application."""
