"""Package specific exception hierarchy and the error taxonomy reported to callers."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to every error delivered through ``on_error``."""

    CONFIGURATION = "configuration"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    UNSUPPORTED = "unsupported"
    EMPTY_RESPONSE = "empty_response"
    TRANSPORT = "transport"


class UnifiedStreamError(Exception):
    """Base exception for unified_stream package."""


class ConfigurationError(UnifiedStreamError):
    """Raised when an endpoint or credential is missing or malformed."""


class UnsupportedProviderError(UnifiedStreamError):
    """Raised when a provider has not been registered."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")
        self.provider = provider


class UnsupportedFeatureError(UnifiedStreamError):
    """Raised when a requested operation is unsupported by a provider or model."""

    def __init__(self, feature: str, message: str | None = None) -> None:
        super().__init__(message or f"Feature '{feature}' is not supported.")
        self.feature = feature


class ProviderError(UnifiedStreamError):
    """Represents provider-specific HTTP or API errors."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.status_code = status_code


class EmptyResponseError(UnifiedStreamError):
    """Raised when a stream completes without text, reasoning or a tool call."""

    def __init__(self) -> None:
        super().__init__("Response from model was empty.")
