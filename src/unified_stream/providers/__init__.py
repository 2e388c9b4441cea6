"""Provider families for unified_stream."""

from .base import FIM_MAX_TOKENS, ProviderContext
from .google_auth import fetch_google_access_token
from .openai_compatible import OpenAIEndpoint, resolve_endpoint

__all__ = [
    "FIM_MAX_TOKENS",
    "OpenAIEndpoint",
    "ProviderContext",
    "fetch_google_access_token",
    "resolve_endpoint",
]
