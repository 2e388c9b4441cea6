"""Per-provider configuration: endpoints, credentials and display titles."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from typing import Literal, get_args

from pydantic import BaseModel

from unified_stream.errors import ConfigurationError, UnsupportedProviderError

ProviderName = Literal[
    "division",
    "anthropic",
    "openai",
    "xai",
    "gemini",
    "mistral",
    "ollama",
    "openai_compatible",
    "openrouter",
    "vllm",
    "deepseek",
    "groq",
    "lmstudio",
    "litellm",
    "google_vertex",
    "microsoft_azure",
    "aws_bedrock",
    "perplexity",
]

PROVIDER_NAMES: tuple[str, ...] = get_args(ProviderName)

PROVIDER_TITLES: dict[str, str] = {
    "division": "Division",
    "anthropic": "Anthropic",
    "openai": "OpenAI",
    "xai": "Grok (xAI)",
    "gemini": "Gemini",
    "mistral": "Mistral",
    "ollama": "Ollama",
    "openai_compatible": "OpenAI-Compatible",
    "openrouter": "OpenRouter",
    "vllm": "vLLM",
    "deepseek": "DeepSeek",
    "groq": "Groq",
    "lmstudio": "LM Studio",
    "litellm": "LiteLLM",
    "google_vertex": "Google Vertex AI",
    "microsoft_azure": "Microsoft Azure OpenAI",
    "aws_bedrock": "AWS Bedrock",
    "perplexity": "Perplexity",
}

DEFAULT_ENDPOINTS: dict[str, str] = {
    "ollama": "http://127.0.0.1:11434",
    "vllm": "http://localhost:8000",
    "lmstudio": "http://localhost:1234",
    "litellm": "http://localhost:4000",
    "division": "https://division-git-preview-he-ros-projects.vercel.app",
}

# only consulted when the user is logged in and no key was configured
_ENV_API_KEYS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}


def display_title(provider: str) -> str:
    """Return the human readable title used in user-facing messages."""
    return PROVIDER_TITLES.get(provider, provider)


class ProviderSettings(BaseModel):
    """Configuration for a single provider. Unused fields stay empty."""

    endpoint: str = ""
    api_key: str = ""
    headers_json: str = ""
    region: str = ""
    project: str = ""
    azure_api_version: str = ""
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_refresh_token: str = ""


class ProviderSettingsStore:
    """Read-only view over the settings of every provider."""

    def __init__(
        self,
        settings: Mapping[str, ProviderSettings] | None = None,
        *,
        is_logged_in: bool = False,
    ) -> None:
        self._settings: dict[str, ProviderSettings] = dict(settings or {})
        self.is_logged_in = is_logged_in
        unknown = set(self._settings) - set(PROVIDER_NAMES)
        if unknown:
            raise UnsupportedProviderError(sorted(unknown)[0])

    def get(self, provider: str) -> ProviderSettings:
        """Return the provider's settings; unconfigured providers get the default endpoint."""
        if provider not in PROVIDER_NAMES:
            raise UnsupportedProviderError(provider)
        current = self._settings.get(provider)
        if current is None:
            return ProviderSettings(endpoint=DEFAULT_ENDPOINTS.get(provider, ""))
        return current

    def api_key(self, provider: str) -> str | None:
        """Return the configured key, falling back to the environment when logged in."""
        provided = self.get(provider).api_key
        if provided:
            return provided
        if not self.is_logged_in:
            return None
        env_name = _ENV_API_KEYS.get(provider)
        return os.environ.get(env_name) if env_name else None


def parse_headers_json(raw: str) -> dict[str, str] | None:
    """Parse the custom headers an OpenAI-compatible endpoint was configured with."""
    if not raw:
        return None
    try:
        headers = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Error parsing OpenAI-Compatible headers: {raw} is not a valid JSON."
        ) from exc
    if not isinstance(headers, dict):
        raise ConfigurationError(
            f"Error parsing OpenAI-Compatible headers: {raw} is not a JSON object."
        )
    return {str(k): str(v) for k, v in headers.items() if v is not None}
