"""Static map from provider identifier to its chat, fill-in-middle and listing implementations."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from unified_stream.errors import UnsupportedProviderError
from unified_stream.providers import anthropic, division, gemini, mistral, ollama, openai_compatible
from unified_stream.providers.base import ProviderContext
from unified_stream.types import ChatRequest, FIMRequest, ListModelsCallbacks, StreamCallbacks

SendChat = Callable[[ProviderContext, ChatRequest, StreamCallbacks], Awaitable[None]]
SendFIM = Callable[[ProviderContext, FIMRequest, StreamCallbacks], Awaitable[None]]
ListModels = Callable[[ProviderContext, str, ListModelsCallbacks], Awaitable[None]]


@dataclass(frozen=True)
class ProviderImplementation:
    """Operations a provider supports; ``None`` marks an unsupported one."""

    send_chat: SendChat
    send_fim: SendFIM | None
    list_models: ListModels | None


_CHAT_ONLY = ProviderImplementation(openai_compatible.send_chat, None, None)
_OPENAI_FIM = ProviderImplementation(openai_compatible.send_chat, openai_compatible.send_fim, None)
_OPENAI_FIM_AND_LIST = ProviderImplementation(
    openai_compatible.send_chat, openai_compatible.send_fim, openai_compatible.list_models
)

PROVIDER_IMPLEMENTATIONS: dict[str, ProviderImplementation] = {
    "division": ProviderImplementation(division.send_chat, None, None),
    "anthropic": ProviderImplementation(anthropic.send_chat, None, None),
    "gemini": ProviderImplementation(gemini.send_chat, None, None),
    "mistral": ProviderImplementation(openai_compatible.send_chat, mistral.send_fim, None),
    "ollama": ProviderImplementation(openai_compatible.send_chat, ollama.send_fim, ollama.list_models),
    "openai_compatible": _OPENAI_FIM,
    "openrouter": _OPENAI_FIM,
    "litellm": _OPENAI_FIM,
    "vllm": _OPENAI_FIM_AND_LIST,
    "lmstudio": _OPENAI_FIM_AND_LIST,
    "openai": _CHAT_ONLY,
    "xai": _CHAT_ONLY,
    "deepseek": _CHAT_ONLY,
    "groq": _CHAT_ONLY,
    "google_vertex": _CHAT_ONLY,
    "microsoft_azure": _CHAT_ONLY,
    "aws_bedrock": _CHAT_ONLY,
    "perplexity": _CHAT_ONLY,
}


def implementation_for(provider: str) -> ProviderImplementation:
    try:
        return PROVIDER_IMPLEMENTATIONS[provider]
    except KeyError as exc:
        raise UnsupportedProviderError(provider) from exc
