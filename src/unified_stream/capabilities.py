"""Static facts about providers and models.

The real capability tables live with the host application; this module
defines the interface the adapter consumes plus a small table-backed
default so the package works on its own.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Protocol

from unified_stream.types import ReasoningSelection

ToolFormat = Literal["openai-style", "anthropic-style", "gemini-style"]
ModelOverrides = Mapping[str, Mapping[str, Mapping[str, Any]]]
ReasoningPayload = Callable[[ReasoningSelection | None], dict[str, Any]]


@dataclass(frozen=True)
class ReasoningCapabilities:
    """Whether a model reasons, and the inline tags it uses if it has no channel for it."""

    can_io_reasoning: bool = False
    think_tags: tuple[str, str] | None = None


@dataclass(frozen=True)
class ModelCapabilities:
    """Describes feature support for a provider model."""

    model_name: str
    supports_fim: bool = False
    tool_format: ToolFormat | None = None
    reasoning: ReasoningCapabilities = ReasoningCapabilities()
    extra_payload: Mapping[str, Any] = field(default_factory=dict)
    reserved_output_tokens: int | None = None


@dataclass(frozen=True)
class ReasoningOutputSettings:
    """How reasoning comes back: a named delta field, or inline tags to parse."""

    needs_manual_parse: bool = False
    delta_field: str | None = None


def _no_reasoning_payload(reasoning: ReasoningSelection | None) -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class ProviderCapabilities:
    reasoning_payload: ReasoningPayload = _no_reasoning_payload
    reasoning_output: ReasoningOutputSettings = ReasoningOutputSettings()


class CapabilityResolver(Protocol):
    def model_capabilities(
        self, provider: str, model: str, overrides: ModelOverrides | None = None
    ) -> ModelCapabilities: ...

    def provider_capabilities(self, provider: str) -> ProviderCapabilities: ...

    def reserved_output_tokens(
        self,
        provider: str,
        model: str,
        *,
        reasoning_enabled: bool,
        overrides: ModelOverrides | None = None,
    ) -> int | None: ...


def _anthropic_reasoning(reasoning: ReasoningSelection | None) -> dict[str, Any]:
    if reasoning is None or not reasoning.enabled or reasoning.type != "budget":
        return {}
    return {"thinking": {"type": "enabled", "budget_tokens": reasoning.budget or 1024}}


def _effort_reasoning(reasoning: ReasoningSelection | None) -> dict[str, Any]:
    if reasoning is None or not reasoning.enabled or reasoning.type != "effort":
        return {}
    return {"reasoning_effort": reasoning.effort or "medium"}


def _openrouter_reasoning(reasoning: ReasoningSelection | None) -> dict[str, Any]:
    if reasoning is None or not reasoning.enabled:
        return {}
    if reasoning.type == "budget":
        return {"reasoning": {"max_tokens": reasoning.budget or 1024}}
    return {"reasoning": {"effort": reasoning.effort or "medium"}}


def _groq_reasoning(reasoning: ReasoningSelection | None) -> dict[str, Any]:
    if reasoning is None or not reasoning.enabled:
        return {}
    return {"reasoning_format": "parsed"}


_MANUAL_PARSE = ReasoningOutputSettings(needs_manual_parse=True)

_PROVIDER_CAPABILITIES: dict[str, ProviderCapabilities] = {
    "anthropic": ProviderCapabilities(reasoning_payload=_anthropic_reasoning),
    "openai": ProviderCapabilities(reasoning_payload=_effort_reasoning),
    "xai": ProviderCapabilities(reasoning_payload=_effort_reasoning),
    "microsoft_azure": ProviderCapabilities(reasoning_payload=_effort_reasoning),
    "openrouter": ProviderCapabilities(
        reasoning_payload=_openrouter_reasoning,
        reasoning_output=ReasoningOutputSettings(delta_field="reasoning"),
    ),
    "groq": ProviderCapabilities(
        reasoning_payload=_groq_reasoning,
        reasoning_output=ReasoningOutputSettings(delta_field="reasoning"),
    ),
    "deepseek": ProviderCapabilities(
        reasoning_output=ReasoningOutputSettings(delta_field="reasoning_content"),
    ),
    "vllm": ProviderCapabilities(
        reasoning_output=ReasoningOutputSettings(delta_field="reasoning_content"),
    ),
    "ollama": ProviderCapabilities(reasoning_output=_MANUAL_PARSE),
    "lmstudio": ProviderCapabilities(reasoning_output=_MANUAL_PARSE),
    "litellm": ProviderCapabilities(reasoning_output=_MANUAL_PARSE),
    "openai_compatible": ProviderCapabilities(reasoning_output=_MANUAL_PARSE),
}

_TOOL_FORMATS: dict[str, ToolFormat | None] = {
    "anthropic": "anthropic-style",
    "gemini": "gemini-style",
    "openai": "openai-style",
    "xai": "openai-style",
    "mistral": "openai-style",
    "openrouter": "openai-style",
    "deepseek": "openai-style",
    "groq": "openai-style",
    "vllm": "openai-style",
    "litellm": "openai-style",
    "google_vertex": "openai-style",
    "microsoft_azure": "openai-style",
    "aws_bedrock": "openai-style",
}

_FIM_PROVIDERS = frozenset({"mistral", "ollama", "vllm", "lmstudio", "litellm", "openai_compatible", "openrouter"})
_FIM_MODEL_MARKERS = ("codestral", "coder", "starcoder", "codegemma", "fim")

# open-weight reasoning models that print their thoughts between tags
_THINK_TAG_MODEL_MARKERS = ("deepseek-r1", "qwq", "qwen3", "phi4-reasoning")
_DEFAULT_THINK_TAGS = ("<think>", "</think>")

_RESERVED_OUTPUT_TOKENS: dict[str, int] = {"anthropic": 8192}


class StaticCapabilityResolver:
    """Table-backed resolver; ``model_overrides`` is keyed provider -> model -> fields."""

    def __init__(self, model_overrides: ModelOverrides | None = None) -> None:
        self._model_overrides = model_overrides or {}

    def model_capabilities(
        self, provider: str, model: str, overrides: ModelOverrides | None = None
    ) -> ModelCapabilities:
        lowered = model.lower()
        reasoning = ReasoningCapabilities()
        if any(marker in lowered for marker in _THINK_TAG_MODEL_MARKERS):
            reasoning = ReasoningCapabilities(can_io_reasoning=True, think_tags=_DEFAULT_THINK_TAGS)

        caps = ModelCapabilities(
            model_name=model,
            supports_fim=provider in _FIM_PROVIDERS
            and any(marker in lowered for marker in _FIM_MODEL_MARKERS),
            tool_format=_TOOL_FORMATS.get(provider),
            reasoning=reasoning,
            reserved_output_tokens=_RESERVED_OUTPUT_TOKENS.get(provider),
        )
        for table in (self._model_overrides, overrides or {}):
            fields = table.get(provider, {}).get(model)
            if fields:
                caps = replace(caps, **_coerce_fields(fields))
        return caps

    def provider_capabilities(self, provider: str) -> ProviderCapabilities:
        return _PROVIDER_CAPABILITIES.get(provider, ProviderCapabilities())

    def reserved_output_tokens(
        self,
        provider: str,
        model: str,
        *,
        reasoning_enabled: bool,
        overrides: ModelOverrides | None = None,
    ) -> int | None:
        reserved = self.model_capabilities(provider, model, overrides).reserved_output_tokens
        if reserved is not None and reasoning_enabled:
            # thinking tokens count against max_tokens
            return reserved * 2
        return reserved


def _coerce_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    coerced = dict(fields)
    reasoning = coerced.get("reasoning")
    if isinstance(reasoning, Mapping):
        tags = reasoning.get("think_tags")
        coerced["reasoning"] = ReasoningCapabilities(
            can_io_reasoning=bool(reasoning.get("can_io_reasoning", False)),
            think_tags=tuple(tags) if tags else None,  # type: ignore[arg-type]
        )
    return coerced
