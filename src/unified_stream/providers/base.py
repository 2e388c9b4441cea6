"""Shared context and helpers for provider implementations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import httpx

from unified_stream.cancellation import StreamAborter
from unified_stream.capabilities import (
    CapabilityResolver,
    ModelCapabilities,
    ModelOverrides,
    StaticCapabilityResolver,
)
from unified_stream.errors import ProviderError, UnsupportedFeatureError
from unified_stream.extract import extract_reasoning_wrapper, extract_xml_tools_wrapper
from unified_stream.finalize import ResponseSink
from unified_stream.settings import ProviderSettingsStore
from unified_stream.tools import ToolCatalog, ToolSource
from unified_stream.types import ChatRequest, FIMRequest, Message, StreamCallbacks, ToolInfo

FIM_MAX_TOKENS = 300


@dataclass(frozen=True)
class ProviderContext:
    """Collaborators every provider call reads from; shared read-only across requests."""

    settings: ProviderSettingsStore = field(default_factory=ProviderSettingsStore)
    capabilities: CapabilityResolver = field(default_factory=StaticCapabilityResolver)
    tool_catalog: ToolSource = field(default_factory=ToolCatalog)
    overrides_of_model: ModelOverrides | None = None
    transport: httpx.AsyncBaseTransport | None = None
    timeout_s: float = 60.0

    def model_capabilities(self, provider: str, model: str) -> ModelCapabilities:
        return self.capabilities.model_capabilities(provider, model, self.overrides_of_model)

    def chat_tools(self, request: ChatRequest) -> dict[str, ToolInfo]:
        return self.tool_catalog.available_tools(request.chat_mode, request.mcp_tools)

    def http_client(
        self,
        base_url: str = "",
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> httpx.AsyncClient:
        """Create the single client a request uses; callers close it when the request ends."""
        return httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers or {}),
            params=dict(params or {}),
            timeout=self.timeout_s,
            transport=self.transport,
        )


def open_sink(
    provider: str,
    callbacks: StreamCallbacks,
    *,
    think_tags: tuple[str, str] | None = None,
    xml_tools: Mapping[str, ToolInfo] | None = None,
    by_message: bool = False,
) -> ResponseSink:
    """Install the fallback wrappers a request needs and hand the caller its aborter.

    Data flows provider -> reasoning extractor -> tool extractor -> caller, so
    markup inside a reasoning block is never mistaken for a tool call.
    """
    on_text, on_final_message = callbacks.on_text, callbacks.on_final_message
    if xml_tools:
        on_text, on_final_message = extract_xml_tools_wrapper(on_text, on_final_message, xml_tools)
    if think_tags:
        on_text, on_final_message = extract_reasoning_wrapper(on_text, on_final_message, think_tags)

    aborter = StreamAborter()
    sink = ResponseSink(
        provider,
        on_text,
        on_final_message,
        callbacks.on_error,
        aborter,
        by_message=by_message,
    )
    callbacks.set_aborter(aborter)
    return sink


def ensure_fim_supported(request: FIMRequest, caps: ModelCapabilities) -> None:
    """Fail fast when the resolved model cannot do fill-in-middle."""
    if caps.supports_fim:
        return
    if caps.model_name == request.model:
        message = f"Model {request.model} does not support FIM."
    else:
        message = f"Model {request.model} ({caps.model_name}) does not support FIM."
    raise UnsupportedFeatureError("fim", message)


def json_or_error(provider: str, response: httpx.Response) -> dict[str, Any]:
    if response.status_code >= 400:
        raise ProviderError(
            provider,
            response.text or response.reason_phrase,
            status_code=response.status_code,
        )
    data = response.json()
    if not isinstance(data, dict):
        raise ProviderError(provider, "response is not a JSON object")
    return cast(dict[str, Any], data)


def message_text_parts(message: Message) -> list[str]:
    """Text fragments of a message; non-text parts (images, files) are skipped."""
    if isinstance(message.content, str):
        return [message.content]
    parts: list[str] = []
    for part in message.content:
        text = part.get("text")
        if isinstance(text, str) and part.get("type", "text") == "text":
            parts.append(text)
    return parts
