"""Providers that speak the OpenAI chat-completions wire format."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from unified_stream.accumulator import StreamAccumulator
from unified_stream.capabilities import ModelCapabilities, ProviderCapabilities
from unified_stream.errors import ConfigurationError, EmptyResponseError, ProviderError, UnsupportedProviderError
from unified_stream.finalize import classify_error, run_guarded
from unified_stream.providers._sse import iter_sse_json, raise_for_stream_status
from unified_stream.providers.base import (
    FIM_MAX_TOKENS,
    ProviderContext,
    ensure_fim_supported,
    json_or_error,
    open_sink,
)
from unified_stream.providers.google_auth import fetch_google_access_token
from unified_stream.settings import display_title, parse_headers_json
from unified_stream.types import (
    ChatRequest,
    FIMRequest,
    FinalMessage,
    ListModelsCallbacks,
    ModelInfo,
    StreamCallbacks,
    ToolInfo,
)

_logger = logging.getLogger(__name__)

_FIXED_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "xai": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "perplexity": "https://api.perplexity.ai",
    "openrouter": "https://openrouter.ai/api/v1",
}

_OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://voideditor.com",
    "X-Title": "Void",
}

# local servers ignore the key but some clients insist on sending one
_LOCAL_SERVERS = ("ollama", "vllm", "lmstudio", "litellm")
_PLACEHOLDER_KEY = "noop"

_BEDROCK_DEFAULT_ENDPOINT = "http://localhost:4000/v1"
_AZURE_DEFAULT_API_VERSION = "2024-04-01-preview"


@dataclass(frozen=True)
class OpenAIEndpoint:
    """Where to send OpenAI-wire requests for one provider, and how to authenticate."""

    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _require(value: str, provider: str, what: str) -> str:
    if not value:
        raise ConfigurationError(f"{display_title(provider)} {what} was empty.")
    return value


async def resolve_endpoint(ctx: ProviderContext, provider: str, model: str = "") -> OpenAIEndpoint:
    """Resolve base URL and credentials; configuration problems raise before any request."""
    settings = ctx.settings.get(provider)

    if provider in _FIXED_BASE_URLS:
        api_key = _require(ctx.settings.api_key(provider) or "", provider, "API key")
        headers = _bearer(api_key)
        if provider == "openrouter":
            headers.update(_OPENROUTER_HEADERS)
        return OpenAIEndpoint(_FIXED_BASE_URLS[provider], headers)

    if provider in _LOCAL_SERVERS:
        endpoint = _require(settings.endpoint, provider, "endpoint")
        return OpenAIEndpoint(f"{endpoint.rstrip('/')}/v1", _bearer(_PLACEHOLDER_KEY))

    if provider == "openai_compatible":
        endpoint = _require(settings.endpoint, provider, "endpoint")
        headers = _bearer(ctx.settings.api_key(provider) or _PLACEHOLDER_KEY)
        headers.update(parse_headers_json(settings.headers_json) or {})
        return OpenAIEndpoint(endpoint, headers)

    if provider == "aws_bedrock":
        endpoint = settings.endpoint or _BEDROCK_DEFAULT_ENDPOINT
        if not endpoint.rstrip("/").endswith("/v1"):
            endpoint = f"{endpoint.rstrip('/')}/v1"
        return OpenAIEndpoint(endpoint, _bearer(ctx.settings.api_key(provider) or _PLACEHOLDER_KEY))

    if provider == "microsoft_azure":
        project = _require(settings.project, provider, "resource name")
        api_key = _require(ctx.settings.api_key(provider) or "", provider, "API key")
        return OpenAIEndpoint(
            f"https://{project}.openai.azure.com/openai/deployments/{model}",
            {"api-key": api_key},
            {"api-version": settings.azure_api_version or _AZURE_DEFAULT_API_VERSION},
        )

    if provider == "google_vertex":
        region = _require(settings.region, provider, "region")
        project = _require(settings.project, provider, "project")
        token = await fetch_google_access_token(settings, transport=ctx.transport)
        return OpenAIEndpoint(
            f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}"
            f"/locations/{region}/endpoints/openapi",
            _bearer(token),
        )

    raise UnsupportedProviderError(provider)


def to_openai_tool(tool: ToolInfo) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": {
                    name: {"type": "string", "description": description}
                    for name, description in tool.params.items()
                },
            },
        },
    }


def build_messages(request: ChatRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if request.separate_system_message:
        messages.append({"role": "system", "content": request.separate_system_message})
    messages.extend({"role": m.role, "content": m.content} for m in request.messages)
    return messages


def build_chat_payload(
    request: ChatRequest,
    caps: ModelCapabilities,
    provider_caps: ProviderCapabilities,
    tools: Mapping[str, ToolInfo],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": caps.model_name,
        "messages": build_messages(request),
        "stream": True,
    }
    if caps.tool_format == "openai-style" and tools:
        payload["tools"] = [to_openai_tool(tool) for tool in tools.values()]
    payload.update(provider_caps.reasoning_payload(request.reasoning))
    payload.update(caps.extra_payload)
    return payload


def apply_chat_chunk(
    acc: StreamAccumulator,
    chunk: Mapping[str, Any],
    reasoning_field: str | None = None,
) -> bool:
    """Fold one streamed chunk into ``acc``; returns whether anything was added."""
    choices = chunk.get("choices") or []
    if not choices:
        return False
    delta = choices[0].get("delta") or {}
    changed = False

    content = delta.get("content")
    if isinstance(content, str) and content:
        acc.add_text(content)
        changed = True

    for tool in delta.get("tool_calls") or ():
        index = tool.get("index", 0)
        if index != 0:
            _logger.debug("Dropping tool call fragment at index %s", index)
            continue
        function = tool.get("function") or {}
        name = function.get("name") or ""
        arguments = function.get("arguments") or ""
        acc.add_tool_fragment(name=name, arguments=arguments, call_id=tool.get("id") or "")
        changed = changed or bool(name or arguments)

    if reasoning_field:
        reasoning = delta.get(reasoning_field)
        if isinstance(reasoning, str) and reasoning:
            acc.add_reasoning(reasoning)
            changed = True
    return changed


def _raise_for_chunk_error(provider: str, chunk: Mapping[str, Any]) -> None:
    error = chunk.get("error")
    if not error:
        return
    if isinstance(error, Mapping):
        code = error.get("code")
        raise ProviderError(
            provider,
            str(error.get("message") or error),
            status_code=code if isinstance(code, int) else None,
        )
    raise ProviderError(provider, str(error))


async def send_chat(ctx: ProviderContext, request: ChatRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    provider_caps = ctx.capabilities.provider_capabilities(provider)
    output = provider_caps.reasoning_output
    tools = ctx.chat_tools(request)

    think_tags = None
    if output.needs_manual_parse and caps.reasoning.can_io_reasoning:
        think_tags = caps.reasoning.think_tags
    sink = open_sink(
        provider,
        callbacks,
        think_tags=think_tags,
        xml_tools=tools if caps.tool_format is None else None,
    )

    async def body() -> None:
        endpoint = await resolve_endpoint(ctx, provider, caps.model_name)
        payload = build_chat_payload(request, caps, provider_caps, tools)
        acc = StreamAccumulator()
        _logger.info("Sending chat request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(endpoint.base_url, headers=endpoint.headers, params=endpoint.params) as client:
            async with client.stream("POST", "chat/completions", json=payload) as response:
                sink.aborter.attach_current_task()
                await raise_for_stream_status(provider, response)
                async for chunk in iter_sse_json(response):
                    _raise_for_chunk_error(provider, chunk)
                    if apply_chat_chunk(acc, chunk, output.delta_field):
                        sink.text(acc.snapshot())

        if acc.is_empty:
            raise EmptyResponseError()
        sink.final(acc.final_message())

    await run_guarded(sink, body)


async def send_fim(ctx: ProviderContext, request: FIMRequest, callbacks: StreamCallbacks) -> None:
    """Fill-in-middle over the legacy ``/completions`` endpoint; one response, no streaming."""
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    sink = open_sink(provider, callbacks)

    async def body() -> None:
        ensure_fim_supported(request, caps)
        endpoint = await resolve_endpoint(ctx, provider, caps.model_name)
        payload: dict[str, Any] = {
            "model": caps.model_name,
            "prompt": request.prefix,
            "suffix": request.suffix,
            "max_tokens": FIM_MAX_TOKENS,
        }
        if request.stop_tokens:
            payload["stop"] = request.stop_tokens
        payload.update(caps.extra_payload)
        _logger.info("Sending FIM request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(endpoint.base_url, headers=endpoint.headers, params=endpoint.params) as client:
            sink.aborter.attach_current_task()
            response = await client.post("completions", json=payload)
        data = json_or_error(provider, response)
        choices = data.get("choices") or []
        text = choices[0].get("text") if choices else None
        sink.final(FinalMessage(full_text=text if isinstance(text, str) else ""))

    await run_guarded(sink, body)


def _model_infos(items: Iterable[Any]) -> list[ModelInfo]:
    return [
        ModelInfo.model_validate({"name": item.get("id", ""), **item})
        for item in items
        if isinstance(item, Mapping)
    ]


async def list_models(ctx: ProviderContext, provider: str, callbacks: ListModelsCallbacks) -> None:
    """List models via ``GET /models``, following ``has_more``/``after`` paging."""
    models: list[ModelInfo] = []
    try:
        endpoint = await resolve_endpoint(ctx, provider)
        async with ctx.http_client(endpoint.base_url, headers=endpoint.headers, params=endpoint.params) as client:
            params: dict[str, str] = {}
            while True:
                data = json_or_error(provider, await client.get("models", params=params))
                page = data.get("data") or []
                models.extend(_model_infos(page))
                last_id = page[-1].get("id") if page and isinstance(page[-1], Mapping) else None
                if not data.get("has_more") or not last_id:
                    break
                params = {"after": str(last_id)}
    except Exception as exc:
        callbacks.on_error(classify_error(provider, exc))
        return
    callbacks.on_success(models)
