"""Gemini ``streamGenerateContent`` over server-sent events."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from unified_stream.accumulator import StreamAccumulator
from unified_stream.errors import ConfigurationError, EmptyResponseError, ProviderError
from unified_stream.finalize import run_guarded
from unified_stream.providers._sse import iter_sse_json, raise_for_stream_status
from unified_stream.providers.base import ProviderContext, message_text_parts, open_sink
from unified_stream.settings import display_title
from unified_stream.types import ChatRequest, Message, ReasoningSelection, StreamCallbacks, ToolInfo

_logger = logging.getLogger(__name__)

_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def to_gemini_function(tool: ToolInfo) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": {
            "type": "OBJECT",
            "properties": {
                name: {"type": "STRING", "description": description}
                for name, description in tool.params.items()
            },
        },
    }


def _to_content(message: Message) -> dict[str, Any]:
    role = "model" if message.role == "assistant" else "user"
    if isinstance(message.content, str):
        return {"role": role, "parts": [{"text": message.content}]}
    parts: list[dict[str, Any]] = []
    for part in message.content:
        if part.get("type", "text") == "text" and "text" in part:
            parts.append({"text": part["text"]})
        else:
            # already in native form (inlineData, functionCall, functionResponse)
            parts.append({k: v for k, v in part.items() if k != "type"})
    return {"role": role, "parts": parts}


def thinking_config(reasoning: ReasoningSelection | None) -> dict[str, Any] | None:
    if reasoning is None or not reasoning.enabled or reasoning.type != "budget":
        return None
    config: dict[str, Any] = {"includeThoughts": True}
    if reasoning.budget is not None:
        config["thinkingBudget"] = reasoning.budget
    return config


def build_payload(
    request: ChatRequest,
    *,
    tools: Mapping[str, ToolInfo] | None,
    extra_payload: Mapping[str, Any],
) -> dict[str, Any]:
    system_parts = [request.separate_system_message] if request.separate_system_message else []
    contents: list[dict[str, Any]] = []
    for message in request.messages:
        if message.role in ("system", "developer"):
            system_parts.extend(message_text_parts(message))
        else:
            contents.append(_to_content(message))

    payload: dict[str, Any] = {"contents": contents}
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
    thinking = thinking_config(request.reasoning)
    if thinking:
        payload["generationConfig"] = {"thinkingConfig": thinking}
    if tools:
        payload["tools"] = [{"functionDeclarations": [to_gemini_function(t) for t in tools.values()]}]
    payload.update(extra_payload)
    return payload


def apply_chunk(acc: StreamAccumulator, chunk: Mapping[str, Any]) -> bool:
    """Fold one response chunk into ``acc``.

    Function calls arrive whole, so a later call replaces an earlier one
    instead of being concatenated. Only the first call of a chunk is kept.
    """
    candidates = chunk.get("candidates") or []
    if not candidates:
        return False
    parts = (candidates[0].get("content") or {}).get("parts") or []
    changed = False
    seen_call = False
    for part in parts:
        if "functionCall" in part:
            if seen_call:
                _logger.debug("Dropping extra function call %s", part["functionCall"].get("name"))
                continue
            seen_call = True
            call = part["functionCall"] or {}
            acc.set_tool(
                name=call.get("name") or "",
                arguments=json.dumps(call.get("args") or {}),
                # other providers always send an id and consumers rely on it
                call_id=call.get("id") or str(uuid.uuid4()),
            )
            changed = True
            continue
        text = part.get("text")
        if not isinstance(text, str) or not text:
            continue
        if part.get("thought"):
            acc.add_reasoning(text)
        else:
            acc.add_text(text)
        changed = True
    return changed


async def send_chat(ctx: ProviderContext, request: ChatRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    tools = ctx.chat_tools(request)
    native_tools = caps.tool_format == "gemini-style"
    # Gemini reports bad keys and quota errors in the message text
    sink = open_sink(provider, callbacks, xml_tools=None if caps.tool_format else tools, by_message=True)

    async def body() -> None:
        api_key = ctx.settings.api_key(provider)
        if not api_key:
            raise ConfigurationError(f"{display_title(provider)} API key was empty.")
        payload = build_payload(
            request,
            tools=tools if native_tools else None,
            extra_payload=caps.extra_payload,
        )
        acc = StreamAccumulator()
        _logger.info("Sending chat request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(
            _BASE_URL, headers={"x-goog-api-key": api_key}, params={"alt": "sse"}
        ) as client:
            path = f"models/{caps.model_name}:streamGenerateContent"
            async with client.stream("POST", path, json=payload) as response:
                sink.aborter.attach_current_task()
                await raise_for_stream_status(provider, response)
                async for chunk in iter_sse_json(response):
                    if "error" in chunk:
                        error = chunk["error"] or {}
                        code = error.get("code")
                        raise ProviderError(
                            provider,
                            str(error.get("message") or error),
                            status_code=code if isinstance(code, int) else None,
                        )
                    if apply_chunk(acc, chunk):
                        sink.text(acc.snapshot())

        if acc.is_empty:
            raise EmptyResponseError()
        sink.final(acc.final_message())

    await run_guarded(sink, body)
