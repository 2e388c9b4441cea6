"""Anthropic Messages API: streamed content blocks, native thinking and tool use."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from unified_stream.accumulator import StreamAccumulator, tool_call_from_params
from unified_stream.errors import ConfigurationError, EmptyResponseError, ProviderError
from unified_stream.finalize import run_guarded
from unified_stream.providers._sse import iter_sse_json, raise_for_stream_status
from unified_stream.providers.base import ProviderContext, message_text_parts, open_sink
from unified_stream.settings import display_title
from unified_stream.types import ChatRequest, FinalMessage, StreamCallbacks, ToolInfo

_logger = logging.getLogger(__name__)

_BASE_URL = "https://api.anthropic.com"
_MESSAGES_PATH = "/v1/messages"
_API_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 4096

REDACTED_THINKING_PLACEHOLDER = "[redacted_thinking]"
_BLOCK_SEPARATOR = "\n\n"

# error.type in a streamed error event -> equivalent HTTP status
_ERROR_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


def to_anthropic_tool(tool: ToolInfo) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": {
            "type": "object",
            "properties": {
                name: {"type": "string", "description": description}
                for name, description in tool.params.items()
            },
        },
    }


def build_payload(
    request: ChatRequest,
    model: str,
    *,
    max_tokens: int | None,
    tools: Mapping[str, ToolInfo] | None,
    reasoning_payload: Mapping[str, Any],
    extra_payload: Mapping[str, Any],
) -> dict[str, Any]:
    """System text goes in the top-level ``system`` field; the API rejects system-role messages."""
    system_parts = [request.separate_system_message] if request.separate_system_message else []
    messages: list[dict[str, Any]] = []
    for message in request.messages:
        if message.role in ("system", "developer"):
            system_parts.extend(message_text_parts(message))
            continue
        role = "assistant" if message.role == "assistant" else "user"
        messages.append({"role": role, "content": message.content})

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens or _DEFAULT_MAX_TOKENS,
        "stream": True,
    }
    if system_parts:
        payload["system"] = _BLOCK_SEPARATOR.join(system_parts)
    payload.update(reasoning_payload)
    if tools:
        payload["tools"] = [to_anthropic_tool(tool) for tool in tools.values()]
        payload["tool_choice"] = {"type": "auto"}
    payload.update(extra_payload)
    return payload


@dataclass
class AnthropicStream:
    """Decoder state for one streamed message.

    ``acc`` holds what the caller sees while streaming. ``blocks`` rebuilds
    the message content by block index so the final message can be taken
    from the completed blocks rather than from the running text.
    """

    acc: StreamAccumulator = field(default_factory=StreamAccumulator)
    blocks: dict[int, dict[str, Any]] = field(default_factory=dict)
    partial_json: dict[int, str] = field(default_factory=dict)
    stopped: bool = False

    def apply(self, provider: str, event: Mapping[str, Any]) -> bool:
        """Fold one event in; returns whether the caller-visible state changed."""
        kind = event.get("type")
        if kind == "error":
            error = event.get("error") or {}
            raise ProviderError(
                provider,
                str(error.get("message") or error),
                status_code=_ERROR_STATUS.get(str(error.get("type"))),
            )
        if kind == "message_stop":
            self.stopped = True
            return False

        index = event.get("index", 0)
        if kind == "content_block_start":
            block = dict(event.get("content_block") or {})
            self.blocks[index] = block
            return self._start_block(block)
        if kind == "content_block_delta":
            return self._apply_delta(index, event.get("delta") or {})
        if kind == "content_block_stop":
            self._stop_block(index)
        return False

    def _start_block(self, block: dict[str, Any]) -> bool:
        acc = self.acc
        before = (acc.full_text, acc.full_reasoning, acc.tool_name)
        block_type = block.get("type")
        if block_type == "text":
            if acc.full_text:
                acc.add_text(_BLOCK_SEPARATOR)
            acc.add_text(block.get("text") or "")
        elif block_type == "thinking":
            if acc.full_reasoning:
                acc.add_reasoning(_BLOCK_SEPARATOR)
            acc.add_reasoning(block.get("thinking") or "")
        elif block_type == "redacted_thinking":
            if acc.full_reasoning:
                acc.add_reasoning(_BLOCK_SEPARATOR)
            acc.add_reasoning(REDACTED_THINKING_PLACEHOLDER)
        elif block_type == "tool_use":
            # the name arrives whole in the start event
            acc.add_tool_fragment(name=block.get("name") or "", call_id=block.get("id") or "")
        return (acc.full_text, acc.full_reasoning, acc.tool_name) != before

    def _apply_delta(self, index: int, delta: Mapping[str, Any]) -> bool:
        block = self.blocks.setdefault(index, {})
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text") or ""
            block["text"] = block.get("text", "") + text
            self.acc.add_text(text)
            return bool(text)
        if delta_type == "thinking_delta":
            thinking = delta.get("thinking") or ""
            block["thinking"] = block.get("thinking", "") + thinking
            self.acc.add_reasoning(thinking)
            return bool(thinking)
        if delta_type == "signature_delta":
            block["signature"] = delta.get("signature", "")
            return False
        if delta_type == "input_json_delta":
            partial = delta.get("partial_json") or ""
            self.partial_json[index] = self.partial_json.get(index, "") + partial
            self.acc.add_tool_fragment(arguments=partial)
            return bool(partial)
        return False

    def _stop_block(self, index: int) -> None:
        block = self.blocks.get(index)
        if block is None or block.get("type") != "tool_use":
            return
        raw = self.partial_json.get(index, "")
        if not raw:
            # no deltas means the input from the start event stands
            block.setdefault("input", {})
            return
        try:
            block["input"] = json.loads(raw)
        except json.JSONDecodeError:
            _logger.debug("Dropping tool_use block with unparsable input: %s", raw)
            block["input"] = None

    def final_message(self) -> FinalMessage:
        ordered = [self.blocks[index] for index in sorted(self.blocks)]
        reasoning_blocks = [b for b in ordered if b.get("type") in ("thinking", "redacted_thinking")]
        tool_blocks = [b for b in ordered if b.get("type") == "tool_use"]
        tool_call = None
        if tool_blocks:
            first = tool_blocks[0]
            tool_call = tool_call_from_params(first.get("id", ""), first.get("name", ""), first.get("input"))
        return FinalMessage(
            full_text=self.acc.full_text,
            full_reasoning=self.acc.full_reasoning,
            provider_reasoning=reasoning_blocks,
            tool_call=tool_call,
        )


async def send_chat(ctx: ProviderContext, request: ChatRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    provider_caps = ctx.capabilities.provider_capabilities(provider)
    tools = ctx.chat_tools(request)
    native_tools = caps.tool_format == "anthropic-style"
    sink = open_sink(provider, callbacks, xml_tools=None if caps.tool_format else tools)

    async def body() -> None:
        api_key = ctx.settings.api_key(provider)
        if not api_key:
            raise ConfigurationError(f"{display_title(provider)} API key was empty.")
        max_tokens = ctx.capabilities.reserved_output_tokens(
            provider,
            request.model,
            reasoning_enabled=request.reasoning_enabled,
            overrides=ctx.overrides_of_model,
        )
        payload = build_payload(
            request,
            caps.model_name,
            max_tokens=max_tokens,
            tools=tools if native_tools else None,
            reasoning_payload=provider_caps.reasoning_payload(request.reasoning),
            extra_payload=caps.extra_payload,
        )
        headers = {"x-api-key": api_key, "anthropic-version": _API_VERSION}
        stream = AnthropicStream()
        _logger.info("Sending chat request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(_BASE_URL, headers=headers) as client:
            async with client.stream("POST", _MESSAGES_PATH, json=payload) as response:
                sink.aborter.attach_current_task()
                await raise_for_stream_status(provider, response)
                async for event in iter_sse_json(response):
                    if stream.apply(provider, event):
                        sink.text(stream.acc.snapshot())

        if not stream.stopped:
            raise ProviderError(provider, "stream ended before message_stop")
        if stream.acc.is_empty:
            raise EmptyResponseError()
        sink.final(stream.final_message())

    await run_guarded(sink, body)
