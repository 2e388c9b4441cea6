"""Mistral fill-in-middle (``/v1/fim/completions``). Chat goes over the OpenAI wire."""

from __future__ import annotations

import logging
from typing import Any

from unified_stream.errors import ConfigurationError
from unified_stream.finalize import run_guarded
from unified_stream.providers.base import FIM_MAX_TOKENS, ProviderContext, ensure_fim_supported, json_or_error, open_sink
from unified_stream.settings import display_title
from unified_stream.types import FIMRequest, FinalMessage, StreamCallbacks

_logger = logging.getLogger(__name__)

_BASE_URL = "https://api.mistral.ai"
_FIM_PATH = "/v1/fim/completions"


def completion_text(data: dict[str, Any]) -> str:
    """Text of the first choice; content is a string or a list of typed chunks."""
    choices = data.get("choices") or []
    if not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content") or ""
    if isinstance(content, str):
        return content
    return "".join(
        chunk.get("text", "") for chunk in content if isinstance(chunk, dict) and chunk.get("type") == "text"
    )


async def send_fim(ctx: ProviderContext, request: FIMRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    sink = open_sink(provider, callbacks)

    async def body() -> None:
        ensure_fim_supported(request, caps)
        api_key = ctx.settings.api_key(provider)
        if not api_key:
            raise ConfigurationError(f"{display_title(provider)} API key was empty.")
        payload: dict[str, Any] = {
            "model": caps.model_name,
            "prompt": request.prefix,
            "suffix": request.suffix,
            "stream": False,
            "max_tokens": FIM_MAX_TOKENS,
        }
        if request.stop_tokens:
            payload["stop"] = request.stop_tokens
        _logger.info("Sending FIM request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(_BASE_URL, headers={"Authorization": f"Bearer {api_key}"}) as client:
            sink.aborter.attach_current_task()
            response = await client.post(_FIM_PATH, json=payload)
        sink.final(FinalMessage(full_text=completion_text(json_or_error(provider, response))))

    await run_guarded(sink, body)
