"""Ollama native endpoints: raw ``/api/generate`` for fill-in-middle and ``/api/tags`` for listing."""

from __future__ import annotations

import logging
from typing import Any

from unified_stream.errors import ConfigurationError, ProviderError
from unified_stream.finalize import classify_error, run_guarded
from unified_stream.providers._sse import iter_ndjson, raise_for_stream_status
from unified_stream.providers.base import FIM_MAX_TOKENS, ProviderContext, ensure_fim_supported, json_or_error, open_sink
from unified_stream.settings import DEFAULT_ENDPOINTS
from unified_stream.types import FIMRequest, FinalMessage, ListModelsCallbacks, ModelInfo, StreamCallbacks

_logger = logging.getLogger(__name__)


def ollama_endpoint(ctx: ProviderContext) -> str:
    endpoint = ctx.settings.get("ollama").endpoint
    if not endpoint:
        raise ConfigurationError(
            "Ollama endpoint was empty (please enter "
            f"{DEFAULT_ENDPOINTS['ollama']} if you want the default url)."
        )
    return endpoint.rstrip("/")


async def send_fim(ctx: ProviderContext, request: FIMRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    caps = ctx.model_capabilities(provider, request.model)
    sink = open_sink(provider, callbacks)

    async def body() -> None:
        ensure_fim_supported(request, caps)
        payload: dict[str, Any] = {
            "model": caps.model_name,
            "prompt": request.prefix,
            "suffix": request.suffix,
            "options": {"stop": request.stop_tokens, "num_predict": FIM_MAX_TOKENS},
            "raw": True,
            "stream": True,
        }
        full_text = ""
        _logger.info("Sending FIM request to %s (model %s)", provider, caps.model_name)

        async with ctx.http_client(ollama_endpoint(ctx)) as client:
            async with client.stream("POST", "/api/generate", json=payload) as response:
                sink.aborter.attach_current_task()
                await raise_for_stream_status(provider, response)
                async for chunk in iter_ndjson(response):
                    if chunk.get("error"):
                        raise ProviderError(provider, str(chunk["error"]))
                    full_text += chunk.get("response") or ""
        sink.final(FinalMessage(full_text=full_text))

    await run_guarded(sink, body)


async def list_models(ctx: ProviderContext, provider: str, callbacks: ListModelsCallbacks) -> None:
    try:
        async with ctx.http_client(ollama_endpoint(ctx)) as client:
            data = json_or_error(provider, await client.get("/api/tags"))
        models = [
            ModelInfo.model_validate({"id": item.get("model") or item.get("name", ""), **item})
            for item in data.get("models") or []
            if isinstance(item, dict)
        ]
    except Exception as exc:
        callbacks.on_error(classify_error(provider, exc))
        return
    callbacks.on_success(models)
