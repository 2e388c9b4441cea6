"""Async client dispatching requests to the configured providers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import httpx

from unified_stream.capabilities import CapabilityResolver, ModelOverrides, StaticCapabilityResolver
from unified_stream.dispatch import ProviderImplementation, implementation_for
from unified_stream.errors import UnifiedStreamError, UnsupportedFeatureError
from unified_stream.providers.base import ProviderContext
from unified_stream.settings import ProviderSettingsStore
from unified_stream.tools import ToolCatalog, ToolSource
from unified_stream.types import (
    Aborter,
    ChatRequest,
    FinalMessage,
    FIMRequest,
    ListModelsCallbacks,
    LLMError,
    StreamCallbacks,
    TextDelta,
)

_logger = logging.getLogger(__name__)


class StreamError(UnifiedStreamError):
    """Raised by ``LLMClient.stream`` when the request ends with ``on_error``."""

    def __init__(self, error: LLMError) -> None:
        super().__init__(error.message)
        self.error = error


class LLMClient:
    """High-level coordinator for sending requests to any registered provider."""

    def __init__(
        self,
        *,
        settings: ProviderSettingsStore | None = None,
        capabilities: CapabilityResolver | None = None,
        tool_catalog: ToolSource | None = None,
        overrides_of_model: ModelOverrides | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self._ctx = ProviderContext(
            settings=settings or ProviderSettingsStore(),
            capabilities=capabilities or StaticCapabilityResolver(),
            tool_catalog=tool_catalog or ToolCatalog(),
            overrides_of_model=overrides_of_model,
            transport=transport,
            timeout_s=timeout_s,
        )

    @property
    def context(self) -> ProviderContext:
        return self._ctx

    def get_provider(self, name: str) -> ProviderImplementation:
        """Return the implementation registered for a provider name."""
        return implementation_for(name)

    async def send_chat(self, request: ChatRequest, callbacks: StreamCallbacks) -> None:
        """Stream a chat completion; ends with exactly one ``on_final_message`` or ``on_error``."""
        implementation = self.get_provider(request.provider)
        _logger.info("Dispatching chat to %s (model %s)", request.provider, request.model)
        await implementation.send_chat(self._ctx, request, callbacks)

    async def send_fim(self, request: FIMRequest, callbacks: StreamCallbacks) -> None:
        """Run a fill-in-middle completion."""
        implementation = self.get_provider(request.provider)
        if implementation.send_fim is None:
            raise UnsupportedFeatureError("fim", f"{request.provider} does not support fill-in-middle.")
        _logger.info("Dispatching FIM to %s (model %s)", request.provider, request.model)
        await implementation.send_fim(self._ctx, request, callbacks)

    async def list_models(self, provider: str, callbacks: ListModelsCallbacks) -> None:
        """List the models a provider serves."""
        implementation = self.get_provider(provider)
        if implementation.list_models is None:
            raise UnsupportedFeatureError("list_models", f"{provider} does not support listing models.")
        await implementation.list_models(self._ctx, provider, callbacks)

    async def stream(self, request: ChatRequest) -> AsyncIterator[TextDelta | FinalMessage]:
        """Yield each cumulative ``TextDelta`` and then the ``FinalMessage``.

        Raises ``StreamError`` when the request fails. Leaving the loop early
        aborts the request.
        """
        self.get_provider(request.provider)
        queue: asyncio.Queue[TextDelta | FinalMessage | LLMError | None] = asyncio.Queue()
        aborters: list[Aborter] = []
        callbacks = StreamCallbacks(
            on_text=queue.put_nowait,
            on_final_message=queue.put_nowait,
            on_error=queue.put_nowait,
            set_aborter=aborters.append,
        )
        task = asyncio.ensure_future(self.send_chat(request, callbacks))
        # None marks the end of the send task
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, LLMError):
                    raise StreamError(item)
                yield item
                if isinstance(item, FinalMessage):
                    break
            await task
        finally:
            if not task.done():
                for abort in aborters:
                    abort()
                if not aborters:
                    task.cancel()
                await asyncio.gather(task, return_exceptions=True)
