"""Terminal callbacks: exactly one final message or error per request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from unified_stream.cancellation import StreamAborter
from unified_stream.errors import (
    ConfigurationError,
    EmptyResponseError,
    ErrorKind,
    ProviderError,
    UnsupportedFeatureError,
)
from unified_stream.settings import display_title
from unified_stream.types import FinalMessage, LLMError, OnError, OnFinalMessage, OnText, TextDelta

_logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit")


def invalid_api_key_message(provider: str) -> str:
    return f"Invalid {display_title(provider)} API key."


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, ProviderError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def classify_error(provider: str, exc: BaseException, *, by_message: bool = False) -> LLMError:
    """Map an exception raised while serving a request onto the error taxonomy.

    ``by_message`` enables substring matching for providers that report
    credential and quota problems in the message rather than with a status
    code.
    """
    message = str(exc)
    if isinstance(exc, ConfigurationError):
        return LLMError(message=message, kind=ErrorKind.CONFIGURATION, full_error=exc)
    if isinstance(exc, UnsupportedFeatureError):
        return LLMError(message=message, kind=ErrorKind.UNSUPPORTED, full_error=exc)
    if isinstance(exc, EmptyResponseError):
        return LLMError(message=message, kind=ErrorKind.EMPTY_RESPONSE, full_error=exc)

    status = _status_code(exc)
    if status == 401 or (by_message and "API key" in message):
        return LLMError(
            message=invalid_api_key_message(provider),
            kind=ErrorKind.INVALID_CREDENTIAL,
            full_error=exc,
        )
    lowered = message.lower()
    rate_limited = any(marker in lowered for marker in _RATE_LIMIT_MARKERS)
    if status == 429 or rate_limited or (by_message and "429" in message):
        return LLMError(
            message=f"Rate limit reached. {message}",
            kind=ErrorKind.RATE_LIMITED,
            full_error=exc,
        )
    return LLMError(message=message or type(exc).__name__, kind=ErrorKind.TRANSPORT, full_error=exc)


class ResponseSink:
    """Guards the caller's callbacks for one request.

    Text is dropped once the request is aborted or finished. The first
    terminal call wins; an aborted request always ends with an empty final
    message, never an error.
    """

    def __init__(
        self,
        provider: str,
        on_text: OnText,
        on_final_message: OnFinalMessage,
        on_error: OnError,
        aborter: StreamAborter,
        *,
        by_message: bool = False,
    ) -> None:
        self.provider = provider
        self.aborter = aborter
        self._on_text = on_text
        self._on_final_message = on_final_message
        self._on_error = on_error
        self._by_message = by_message
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def text(self, delta: TextDelta) -> None:
        if self._closed or self.aborter.aborted:
            return
        self._on_text(delta)

    def final(self, message: FinalMessage) -> None:
        if self._closed:
            return
        self._closed = True
        self.aborter.finish()
        if self.aborter.aborted:
            message = FinalMessage()
        self._on_final_message(message)

    def error(self, error: LLMError) -> None:
        if self._closed:
            return
        if self.aborter.aborted:
            self.final(FinalMessage())
            return
        self._closed = True
        self.aborter.finish()
        _logger.info("%s request failed (%s): %s", self.provider, error.kind.value, error.message)
        self._on_error(error)

    def fail(self, exc: BaseException) -> None:
        self.error(classify_error(self.provider, exc, by_message=self._by_message))


async def run_guarded(sink: ResponseSink, body: Callable[[], Awaitable[None]]) -> None:
    """Run a request body, turning aborts into an empty final message and failures into ``on_error``.

    The body runs in its own task so that the aborter cancels the request,
    never the caller's task.
    """
    task = asyncio.ensure_future(body())
    try:
        await task
    except asyncio.CancelledError:
        if not (sink.aborter.aborted and task.cancelled()):
            raise
        sink.final(FinalMessage())
    except Exception as exc:
        sink.fail(exc)
    else:
        if not sink.closed:
            # body returned without a terminal call
            sink.final(FinalMessage())
