"""Minimal server-sent-events reader over an httpx streaming response."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from unified_stream.errors import ProviderError

_logger = logging.getLogger(__name__)


async def raise_for_stream_status(provider: str, response: httpx.Response) -> None:
    """Read the body of a failed streaming response and raise it as a ProviderError."""
    if response.status_code >= 400:
        body = await response.aread()
        raise ProviderError(
            provider,
            body.decode(errors="replace") or response.reason_phrase,
            status_code=response.status_code,
        )


async def iter_sse_json(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield each JSON ``data:`` payload until the stream ends or sends ``[DONE]``."""
    async for line in response.aiter_lines():
        if not line:
            continue
        line = line.strip()

        # event:, id: and comment lines carry nothing we need
        if not line.startswith("data:"):
            continue

        data_str = line[len("data:"):].strip()
        if data_str == "[DONE]":
            return

        try:
            event = json.loads(data_str)
        except json.JSONDecodeError:
            _logger.debug("Skipping non-JSON streaming chunk: %s", data_str)
            continue
        if isinstance(event, dict):
            yield event


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield each JSON object of a newline-delimited JSON stream."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            _logger.debug("Skipping non-JSON streaming line: %s", line)
            continue
        if isinstance(event, dict):
            yield event
