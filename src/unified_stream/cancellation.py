"""One-shot cancellation handle handed to the caller for a single request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

_logger = logging.getLogger(__name__)


class StreamAborter:
    """Cancel function for one request.

    The caller receives it when the request starts. The transport's own
    cancel hook is attached once it exists; an abort that arrives before
    that is remembered and applied on attach. Calls after the request has
    finished, and repeated calls, do nothing.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._finished = False
        self._cancel: Callable[[], None] | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def __call__(self) -> None:
        if self._aborted or self._finished:
            return
        self._aborted = True
        _logger.debug("Request aborted by caller")
        if self._cancel is not None:
            self._cancel()

    def attach(self, cancel: Callable[[], None]) -> None:
        """Register the transport's cancel hook, firing it now if already aborted."""
        if self._finished:
            return
        self._cancel = cancel
        if self._aborted:
            cancel()

    def attach_current_task(self) -> None:
        """Attach cancellation of the running task, which owns the open transport."""
        task = asyncio.current_task()
        if task is not None:
            self.attach(task.cancel)

    def finish(self) -> None:
        self._finished = True
        self._cancel = None
