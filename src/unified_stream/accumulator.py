"""Per-request stream state shared by every decoder."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from unified_stream.types import FinalMessage, TextDelta, ToolCall


def tool_call_from_params(call_id: str, name: str, params: Any) -> ToolCall | None:
    """Build a finished tool call; anything but a JSON object yields None."""
    if not name or not isinstance(params, Mapping):
        return None
    raw_params = dict(params)
    return ToolCall(
        id=call_id,
        name=name,
        raw_params=raw_params,
        done_params=list(raw_params),
        is_done=True,
    )


def tool_call_from_params_str(call_id: str, name: str, params_str: str) -> ToolCall | None:
    """Parse accumulated argument text into a finished tool call, or None if it is not an object."""
    try:
        params = json.loads(params_str)
    except (json.JSONDecodeError, TypeError):
        return None
    return tool_call_from_params(call_id, name, params)


@dataclass
class StreamAccumulator:
    """Everything one request has streamed so far.

    Decoders mutate a single instance per request and call ``snapshot()``
    after each chunk; nothing here is shared between requests.
    """

    full_text: str = ""
    full_reasoning: str = ""
    tool_name: str = ""
    tool_id: str = ""
    tool_params: str = ""

    def add_text(self, text: str) -> None:
        self.full_text += text

    def add_reasoning(self, reasoning: str) -> None:
        self.full_reasoning += reasoning

    def add_tool_fragment(self, *, name: str = "", arguments: str = "", call_id: str = "") -> None:
        self.tool_name += name
        self.tool_params += arguments
        if call_id and not self.tool_id:
            self.tool_id = call_id

    def set_tool(self, *, name: str, arguments: str, call_id: str) -> None:
        self.tool_name = name
        self.tool_params = arguments
        self.tool_id = call_id

    @property
    def is_empty(self) -> bool:
        return not self.full_text and not self.full_reasoning and not self.tool_name

    def snapshot(self) -> TextDelta:
        tool_call = None
        if self.tool_name:
            tool_call = ToolCall(id=self.tool_id, name=self.tool_name)
        return TextDelta(
            full_text=self.full_text,
            full_reasoning=self.full_reasoning,
            tool_call=tool_call,
        )

    def final_message(self) -> FinalMessage:
        """Final message with the tool call parsed from the accumulated argument text."""
        tool_call = None
        if self.tool_name:
            tool_call = tool_call_from_params_str(self.tool_id, self.tool_name, self.tool_params)
        return FinalMessage(
            full_text=self.full_text,
            full_reasoning=self.full_reasoning,
            tool_call=tool_call,
        )
