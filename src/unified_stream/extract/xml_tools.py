"""Parse a textual tool-call grammar for models without native function calling.

The model is asked to write one call per turn as::

    <tool_name>
    <param_name>value</param_name>
    </tool_name>

The call is removed from the visible text and reported through the same
``tool_call`` field native providers use.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field

from unified_stream.extract.reasoning import partial_tag_start
from unified_stream.types import FinalMessage, OnFinalMessage, OnText, TextDelta, ToolCall, ToolInfo


@dataclass
class ParsedToolCall:
    name: str
    start: int
    end: int | None
    params: dict[str, str] = field(default_factory=dict)
    done_params: list[str] = field(default_factory=list)

    @property
    def closed(self) -> bool:
        return self.end is not None


def _find_first_call(text: str, tools: Mapping[str, ToolInfo]) -> tuple[int, str] | None:
    best: tuple[int, str] | None = None
    for name in tools:
        index = text.find(f"<{name}>")
        if index != -1 and (best is None or index < best[0]):
            best = (index, name)
    return best


def _parse_params(body: str, param_names: list[str], *, final: bool) -> tuple[dict[str, str], list[str]]:
    params: dict[str, str] = {}
    done: list[str] = []
    opened: list[tuple[int, str]] = []
    for name in param_names:
        index = body.find(f"<{name}>")
        if index != -1:
            opened.append((index, name))
    for index, name in sorted(opened):
        value_start = index + len(name) + 2
        close_tag = f"</{name}>"
        value_end = body.find(close_tag, value_start)
        if value_end != -1:
            params[name] = body[value_start:value_end].strip("\n")
            done.append(name)
            continue
        value = body[value_start:]
        if not final:
            value = value[:partial_tag_start(value, close_tag)]
        params[name] = value.strip("\n")
    return params, done


def parse_xml_tool_call(
    text: str, tools: Mapping[str, ToolInfo], *, final: bool = False
) -> ParsedToolCall | None:
    """Find the first tool call in ``text``; the call may still be open."""
    found = _find_first_call(text, tools)
    if found is None:
        return None
    start, name = found
    body_start = start + len(name) + 2
    close_tag = f"</{name}>"
    close_index = text.find(close_tag, body_start)
    end = None if close_index == -1 else close_index + len(close_tag)
    body = text[body_start:] if close_index == -1 else text[body_start:close_index]
    params, done = _parse_params(body, list(tools[name].params), final=final or end is not None)
    return ParsedToolCall(name=name, start=start, end=end, params=params, done_params=done)


def _partial_call_start(text: str, tools: Mapping[str, ToolInfo]) -> int:
    """Hold back a trailing ``<partial`` that may still become a tool's opening tag."""
    cut = len(text)
    for name in tools:
        cut = min(cut, partial_tag_start(text, f"<{name}>"))
    return cut


def extract_xml_tools_wrapper(
    on_text: OnText,
    on_final_message: OnFinalMessage,
    tools: Mapping[str, ToolInfo],
) -> tuple[OnText, OnFinalMessage]:
    """Wrap a callback pair so textual tool calls become structured ``tool_call`` values.

    Responses without tool markup pass through untouched. While streaming, a
    trailing fragment that could still open a tool tag (such as a lone ``<``)
    is held back from ``full_text`` until the next delta or the final message.
    """
    call_id = str(uuid.uuid4())

    def visible_text(text: str, parsed: ParsedToolCall) -> str:
        trailing = text[parsed.end:] if parsed.closed else ""
        return text[: parsed.start] + trailing

    def new_on_text(delta: TextDelta) -> None:
        parsed = parse_xml_tool_call(delta.full_text, tools)
        if parsed is None:
            cut = _partial_call_start(delta.full_text, tools)
            if cut != len(delta.full_text):
                delta = delta.model_copy(update={"full_text": delta.full_text[:cut]})
            on_text(delta)
            return
        tool_call = ToolCall(
            id=call_id,
            name=parsed.name,
            raw_params=dict(parsed.params),
            done_params=list(parsed.done_params),
            is_done=False,
        )
        on_text(
            delta.model_copy(
                update={"full_text": visible_text(delta.full_text, parsed), "tool_call": tool_call}
            )
        )

    def new_on_final_message(message: FinalMessage) -> None:
        parsed = parse_xml_tool_call(message.full_text, tools, final=True)
        if parsed is None:
            on_final_message(message)
            return
        tool_call = ToolCall(
            id=call_id,
            name=parsed.name,
            raw_params=dict(parsed.params),
            done_params=list(parsed.params),
            is_done=True,
        )
        on_final_message(
            message.model_copy(
                update={"full_text": visible_text(message.full_text, parsed), "tool_call": tool_call}
            )
        )

    return new_on_text, new_on_final_message
