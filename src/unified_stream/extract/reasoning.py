"""Split inline reasoning markup (``<think>...</think>``) out of the text channel."""

from __future__ import annotations

from unified_stream.types import FinalMessage, OnFinalMessage, OnText, TextDelta


def partial_tag_start(text: str, tag: str) -> int:
    """Index where a trailing prefix of ``tag`` begins, or ``len(text)`` if there is none."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return len(text) - size
    return len(text)


def split_reasoning(text: str, open_tag: str, close_tag: str, *, final: bool = False) -> tuple[str, str]:
    """Return ``(visible_text, reasoning)`` for text that may contain reasoning blocks.

    While streaming (``final=False``) a trailing fragment that could still
    grow into a delimiter is held back, so neither output ever has to shrink.
    An unterminated block counts as reasoning up to the end of the text.
    """
    visible: list[str] = []
    reasoning: list[str] = []
    rest = text
    while True:
        start = rest.find(open_tag)
        if start == -1:
            cut = len(rest) if final else partial_tag_start(rest, open_tag)
            visible.append(rest[:cut])
            break
        visible.append(rest[:start])
        inner = rest[start + len(open_tag):]
        end = inner.find(close_tag)
        if end == -1:
            cut = len(inner) if final else partial_tag_start(inner, close_tag)
            reasoning.append(inner[:cut])
            break
        reasoning.append(inner[:end])
        rest = inner[end + len(close_tag):]
    return "".join(visible), "".join(reasoning)


def extract_reasoning_wrapper(
    on_text: OnText,
    on_final_message: OnFinalMessage,
    think_tags: tuple[str, str],
) -> tuple[OnText, OnFinalMessage]:
    """Wrap a callback pair so tagged reasoning in the text lands in ``full_reasoning``.

    Intermediate deltas hold back a trailing partial delimiter; the final
    message always carries the complete text.
    """
    open_tag, close_tag = think_tags

    def new_on_text(delta: TextDelta) -> None:
        text, reasoning = split_reasoning(delta.full_text, open_tag, close_tag)
        on_text(
            delta.model_copy(
                update={"full_text": text, "full_reasoning": delta.full_reasoning + reasoning}
            )
        )

    def new_on_final_message(message: FinalMessage) -> None:
        text, reasoning = split_reasoning(message.full_text, open_tag, close_tag, final=True)
        on_final_message(
            message.model_copy(
                update={"full_text": text, "full_reasoning": message.full_reasoning + reasoning}
            )
        )

    return new_on_text, new_on_final_message
