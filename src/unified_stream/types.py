"""Provider-agnostic request, delta and result models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from unified_stream.errors import ErrorKind

ChatMode = Literal["normal", "gather", "agent"]
ReasoningType = Literal["budget", "effort"]


class Message(BaseModel):
    """Single chat message; content is plain text or a list of content parts."""

    role: Literal["system", "developer", "user", "assistant", "tool"]
    content: str | list[dict[str, Any]]


class ToolInfo(BaseModel):
    """Internal tool description; every parameter is a string at the schema level."""

    name: str
    description: str = ""
    params: dict[str, str] = Field(default_factory=dict)


class ReasoningSelection(BaseModel):
    """The reasoning setting the user picked for this request."""

    type: ReasoningType
    enabled: bool = True
    budget: int | None = None
    effort: str | None = None


class ChatRequest(BaseModel):
    """Normalized chat request shared by all providers."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    messages: list[Message]
    separate_system_message: str | None = None
    chat_mode: ChatMode | None = None
    mcp_tools: list[ToolInfo] = Field(default_factory=list)
    reasoning: ReasoningSelection | None = None
    # remote orchestration only
    project_id: str | None = None

    @property
    def reasoning_enabled(self) -> bool:
        return self.reasoning is not None and self.reasoning.enabled


class FIMRequest(BaseModel):
    """Fill-in-middle request: prefix and suffix, no history."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    prefix: str
    suffix: str
    stop_tokens: list[str] = Field(default_factory=list)


class ToolCall(BaseModel):
    """A tool call surfaced to the host, never executed here."""

    id: str
    name: str
    raw_params: dict[str, Any] = Field(default_factory=dict)
    done_params: list[str] = Field(default_factory=list)
    is_done: bool = False


class TextDelta(BaseModel):
    """Cumulative snapshot of everything streamed so far."""

    full_text: str = ""
    full_reasoning: str = ""
    tool_call: ToolCall | None = None


class FinalMessage(BaseModel):
    """Terminal result of a successful (or cancelled) request."""

    full_text: str = ""
    full_reasoning: str = ""
    # structured thinking / redacted_thinking blocks, Anthropic-style providers only
    provider_reasoning: list[dict[str, Any]] | None = None
    tool_call: ToolCall | None = None


class LLMError(BaseModel):
    """Error delivered through ``on_error``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    message: str
    kind: ErrorKind = ErrorKind.TRANSPORT
    full_error: BaseException | None = None


class ModelInfo(BaseModel):
    """One entry from a provider's model listing; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: str = ""
    name: str = ""


OnText = Callable[[TextDelta], None]
OnFinalMessage = Callable[[FinalMessage], None]
OnError = Callable[[LLMError], None]
Aborter = Callable[[], None]
SetAborter = Callable[[Aborter], None]


def _ignore_aborter(aborter: Aborter) -> None:
    return None


@dataclass
class StreamCallbacks:
    """The caller's side of a chat or fill-in-middle request."""

    on_text: OnText
    on_final_message: OnFinalMessage
    on_error: OnError
    set_aborter: SetAborter = _ignore_aborter


@dataclass
class ListModelsCallbacks:
    """The caller's side of a model listing request."""

    on_success: Callable[[list[ModelInfo]], None]
    on_error: Callable[[LLMError], None]
