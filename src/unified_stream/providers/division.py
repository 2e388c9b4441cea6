"""Division: a remote task-orchestration service reached over plain HTTP JSON.

The service either answers a single prompt with a chosen model (direct
mode) or splits the request into role-tagged tasks that are generated one
by one (orchestration mode). Progress is relayed to the caller as
cumulative markdown text, so from the caller's side this is just another
streaming provider.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field

from unified_stream.accumulator import StreamAccumulator
from unified_stream.errors import ConfigurationError
from unified_stream.finalize import ResponseSink, run_guarded
from unified_stream.providers.base import ProviderContext, message_text_parts, open_sink
from unified_stream.types import ChatMode, ChatRequest, FinalMessage, Message, StreamCallbacks

_logger = logging.getLogger(__name__)

ORCHESTRATOR_MODEL = "division-orchestrator"
DEFAULT_PROJECT_ID = "demo-project-001"
FALLBACK_MODEL = "gpt-5.2"
API_KEY_ENV = "DIVISION_API_KEY"

# retired leader models the service may still report
_LEADER_ALIASES = {
    "gpt-4o": "gpt-5.2",
    "gpt-4o-2024-05-13": "gpt-5.2",
    "gpt-4o-2024-08-06": "gpt-5.2",
    "gemini-2.5-flash": "gemini-3-flash",
    "gemini-1.5-flash": "gemini-3-flash",
    "claude-3-5-sonnet-20241022": "claude-sonnet-4.5",
}

_ROLE_MODELS = {
    "coding": "claude-sonnet-4.5",
    "coder": "claude-sonnet-4.5",
    "search": "sonar-pro",
    "research": "sonar-pro",
    "planning": "gemini-3-flash",
    "planner": "gemini-3-flash",
    "design": "gemini-3-flash",
}

_ROLE_MODES = {
    "coding": "function_calling",
    "coder": "function_calling",
    "search": "search",
    "research": "search",
}


class DivisionTask(BaseModel):
    id: str
    role: str = ""
    title: str = ""
    description: str = ""
    reason: str | None = None
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    status: str = ""


class DivisionLeader(BaseModel):
    provider: str = ""
    model: str = ""


class TasksCreateResponse(BaseModel):
    session_id: str = Field("", alias="sessionId")
    leader: DivisionLeader = Field(default_factory=DivisionLeader)
    tasks: list[DivisionTask] = Field(default_factory=list)


@dataclass(frozen=True)
class GenerateResult:
    output: str = ""
    error: str | None = None
    duration_ms: int | None = None


def build_prompt(messages: list[Message], system_message: str | None = None) -> str:
    """Flatten the history into one prompt: a ``[System]`` paragraph, then ``[role] text`` lines."""
    lines: list[str] = []
    prompt = f"[System] {system_message}\n\n" if system_message else ""
    for message in messages:
        lines.extend(f"[{message.role}] {text}" for text in message_text_parts(message))
    prompt += "".join(f"{line}\n" for line in lines)
    return prompt.strip()


def division_mode(chat_mode: ChatMode | None) -> str:
    if chat_mode == "agent":
        return "function_calling"
    if chat_mode == "gather":
        return "search"
    return "chat"


def model_for_role(role: str) -> str:
    return _ROLE_MODELS.get(role, FALLBACK_MODEL)


def mode_for_role(role: str) -> str:
    return _ROLE_MODES.get(role, "chat")


def close_code_fences(text: str) -> str:
    """Close a trailing unterminated code fence so the rest of the page renders."""
    if text.count("```") % 2:
        return text + "\n```\n"
    return text


def task_prompt(task: DivisionTask, prompt: str) -> str:
    return (
        f"You are a {task.role} specialist. Complete the following task based on the "
        "original user request.\n\n"
        f"Original user request:\n{prompt}\n\n"
        f"Your specific task:\n{task.title}\n\n"
        f"Detailed instructions:\n{task.description}\n\n"
        "Provide a thorough and complete response. Output all code files with their paths."
    )


def _headers() -> dict[str, str]:
    api_key = os.environ.get(API_KEY_ENV)
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


async def generate(client: httpx.AsyncClient, model: str, prompt: str, mode: str | None = None) -> GenerateResult:
    """POST ``/api/generate``. Failures come back as ``GenerateResult.error`` rather than raising."""
    body: dict[str, Any] = {"input": prompt, "provider": model, "model": model}
    if mode:
        body["mode"] = mode
    try:
        response = await client.post("/api/generate", json=body)
        if not response.text:
            return GenerateResult(error="Empty response body")
        data = response.json()
    except (httpx.HTTPError, json.JSONDecodeError) as exc:
        return GenerateResult(error=str(exc) or type(exc).__name__)
    if not isinstance(data, dict):
        return GenerateResult(error="Unexpected response body")
    if data.get("status") == "error":
        return GenerateResult(error=data.get("error") or "Unknown error", duration_ms=data.get("durationMs"))
    return GenerateResult(output=data.get("output") or "", duration_ms=data.get("durationMs"))


async def _patch_task(client: httpx.AsyncClient, task_id: str, status: str, output: str) -> None:
    try:
        response = await client.patch(f"/api/tasks/{task_id}", json={"status": status, "output": output})
        response.raise_for_status()
    except httpx.HTTPError as exc:
        _logger.warning("Could not mark Division task %s as %s: %s", task_id, status, exc)


class _Relay:
    """Appends progress text and forwards the cumulative snapshot."""

    def __init__(self, sink: ResponseSink) -> None:
        self._sink = sink
        self._acc = StreamAccumulator()

    def __call__(self, text: str) -> None:
        self._acc.add_text(text)
        self._sink.text(self._acc.snapshot())

    def final_message(self) -> FinalMessage:
        return FinalMessage(full_text=self._acc.full_text)

    def result(self, result: GenerateResult) -> None:
        if result.error:
            self(f"**Error:** {result.error}\n\n")
            return
        duration = f" *({result.duration_ms}ms)*" if result.duration_ms else ""
        self(f"**Generated**{duration}\n\n")
        self(f"{close_code_fences(result.output)}\n\n")


def _current_input(request: ChatRequest, prompt: str) -> tuple[str, list[dict[str, str]]]:
    history = [
        {"role": "assistant" if m.role == "assistant" else "user", "content": "".join(message_text_parts(m))}
        for m in request.messages[:-1]
        if m.role not in ("system", "developer")
    ]
    last = "".join(message_text_parts(request.messages[-1])) if request.messages else ""
    return (last if last.strip() else prompt), history


async def _run_direct(client: httpx.AsyncClient, relay: _Relay, request: ChatRequest, prompt: str) -> None:
    relay(f"## Direct Model: `{request.model}`\n")
    relay("Sending request to Division `/api/generate`...\n\n")
    relay.result(await generate(client, request.model, prompt, division_mode(request.chat_mode)))


async def _run_orchestration(client: httpx.AsyncClient, relay: _Relay, request: ChatRequest, prompt: str) -> None:
    mode = division_mode(request.chat_mode)
    current_input, history = _current_input(request, prompt)

    relay("## Phase 1: Task Generation\n")
    relay("Sending request to Division `/api/tasks/create`...\n\n")
    response = await client.post(
        "/api/tasks/create",
        json={
            "projectId": request.project_id or DEFAULT_PROJECT_ID,
            "mode": mode,
            "input": current_input,
            "chatHistory": history,
        },
    )
    if response.is_error:
        _logger.info("Division /api/tasks/create returned HTTP %s", response.status_code)
        relay(f"**Error:** HTTP {response.status_code} from /api/tasks/create\n")
        relay(f"```\n{response.text[:300]}\n```\n\n")
    if not response.text:
        relay("**Error:** Empty response from /api/tasks/create\n")
        return

    data = response.json()
    if isinstance(data, dict) and data.get("error"):
        relay(f"**Error:** {data['error']}\n\n")
        relay("---\n\n## Fallback: Single Agent Response\n\n")
        fallback = await generate(client, FALLBACK_MODEL, prompt, mode)
        relay(f"**Error:** {fallback.error}\n" if fallback.error else f"{fallback.output}\n")
        return

    created = TasksCreateResponse.model_validate(data)
    leader = _LEADER_ALIASES.get(created.leader.model, created.leader.model)
    relay(f"**Leader:** `{leader}`\n")
    relay(f"**Session:** `{created.session_id}`\n")
    relay(f"**Tasks:** {len(created.tasks)}\n\n")

    relay("---\n\n## Phase 2: Task Classification\n\n")
    relay("| # | Role | Title | Description |\n|---|------|-------|-------------|\n")
    for number, task in enumerate(created.tasks, start=1):
        relay(f"| {number} | {task.role} | {task.title} | {task.description} |\n")
    relay("\n---\n\n## Phase 3: Task Execution\n\n")

    for number, task in enumerate(created.tasks, start=1):
        relay(f"### {number}. {task.role}: {task.title}\n")
        relay(f"**Description:** {task.description}\n")
        if task.reason:
            relay(f"**Reason:** {task.reason}\n")
        relay("\nRunning on Division...\n\n")

        result = await generate(client, model_for_role(task.role), task_prompt(task, prompt), mode_for_role(task.role))
        relay.result(result)
        if result.error:
            await _patch_task(client, task.id, "failed", result.error)
        else:
            await _patch_task(client, task.id, "completed", result.output)

    relay(f"---\n\n**All {len(created.tasks)} tasks complete** (Session: `{created.session_id}`)\n")


async def send_chat(ctx: ProviderContext, request: ChatRequest, callbacks: StreamCallbacks) -> None:
    provider = request.provider
    sink = open_sink(provider, callbacks)

    async def body() -> None:
        sink.aborter.attach_current_task()
        relay = _Relay(sink)
        prompt = build_prompt(request.messages, request.separate_system_message)
        endpoint = ctx.settings.get(provider).endpoint
        if not endpoint:
            raise ConfigurationError("Division endpoint was empty.")
        _logger.info("Sending Division request (model %s)", request.model)

        async with ctx.http_client(endpoint, headers=_headers()) as client:
            if request.model and request.model != ORCHESTRATOR_MODEL:
                await _run_direct(client, relay, request, prompt)
            else:
                await _run_orchestration(client, relay, request, prompt)
        sink.final(relay.final_message())

    await run_guarded(sink, body)
