"""Tool catalog: which tools an interaction mode exposes to the model."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from unified_stream.types import ChatMode, ToolInfo


class ToolSource(Protocol):
    def available_tools(
        self, chat_mode: ChatMode | None, mcp_tools: Iterable[ToolInfo] | None
    ) -> dict[str, ToolInfo]: ...


class ToolCatalog:
    """Built-in tools filtered by interaction mode, plus external (MCP) tools in agent mode.

    ``normal`` mode and a missing mode expose nothing. ``gather`` exposes the
    built-ins listed in ``gather_tools`` (read-only lookups). ``agent`` exposes
    every built-in tool followed by the external ones.
    """

    def __init__(
        self,
        builtin_tools: Iterable[ToolInfo] = (),
        *,
        gather_tools: Iterable[str] = (),
    ) -> None:
        self._builtin: dict[str, ToolInfo] = {tool.name: tool for tool in builtin_tools}
        self._gather = frozenset(gather_tools)

    def available_tools(
        self, chat_mode: ChatMode | None, mcp_tools: Iterable[ToolInfo] | None
    ) -> dict[str, ToolInfo]:
        if chat_mode == "gather":
            return {name: tool for name, tool in self._builtin.items() if name in self._gather}
        if chat_mode == "agent":
            tools = dict(self._builtin)
            for tool in mcp_tools or ():
                tools.setdefault(tool.name, tool)
            return tools
        return {}
