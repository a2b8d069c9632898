"""Toolkit — register tools, advertise their schemas and dispatch calls."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from duet.llm.message import ToolCallPart
from duet.llm.provider import ToolDefinition
from duet.tool.base import BaseTool, ToolResponse

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolProvider(Protocol):
    """What an agent needs from a toolkit."""

    def get_schemas(self) -> list[ToolDefinition]:
        """Tool definitions in registration order."""
        ...

    async def call(self, tool_call: ToolCallPart) -> ToolResponse:
        """Execute one tool invocation. Raises on failure."""
        ...


class Toolkit:
    """Registry of available tools.

    Tools are registered by name; a toolkit can be narrowed to a subset
    for agents that should only see some of them.
    """

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool instance."""
        if tool.name in self._tools:
            logger.warning("Tool %s already registered, overwriting", tool.name)
        self._tools[tool.name] = tool

    def register_many(self, tools: list[BaseTool]) -> None:
        for tool in tools:
            self.register(tool)

    def remove(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def get_schemas(self) -> list[ToolDefinition]:
        return [t.to_definition() for t in self._tools.values()]

    def subset(self, names: list[str]) -> Toolkit:
        """Create a new toolkit with only the specified tools."""
        kit = Toolkit()
        for name in names:
            tool = self._tools.get(name)
            if tool:
                kit.register(tool)
            else:
                logger.warning("Tool %s not found in toolkit", name)
        return kit

    async def call(self, tool_call: ToolCallPart) -> ToolResponse:
        """Dispatch a tool call to the matching tool.

        An unknown tool name is reported back to the model as text rather
        than raised, so the model can pick another tool.
        """
        tool = self._tools.get(tool_call.name)
        if tool is None:
            return ToolResponse.from_text(
                f"Error: tool '{tool_call.name}' not found. "
                f"Available tools: {', '.join(self.names())}"
            )

        logger.debug("Dispatching tool %s (%s)", tool_call.name, tool_call.id)
        return await tool(tool_call.input)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
