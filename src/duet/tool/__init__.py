"""Tool system — base classes and the toolkit registry."""

from duet.tool.base import (
    BaseTool,
    ToolError,
    ToolExecutionError,
    ToolOk,
    ToolResponse,
    ToolResult,
)
from duet.tool.registry import Toolkit, ToolProvider

__all__ = [
    "BaseTool",
    "ToolResult",
    "ToolOk",
    "ToolError",
    "ToolExecutionError",
    "ToolResponse",
    "Toolkit",
    "ToolProvider",
]
