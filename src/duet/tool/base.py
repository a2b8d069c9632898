"""Base tool classes with Pydantic parameter validation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from duet.llm.message import ContentPart, TextPart
from duet.llm.provider import ToolDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ToolExecutionError(Exception):
    """A tool invocation failed.

    Raised by toolkits; the agent loop turns it into an ``Error: ...``
    observation for the model instead of aborting the reply.
    """

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message)


@dataclass
class ToolResponse:
    """Content returned by a toolkit for one tool invocation."""

    content: list[ContentPart] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> ToolResponse:
        return cls(content=[TextPart(text=text)])

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))


@dataclass
class ToolResult:
    """Base result from a tool execution."""

    output: str = ""
    is_error: bool = False


@dataclass
class ToolOk(ToolResult):
    """Successful tool result."""

    is_error: bool = False


@dataclass
class ToolError(ToolResult):
    """Failed tool result."""

    is_error: bool = True


class BaseTool(ABC, Generic[T]):
    """Base class for all tools.

    Each tool declares its parameters as a Pydantic model (the type
    parameter T):

        class EchoParams(BaseModel):
            text: str

        class EchoTool(BaseTool[EchoParams]):
            name = "echo"
            description = "Repeat the given text"
            param_model = EchoParams

            async def execute(self, params: EchoParams) -> ToolResult:
                return ToolOk(output=params.text)
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def __call__(self, arguments: dict[str, Any]) -> ToolResponse:
        """Validate arguments and execute.

        Raises:
            ToolExecutionError: on invalid parameters, an exception inside
                ``execute`` or an error result.
        """
        try:
            params = self.param_model.model_validate(arguments)
        except ValidationError as e:
            raise ToolExecutionError(self.name, f"Invalid parameters: {e}") from e

        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.error("Tool %s execution error: %s", self.name, e, exc_info=True)
            raise ToolExecutionError(self.name, f"{self.name} failed: {e}") from e

        if result.is_error:
            raise ToolExecutionError(self.name, result.output)

        return ToolResponse.from_text(result.output)

    @abstractmethod
    async def execute(self, params: T) -> ToolResult:
        """Execute the tool with validated parameters."""
        ...

    def to_definition(self) -> ToolDefinition:
        """Describe this tool for the model."""
        schema = self.param_model.model_json_schema()
        # Pydantic adds a title and $defs that models don't need
        schema.pop("title", None)
        schema.pop("$defs", None)
        return ToolDefinition(
            name=self.name, description=self.description, parameters=schema
        )
