"""Shared fakes: a scripted chat model and a few tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
from pydantic import BaseModel, Field

from duet.llm.message import ContentPart, Message, TextPart, ToolCallPart
from duet.llm.provider import (
    CallOptions,
    ChatResponse,
    ChatResponseChunk,
    ToolDefinition,
)
from duet.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from duet.tool.registry import Toolkit


def text_response(text: str) -> ChatResponse:
    return ChatResponse(content=[TextPart(text=text)])


def tool_response(*calls: tuple[str, dict[str, Any]], text: str = "") -> ChatResponse:
    parts: list[ContentPart] = [TextPart(text=text)] if text else []
    for i, (name, args) in enumerate(calls):
        parts.append(ToolCallPart(id=f"call_{name}_{i}", name=name, input=args))
    return ChatResponse(content=parts)


class ScriptedModel:
    """ChatModel that replays canned responses and records every call.

    Entries may be ChatResponse objects or exceptions to raise. Once the
    script runs out the last entry is repeated.
    """

    def __init__(
        self,
        responses: list[ChatResponse | Exception],
        streaming: bool = False,
        name: str = "scripted/model",
    ) -> None:
        self._responses = list(responses)
        self._streaming = streaming
        self._name = name
        self.calls: list[tuple[list[Message], CallOptions | None]] = []

    @property
    def model_name(self) -> str:
        return self._name

    def is_streaming(self) -> bool:
        return self._streaming

    def _next(self, messages: list[Message], options: CallOptions | None) -> ChatResponse:
        self.calls.append((list(messages), options))
        idx = min(len(self.calls) - 1, len(self._responses) - 1)
        entry = self._responses[idx]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def call(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> ChatResponse:
        return self._next(messages, options)

    async def stream(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> AsyncIterator[ChatResponseChunk]:
        response = self._next(messages, options)
        calls = [p for p in response.content if isinstance(p, ToolCallPart)]
        for part in response.content:
            if isinstance(part, TextPart):
                # Split text to exercise fragment merging.
                half = len(part.text) // 2
                for piece in (part.text[:half], part.text[half:]):
                    if piece:
                        yield ChatResponseChunk(
                            response=ChatResponse(content=[TextPart(text=piece)])
                        )
        yield ChatResponseChunk(response=ChatResponse(content=calls), is_last=True)
        # Anything after the last chunk must be ignored.
        yield ChatResponseChunk(
            response=ChatResponse(content=[TextPart(text="AFTER-LAST")])
        )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class EchoParams(BaseModel):
    text: str = Field(description="Text to echo back")


class EchoTool(BaseTool[EchoParams]):
    name = "echo"
    description = "Echo the given text"
    param_model = EchoParams

    async def execute(self, params: EchoParams) -> ToolResult:
        return ToolOk(output=f"echo: {params.text}")


class EmptyParams(BaseModel):
    pass


class BrokenTool(BaseTool[EmptyParams]):
    name = "broken"
    description = "Always raises"
    param_model = EmptyParams

    async def execute(self, params: EmptyParams) -> ToolResult:
        raise RuntimeError("disk on fire")


class RefusingTool(BaseTool[EmptyParams]):
    name = "refuse"
    description = "Always returns an error result"
    param_model = EmptyParams

    async def execute(self, params: EmptyParams) -> ToolResult:
        return ToolError(output="permission denied")


class ExplodingToolkit:
    """ToolProvider whose every call raises."""

    def __init__(self) -> None:
        self.calls: list[ToolCallPart] = []

    def get_schemas(self) -> list[ToolDefinition]:
        return [ToolDefinition(name="explode", description="Always fails")]

    async def call(self, tool_call: ToolCallPart) -> Any:
        self.calls.append(tool_call)
        raise RuntimeError(f"{tool_call.name} exploded")


@pytest.fixture
def toolkit() -> Toolkit:
    kit = Toolkit()
    kit.register_many([EchoTool(), BrokenTool(), RefusingTool()])
    return kit
