"""Message types shared by agents, models and toolkits."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


def generate_id() -> str:
    return uuid.uuid4().hex


def timestamp() -> str:
    """Wall-clock timestamp with millisecond precision."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


@dataclass
class TextPart:
    """A text content part."""

    type: Literal["text"] = "text"
    text: str = ""


@dataclass
class ThinkingPart:
    """A thinking/reasoning content part.

    The ``signature`` field is only populated by providers that require
    thinking blocks to be echoed back verbatim in multi-turn conversations.
    """

    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str = ""


@dataclass
class ToolCallPart:
    """A tool invocation requested by the model."""

    type: Literal["tool_call"] = "tool_call"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)

    @property
    def arguments(self) -> str:
        """Input serialized as a JSON string (OpenAI wire format)."""
        return json.dumps(self.input, ensure_ascii=False, default=str)


@dataclass
class ToolResultPart:
    """The output of a tool invocation, wrapped for the model."""

    type: Literal["tool_result"] = "tool_result"
    id: str = ""
    name: str = ""
    output: list[ContentPart] = field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.output if isinstance(p, TextPart))


ContentPart = TextPart | ThinkingPart | ToolCallPart | ToolResultPart


@dataclass
class TokenUsage:
    """Token usage stats from an LLM call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class Message:
    """A conversation message with typed content parts.

    Messages stored in memory are treated as immutable: agents append new
    messages or replace the whole history, they never edit ``parts`` of a
    stored message.
    """

    role: Role
    parts: list[ContentPart] = field(default_factory=list)
    name: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=timestamp)
    id: str = field(default_factory=generate_id)

    @property
    def text(self) -> str:
        """Get text content, one line per text part."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def thinking(self) -> str:
        return "".join(p.thinking for p in self.parts if isinstance(p, ThinkingPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        """Get all tool invocation requests in emission order."""
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    @property
    def has_tool_calls(self) -> bool:
        return any(isinstance(p, ToolCallPart) for p in self.parts)

    # --- Convenience constructors ---

    @classmethod
    def system(cls, text: str, name: str = "system") -> Message:
        return cls(role="system", parts=[TextPart(text=text)], name=name)

    @classmethod
    def user(cls, text: str, name: str = "user") -> Message:
        return cls(role="user", parts=[TextPart(text=text)], name=name)

    @classmethod
    def assistant(
        cls,
        text: str = "",
        tool_calls: list[ToolCallPart] | None = None,
        name: str = "assistant",
    ) -> Message:
        parts: list[ContentPart] = []
        if text:
            parts.append(TextPart(text=text))
        if tool_calls:
            parts.extend(tool_calls)
        return cls(role="assistant", parts=parts, name=name)

    def to_openai_dict(self) -> dict[str, Any]:
        """Convert to OpenAI chat format.

        A message carrying a tool result becomes a ``tool`` role message so
        that it pairs with the preceding assistant tool call.
        """
        results = self.tool_results
        if results:
            p = results[0]
            return {"role": "tool", "tool_call_id": p.id, "content": p.text}

        if self.role == "assistant":
            result: dict[str, Any] = {"role": "assistant"}
            text = self.text
            result["content"] = text if text else None

            calls = self.tool_calls
            if calls:
                result["tool_calls"] = [
                    {
                        "id": p.id,
                        "type": "function",
                        "function": {"name": p.name, "arguments": p.arguments},
                    }
                    for p in calls
                ]

            thinking_parts = [p for p in self.parts if isinstance(p, ThinkingPart)]
            blocks = [
                {"type": "thinking", "thinking": p.thinking, "signature": p.signature}
                for p in thinking_parts
                if p.thinking
            ]
            if blocks:
                result["thinking_blocks"] = blocks
                result["reasoning_content"] = self.thinking

            return result

        return {"role": self.role, "content": self.text}

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict view of the message, used for state snapshots."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "content": [_part_to_dict(p) for p in self.parts],
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        content = data.get("content", [])
        if isinstance(content, str):
            parts: list[ContentPart] = [TextPart(text=content)]
        else:
            parts = [_dict_to_part(d) for d in content]
        return cls(
            role=data["role"],
            parts=parts,
            name=data.get("name", ""),
            metadata=dict(data.get("metadata") or {}),
            timestamp=data.get("timestamp") or timestamp(),
            id=data.get("id") or generate_id(),
        )

    def __str__(self) -> str:
        return f"Message(id={self.id!r}, name={self.name!r}, role={self.role!r})"


def _part_to_dict(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ThinkingPart):
        return {"type": "thinking", "thinking": part.thinking, "signature": part.signature}
    if isinstance(part, ToolCallPart):
        return {"type": "tool_call", "id": part.id, "name": part.name, "input": part.input}
    return {
        "type": "tool_result",
        "id": part.id,
        "name": part.name,
        "output": [_part_to_dict(p) for p in part.output],
        "is_error": part.is_error,
    }


def _dict_to_part(data: dict[str, Any]) -> ContentPart:
    kind = data.get("type", "text")
    if kind == "thinking":
        return ThinkingPart(
            thinking=data.get("thinking", ""), signature=data.get("signature", "")
        )
    if kind == "tool_call":
        return ToolCallPart(
            id=data.get("id", ""), name=data.get("name", ""), input=data.get("input") or {}
        )
    if kind == "tool_result":
        return ToolResultPart(
            id=data.get("id", ""),
            name=data.get("name", ""),
            output=[_dict_to_part(d) for d in data.get("output", [])],
            is_error=data.get("is_error", False),
        )
    if kind != "text":
        logger.warning("Unknown content part type %r, treating as text", kind)
    return TextPart(text=data.get("text", ""))
