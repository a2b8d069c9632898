"""Chat model abstraction and the litellm-backed implementation.

Agents only depend on the ``ChatModel`` protocol. ``LiteLLMModel`` is the
production implementation: litellm handles provider detection from the
model string prefix ("anthropic/...", "openai/...", "gemini/...") and reads
API keys from environment variables.

Streaming chunks from litellm have the OpenAI ``ChatCompletionChunk`` shape.
Text and reasoning deltas are forwarded as they arrive; tool call fragments
are buffered by index and emitted as complete ``ToolCallPart``s on the final
chunk, since partial JSON arguments are useless to the agent loop.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from duet.llm.message import (
    ContentPart,
    Message,
    TextPart,
    ThinkingPart,
    TokenUsage,
    ToolCallPart,
    generate_id,
    timestamp,
)

if TYPE_CHECKING:
    from litellm import CustomStreamWrapper, ModelResponse

logger = logging.getLogger(__name__)

ToolChoice = Literal["auto", "none", "required"]


@dataclass
class ToolDefinition:
    """A callable tool as advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_openai_spec(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass
class CallOptions:
    """Per-call options for a chat model."""

    tool_choice: ToolChoice | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop: list[str] | None = None


@dataclass
class ChatResponse:
    """A complete model response."""

    content: list[ContentPart] = field(default_factory=list)
    id: str = field(default_factory=generate_id)
    created_at: str = field(default_factory=timestamp)
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.content if isinstance(p, ToolCallPart)]

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))


@dataclass
class ChatResponseChunk:
    """One piece of a streamed response.

    ``response`` carries the partial content of this chunk (may be None for
    keep-alive chunks); ``is_last`` marks the end of the stream.
    """

    response: ChatResponse | None = None
    is_last: bool = False


@runtime_checkable
class ChatModel(Protocol):
    """Protocol for chat models consumed by agents."""

    @property
    def model_name(self) -> str: ...

    def is_streaming(self) -> bool: ...

    async def call(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> ChatResponse:
        """Submit a conversation and return the full response."""
        ...

    def stream(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> AsyncIterator[ChatResponseChunk]:
        """Submit a conversation and yield partial responses."""
        ...


# ---------------------------------------------------------------------------
# litellm model
# ---------------------------------------------------------------------------


@dataclass
class ModelConfig:
    """Configuration for a litellm-backed model."""

    model: str
    stream: bool = False
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class LiteLLMModel:
    """Chat model backed by ``litellm.acompletion``."""

    _config: ModelConfig

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def model_name(self) -> str:
        return self._config.model

    def is_streaming(self) -> bool:
        return self._config.stream

    async def call(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> ChatResponse:
        kwargs = self._build_kwargs(messages, options)
        response = await _acompletion_with_retry(**kwargs)
        return _response_from_litellm(response)

    async def stream(
        self, messages: list[Message], options: CallOptions | None = None
    ) -> AsyncIterator[ChatResponseChunk]:
        kwargs = self._build_kwargs(messages, options)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        response = await _acompletion_with_retry(**kwargs)

        accumulator = ToolCallAccumulator()
        usage = TokenUsage()
        finish_reason = None

        async for raw in response:  # type: ignore[union-attr]
            chunk = _chunk_to_dict(raw)
            if chunk.get("finish_reason"):
                finish_reason = chunk["finish_reason"]
            if "usage" in chunk:
                u = chunk["usage"]
                usage = TokenUsage(
                    input_tokens=u.get("prompt_tokens", 0),
                    output_tokens=u.get("completion_tokens", 0),
                    total_tokens=u.get("total_tokens", 0),
                )

            delta = chunk.get("delta", {})
            accumulator.feed(delta.get("tool_calls") or [])

            parts: list[ContentPart] = []
            if delta.get("reasoning_content"):
                parts.append(ThinkingPart(thinking=delta["reasoning_content"]))
            if delta.get("content"):
                parts.append(TextPart(text=delta["content"]))
            if parts:
                yield ChatResponseChunk(response=ChatResponse(content=parts))

        yield ChatResponseChunk(
            response=ChatResponse(
                content=list(accumulator.parts()),
                usage=usage,
                finish_reason=finish_reason,
            ),
            is_last=True,
        )

    def _build_kwargs(
        self, messages: list[Message], options: CallOptions | None
    ) -> dict[str, Any]:
        options = options or CallOptions()
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [m.to_openai_dict() for m in messages],
        }

        if options.tools:
            kwargs["tools"] = [t.to_openai_spec() for t in options.tools]
            if options.tool_choice:
                kwargs["tool_choice"] = options.tool_choice

        temperature = (
            options.temperature
            if options.temperature is not None
            else self._config.temperature
        )
        if temperature is not None:
            kwargs["temperature"] = temperature

        max_tokens = (
            options.max_tokens if options.max_tokens is not None else self._config.max_tokens
        )
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.stop:
            kwargs["stop"] = options.stop

        return kwargs


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> CustomStreamWrapper | ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


class ToolCallAccumulator:
    """Reassembles streamed OpenAI-style tool call deltas by index."""

    def __init__(self) -> None:
        self._buffers: dict[int, dict[str, str]] = {}

    def feed(self, tool_call_deltas: list[dict[str, Any]]) -> None:
        for tc_delta in tool_call_deltas:
            idx = tc_delta.get("index") or 0
            buf = self._buffers.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc_delta.get("id"):
                buf["id"] = tc_delta["id"]
            func = tc_delta.get("function") or {}
            if func.get("name"):
                buf["name"] = func["name"]
            if func.get("arguments"):
                buf["arguments"] += func["arguments"]

    def parts(self) -> list[ToolCallPart]:
        return [
            ToolCallPart(
                id=buf["id"] or generate_id(),
                name=buf["name"],
                input=_parse_arguments(buf["name"], buf["arguments"]),
            )
            for _idx, buf in sorted(self._buffers.items())
        ]


def _parse_arguments(name: str, arguments: str | None) -> dict[str, Any]:
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        logger.warning(
            "Failed to parse tool call arguments for %s: %s", name, arguments[:200]
        )
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _response_from_litellm(response: Any) -> ChatResponse:
    """Convert a non-streaming litellm ``ModelResponse``."""
    parts: list[ContentPart] = []
    finish_reason = None

    choices = getattr(response, "choices", None)
    if choices:
        choice = choices[0]
        finish_reason = getattr(choice, "finish_reason", None)
        msg = choice.message

        reasoning = getattr(msg, "reasoning_content", None)
        if reasoning:
            signature = ""
            for block in getattr(msg, "thinking_blocks", None) or []:
                if isinstance(block, dict) and block.get("signature"):
                    signature = block["signature"]
            parts.append(ThinkingPart(thinking=reasoning, signature=signature))

        if msg.content:
            parts.append(TextPart(text=msg.content))

        for tc in getattr(msg, "tool_calls", None) or []:
            parts.append(
                ToolCallPart(
                    id=tc.id or generate_id(),
                    name=tc.function.name,
                    input=_parse_arguments(tc.function.name, tc.function.arguments),
                )
            )

    usage = TokenUsage()
    raw_usage = getattr(response, "usage", None)
    if raw_usage:
        usage = TokenUsage(
            input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(raw_usage, "total_tokens", 0) or 0,
        )

    return ChatResponse(
        content=parts,
        id=getattr(response, "id", None) or generate_id(),
        usage=usage,
        finish_reason=finish_reason,
    )


def _chunk_to_dict(chunk: Any) -> dict[str, Any]:
    """Normalize a litellm stream chunk into a plain dict."""
    result: dict[str, Any] = {"finish_reason": None, "delta": {}}

    choices = getattr(chunk, "choices", None)
    if choices:
        choice = choices[0]
        delta = choice.delta
        result["finish_reason"] = choice.finish_reason

        if delta.content is not None:
            result["delta"]["content"] = delta.content

        reasoning = getattr(delta, "reasoning_content", None)
        if reasoning is not None:
            result["delta"]["reasoning_content"] = reasoning

        if delta.tool_calls:
            result["delta"]["tool_calls"] = [
                {
                    "index": tc.index,
                    "id": tc.id,
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    }
                    if tc.function
                    else None,
                }
                for tc in delta.tool_calls
            ]

    usage = getattr(chunk, "usage", None)
    if usage:
        result["usage"] = {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }

    return result


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_model(
    model: str,
    stream: bool = False,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> ChatModel:
    """Create a litellm-backed chat model.

    Args:
        model: Model name with provider prefix (e.g. "openai/gpt-4o",
               "anthropic/claude-sonnet-4-5-20250929").
        stream: Whether agents should consume this model as a stream.
        temperature: Default sampling temperature.
        max_tokens: Default max output tokens.
    """
    config = ModelConfig(
        model=model, stream=stream, temperature=temperature, max_tokens=max_tokens
    )
    return LiteLLMModel(_config=config)
