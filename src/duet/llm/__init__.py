"""LLM abstraction layer — messages, the model protocol and litellm backend."""

from duet.llm.message import (
    Message,
    ContentPart,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolResultPart,
    TokenUsage,
)
from duet.llm.provider import (
    CallOptions,
    ChatModel,
    ChatResponse,
    ChatResponseChunk,
    LiteLLMModel,
    ModelConfig,
    ToolDefinition,
    create_model,
)
from duet.llm.streaming import collect_stream, generate

__all__ = [
    "Message",
    "ContentPart",
    "TextPart",
    "ThinkingPart",
    "ToolCallPart",
    "ToolResultPart",
    "TokenUsage",
    "CallOptions",
    "ChatModel",
    "ChatResponse",
    "ChatResponseChunk",
    "LiteLLMModel",
    "ModelConfig",
    "ToolDefinition",
    "create_model",
    "collect_stream",
    "generate",
]
