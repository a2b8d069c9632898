"""Stream consumption and the single model-call primitive used by agents."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Callable

from duet.llm.message import ContentPart, Message, TextPart, ThinkingPart, TokenUsage
from duet.llm.provider import CallOptions, ChatModel, ChatResponse, ChatResponseChunk

logger = logging.getLogger(__name__)

OnPart = Callable[[ContentPart], None] | None


async def collect_stream(
    chunks: AsyncIterator[ChatResponseChunk], on_part: OnPart = None
) -> ChatResponse:
    """Drain a chunk stream into one response.

    Content parts are concatenated in arrival order until a chunk flagged
    ``is_last`` is seen (or the iterator is exhausted). Adjacent text and
    thinking fragments are merged so the result looks like a non-streamed
    response.
    """
    content: list[ContentPart] = []
    usage = TokenUsage()
    finish_reason = None

    async for chunk in chunks:
        if chunk.response is not None:
            for part in chunk.response.content:
                _append_merged(content, part)
                if on_part:
                    on_part(part)
                    # Give listeners a chance to render between fragments.
                    await asyncio.sleep(0)
            if chunk.response.usage.total_tokens:
                usage = chunk.response.usage
            if chunk.response.finish_reason:
                finish_reason = chunk.response.finish_reason
        if chunk.is_last:
            break

    return ChatResponse(content=content, usage=usage, finish_reason=finish_reason)


def _append_merged(content: list[ContentPart], part: ContentPart) -> None:
    last = content[-1] if content else None
    if isinstance(part, TextPart) and isinstance(last, TextPart):
        content[-1] = TextPart(text=last.text + part.text)
    elif isinstance(part, ThinkingPart) and isinstance(last, ThinkingPart):
        content[-1] = ThinkingPart(
            thinking=last.thinking + part.thinking,
            signature=part.signature or last.signature,
        )
    else:
        content.append(part)


async def generate(
    model: ChatModel,
    messages: list[Message],
    options: CallOptions | None = None,
    on_part: OnPart = None,
) -> ChatResponse:
    """Make one model call, consuming the stream if the model streams.

    Streaming only changes how the call is consumed; callers always get a
    complete ``ChatResponse``.
    """
    if model.is_streaming():
        logger.debug("Streaming response from %s", model.model_name)
        return await collect_stream(model.stream(messages, options), on_part=on_part)
    return await model.call(messages, options)
