"""Context management — token counting and summarizing compaction.

When the token count of an agent's memory reaches a threshold, everything
but the most recent messages is handed to a model for a structured
continuation summary. The summary replaces the old messages as a single
system message, so memory ends up as ``[summary, *recent]``.

Compaction never fails because the summarizer is unreachable: a synthetic
summary is used instead and the error is logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from duet.context import Memory
from duet.llm.message import (
    Message,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolResultPart,
)
from duet.llm.provider import ChatModel
from duet.llm.streaming import generate

logger = logging.getLogger(__name__)

COMPACTION_SYSTEM = """\
You are a context compactor for a coding agent. You turn an unfinished \
working session into a continuation summary that the agent will resume from.
"""

COMPACTION_USER_TEMPLATE = """\
You have been working on a task but have not yet completed it.
Now write a continuation summary that will allow you to resume work \
efficiently in a future context window.

Previous conversation:
{conversation}

Generate a structured summary with the following fields:
- task_overview: The user's core request and success criteria
- current_state: What has been completed so far, files created/modified
- important_discoveries: Technical decisions, errors encountered and how they were resolved
- next_steps: Specific actions needed to complete the task
- context_to_preserve: User preferences, style requirements, promises made

Be concise and actionable.
"""

SUMMARY_MESSAGE_TEMPLATE = """\
<system-info>Here is a summary of your previous work
# Task Overview
{task_overview}

# Current State
{current_state}

# Important Discoveries
{important_discoveries}

# Next Steps
{next_steps}

# Context to Preserve
{context_to_preserve}
</system-info>"""

# Section keywords, matched case-insensitively against each reply line.
_SECTION_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("task_overview", ("task_overview", "task overview")),
    ("current_state", ("current_state", "current state")),
    ("important_discoveries", ("important_discoveries", "important discoveries")),
    ("next_steps", ("next_steps", "next steps")),
    ("context_to_preserve", ("context_to_preserve", "context to preserve")),
]


# ---------------------------------------------------------------------------
# Token counting
# ---------------------------------------------------------------------------


@runtime_checkable
class TokenCounter(Protocol):
    def count(self, text: str) -> int: ...

    def count_message(self, message: Message) -> int: ...


@dataclass
class SimpleTokenCounter:
    """Character-based token estimate (~4 characters per token)."""

    chars_per_token: float = 4.0

    def count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, int(len(text) / self.chars_per_token))

    def count_message(self, message: Message) -> int:
        total = self.count(message.name)
        for part in message.parts:
            total += self._count_part(part)
        for key, value in message.metadata.items():
            total += self.count(key) + self.count(str(value))
        return total

    def _count_part(self, part: Any) -> int:
        if isinstance(part, TextPart):
            return self.count(part.text)
        if isinstance(part, ThinkingPart):
            return self.count(part.thinking)
        if isinstance(part, ToolCallPart):
            total = self.count(part.name)
            for key, value in part.input.items():
                total += self.count(key) + self.count(str(value))
            return total
        if isinstance(part, ToolResultPart):
            return self.count(part.name) + sum(self._count_part(p) for p in part.output)
        return 0


@dataclass
class LiteLLMTokenCounter:
    """Token counts from the model's own tokenizer via litellm."""

    model: str

    def count(self, text: str) -> int:
        if not text:
            return 0
        import litellm

        return litellm.token_counter(model=self.model, text=text)

    def count_message(self, message: Message) -> int:
        import litellm

        return litellm.token_counter(
            model=self.model, messages=[message.to_openai_dict()]
        )


# ---------------------------------------------------------------------------
# Configuration and results
# ---------------------------------------------------------------------------


@dataclass
class CompactionConfig:
    """When and how to compact an agent's memory.

    Args:
        enabled: Master switch.
        token_counter: Counter used for the trigger predicate.
        trigger_threshold: Compact once memory holds at least this many tokens.
        keep_recent: Number of most recent messages kept verbatim.
        compaction_model: Model used for summaries; the agent's own model
            is used when unset.
    """

    enabled: bool = True
    token_counter: TokenCounter = field(default_factory=SimpleTokenCounter)
    trigger_threshold: int = 8000
    keep_recent: int = 3
    compaction_model: ChatModel | None = None

    def __post_init__(self) -> None:
        if self.keep_recent < 0:
            raise ValueError("keep_recent must be >= 0")
        if self.trigger_threshold <= 0:
            raise ValueError("trigger_threshold must be positive")


@dataclass(frozen=True)
class SummaryRecord:
    """Structured continuation summary produced by one compaction."""

    task_overview: str = ""
    current_state: str = ""
    important_discoveries: str = ""
    next_steps: str = ""
    context_to_preserve: str = ""

    def to_message(self) -> Message:
        text = SUMMARY_MESSAGE_TEMPLATE.format(
            task_overview=self.task_overview,
            current_state=self.current_state,
            important_discoveries=self.important_discoveries,
            next_steps=self.next_steps,
            context_to_preserve=self.context_to_preserve,
        )
        return Message(
            role="system",
            parts=[TextPart(text=text)],
            name="system",
            metadata={"compacted": True},
        )

    @classmethod
    def fallback(cls, message_count: int) -> SummaryRecord:
        return cls(
            task_overview="Previous task continuation",
            current_state=f"Compressed {message_count} messages",
            important_discoveries="See previous conversation for details",
            next_steps="Continue with the original task",
            context_to_preserve="",
        )


@dataclass
class CompactionResult:
    original_tokens: int
    compacted_tokens: int
    summary: SummaryRecord
    messages: list[Message]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def memory_token_count(memory: Memory, counter: TokenCounter) -> int:
    return sum(counter.count_message(m) for m in memory.get_messages())


def should_compact(memory: Memory | None, config: CompactionConfig | None) -> bool:
    """True when compaction is enabled and memory reached the threshold."""
    if config is None or not config.enabled or memory is None:
        return False
    if not memory.get_messages():
        return False
    return memory_token_count(memory, config.token_counter) >= config.trigger_threshold


async def compact_memory(
    memory: Memory, config: CompactionConfig, model: ChatModel
) -> CompactionResult | None:
    """Summarize old messages and rewrite ``memory`` in place.

    Returns None when compaction is not triggered or there is nothing old
    enough to compress (``len(memory) <= keep_recent``).
    """
    if not should_compact(memory, config):
        return None

    messages = list(memory.get_messages())
    if len(messages) <= config.keep_recent:
        logger.info("Memory too small to compact (%d messages)", len(messages))
        return None

    counter = config.token_counter
    original_tokens = sum(counter.count_message(m) for m in messages)

    split = len(messages) - config.keep_recent
    to_compress = messages[:split]
    recent = messages[split:]

    summary = await summarize_messages(
        to_compress, config.compaction_model or model
    )
    summary_msg = summary.to_message()

    compacted = [summary_msg, *recent]
    compacted_tokens = sum(counter.count_message(m) for m in compacted)

    memory.clear()
    for msg in compacted:
        await memory.add(msg)

    logger.info(
        "Compacted %d messages (%d -> %d tokens), kept %d recent",
        len(to_compress),
        original_tokens,
        compacted_tokens,
        len(recent),
    )

    return CompactionResult(
        original_tokens=original_tokens,
        compacted_tokens=compacted_tokens,
        summary=summary,
        messages=compacted,
    )


async def summarize_messages(messages: list[Message], model: ChatModel) -> SummaryRecord:
    """Ask ``model`` for a continuation summary of ``messages``."""
    transcript = render_transcript(messages)
    prompt = COMPACTION_USER_TEMPLATE.format(conversation=transcript)

    try:
        response = await generate(
            model, [Message.system(COMPACTION_SYSTEM), Message.user(prompt)]
        )
    except Exception as e:
        logger.warning(
            "Compaction model failed, using fallback summary: %s", e, exc_info=True
        )
        return SummaryRecord.fallback(len(messages))

    return parse_summary(response.text)


def parse_summary(text: str) -> SummaryRecord:
    """Split a free-text summary into the five record fields.

    A line naming a section switches the current field; following
    non-empty lines are joined with spaces into it. Fields that never
    appear get placeholders.
    """
    fields: dict[str, list[str]] = {name: [] for name, _ in _SECTION_MARKERS}
    current: str | None = None
    lines = text.split("\n")

    for line in lines:
        stripped = line.strip()
        lowered = stripped.lower()

        marker = _match_section(lowered)
        if marker is not None:
            current = marker
            fields[current] = []
            # "task_overview: Fix the parser" keeps the inline text
            inline = _inline_value(stripped)
            if inline:
                fields[current].append(inline)
            continue

        if current is not None and stripped:
            fields[current].append(stripped)

    joined = {name: " ".join(parts) for name, parts in fields.items()}
    return SummaryRecord(
        task_overview=joined["task_overview"] or "Continuing previous task",
        current_state=joined["current_state"] or f"Processed {len(lines)} lines",
        important_discoveries=joined["important_discoveries"] or "N/A",
        next_steps=joined["next_steps"] or "Continue task execution",
        context_to_preserve=joined["context_to_preserve"],
    )


def _match_section(lowered_line: str) -> str | None:
    for name, keywords in _SECTION_MARKERS:
        if any(k in lowered_line for k in keywords):
            return name
    return None


def _inline_value(line: str) -> str:
    _, sep, rest = line.partition(":")
    if not sep:
        return ""
    return rest.strip().strip("*").strip()


def render_transcript(messages: list[Message], max_chars: int = 50000) -> str:
    """Render messages as readable text for the summarizer.

    Thinking is skipped; long texts and tool outputs are clipped.
    """
    lines: list[str] = []
    total_chars = 0

    for msg in messages:
        if total_chars >= max_chars:
            lines.append("[... later messages omitted for brevity]")
            break

        prefix = f"[{msg.timestamp}] {msg.role}"

        for part in msg.parts:
            if isinstance(part, TextPart):
                text = part.text[:2000]
                lines.append(f"{prefix}: {text}")
                total_chars += len(text)

            elif isinstance(part, ToolCallPart):
                args = part.arguments[:200]
                lines.append(f"{prefix} tool call: {part.name}({args})")
                total_chars += len(part.name) + len(args)

            elif isinstance(part, ToolResultPart):
                content = part.text
                if len(content) > 1000:
                    content = content[:1000] + f"... [{len(part.text)} chars total]"
                error_tag = " [ERROR]" if part.is_error else ""
                lines.append(f"{prefix} tool result{error_tag} ({part.name}): {content}")
                total_chars += len(content)

    return "\n".join(lines)
