"""The reasoning-acting loop — call the model, run requested tools, repeat."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from duet.agent.base import AgentBase
from duet.agent.hooks import HookType
from duet.context import Memory
from duet.context.management import CompactionConfig, CompactionResult, compact_memory
from duet.llm.message import ContentPart, Message, TextPart, ToolCallPart, ToolResultPart
from duet.llm.provider import CallOptions, ChatModel, ChatResponse, ToolDefinition
from duet.llm.streaming import generate
from duet.tool.registry import ToolProvider

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "Empty response from model"


class ModelCallError(Exception):
    """The model call of a reply failed. The cause is chained."""

    def __init__(self, agent_name: str, iteration: int, cause: BaseException) -> None:
        self.agent_name = agent_name
        self.iteration = iteration
        super().__init__(f"iteration {iteration}: {cause}")


class TurnOutcome(enum.Enum):
    """Why did the last reply end?"""

    COMPLETE = "complete"  # Model answered without tool calls
    MAX_ITERATIONS = "max_iterations"  # Hit the iteration budget


@dataclass
class ReActConfig:
    """Everything a ReActAgent needs.

    Args:
        name: Agent name, also used as the ``name`` of its messages.
        system_prompt: Base system prompt. A tool catalogue is appended
            when a toolkit with tools is attached.
        model: Model collaborator.
        toolkit: Optional tool provider. Without tools every reply is a
            single model call.
        memory: Optional message store. Without memory every reply sees
            only the system prompt and its input.
        max_iterations: Upper bound on model calls per reply.
        compaction: Optional compaction policy applied before each reply.
    """

    name: str
    model: ChatModel
    system_prompt: str = ""
    toolkit: ToolProvider | None = None
    memory: Memory | None = None
    max_iterations: int = 10
    temperature: float | None = None
    max_tokens: int | None = None
    compaction: CompactionConfig | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("agent name must not be empty")
        if self.model is None:
            raise ValueError("agent model is required")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")


class ReActAgent(AgentBase):
    """Agent driving the think → call tools → observe cycle.

    Each ``reply`` is one sequential call chain: tools run one at a time in
    the order the model requested them, and a failing tool becomes an
    ``Error: ...`` observation for the model instead of an exception.
    """

    def __init__(self, config: ReActConfig) -> None:
        super().__init__(config.name, config.system_prompt)
        self._config = config
        self._last_response: ChatResponse | None = None
        self._last_iterations = 0
        self._last_outcome: TurnOutcome | None = None
        self._last_transcript: list[Message] = []

    # --- Accessors ---

    @property
    def config(self) -> ReActConfig:
        return self._config

    @property
    def model(self) -> ChatModel:
        return self._config.model

    @property
    def toolkit(self) -> ToolProvider | None:
        return self._config.toolkit

    @property
    def memory(self) -> Memory | None:
        return self._config.memory

    @property
    def last_response(self) -> ChatResponse | None:
        return self._last_response

    @property
    def last_iterations(self) -> int:
        """Model calls made by the most recent reply."""
        return self._last_iterations

    @property
    def last_outcome(self) -> TurnOutcome | None:
        return self._last_outcome

    @property
    def last_transcript(self) -> list[Message]:
        """Working context of the most recent reply, including tool traffic."""
        return list(self._last_transcript)

    def clear_memory(self) -> None:
        if self._config.memory is not None:
            self._config.memory.clear()

    # --- Reply ---

    async def reply(self, message: Message) -> Message:
        kwargs = await self.hooks.run_pre(
            HookType.PRE_REPLY, message, {"message": message}
        )

        if self._config.compaction is not None:
            await self.compact_memory()

        memory = self._config.memory
        if memory is not None:
            await memory.add(message)

        context = self._build_context(message)
        self._last_iterations = 0

        schemas = self._tool_schemas()
        if schemas:
            response = await self._react_loop(context, schemas)
        else:
            result = await self._call_model(context, self._call_options(), 1)
            self._last_outcome = TurnOutcome.COMPLETE
            response = self._response_message(result.content)

        self._last_transcript = context

        if memory is not None:
            await memory.add(response)

        return await self._finish_reply(message, kwargs, response)

    async def _react_loop(
        self, context: list[Message], schemas: list[ToolDefinition]
    ) -> Message:
        options = self._call_options(tools=schemas)
        collected: list[ContentPart] = []
        max_iterations = self._config.max_iterations

        for iteration in range(1, max_iterations + 1):
            logger.debug("Agent %s: iteration %d/%d", self.name, iteration, max_iterations)
            result = await self._call_model(context, options, iteration)
            collected.extend(result.content)

            calls = result.tool_calls
            if not calls:
                logger.info(
                    "Agent %s completed after %d iteration(s)", self.name, iteration
                )
                self._last_outcome = TurnOutcome.COMPLETE
                return self._response_message(result.content)

            await self.print(
                Message(role="assistant", parts=list(result.content), name=self.name)
            )

            for call in calls:
                context.append(Message(role="assistant", parts=[call], name=self.name))
                observation = await self._execute_tool(call)
                await self.print(observation)
                context.append(observation)

        logger.warning("Agent %s hit max iterations (%d)", self.name, max_iterations)
        self._last_outcome = TurnOutcome.MAX_ITERATIONS
        return Message(role="assistant", parts=collected, name=self.name)

    async def _execute_tool(self, call: ToolCallPart) -> Message:
        """Run one tool call and wrap the outcome as a user-role observation."""
        toolkit = self._config.toolkit
        assert toolkit is not None
        try:
            response = await toolkit.call(call)
        except Exception as e:
            logger.warning("Agent %s: tool %s failed: %s", self.name, call.name, e)
            return Message(
                role="user",
                parts=[
                    ToolResultPart(
                        id=call.id,
                        name=call.name,
                        output=[TextPart(text=f"Error: {e}")],
                        is_error=True,
                    )
                ],
                name=call.name,
            )

        return Message(
            role="user",
            parts=[
                ToolResultPart(id=call.id, name=call.name, output=list(response.content))
            ],
            name=call.name,
        )

    async def _call_model(
        self, context: list[Message], options: CallOptions, iteration: int
    ) -> ChatResponse:
        self._last_iterations = iteration
        try:
            result = await generate(self._config.model, context, options)
        except Exception as e:
            logger.error(
                "Agent %s: model call failed at iteration %d: %s", self.name, iteration, e
            )
            raise ModelCallError(self.name, iteration, e) from e
        self._last_response = result
        return result

    def _call_options(self, tools: list[ToolDefinition] | None = None) -> CallOptions:
        options = CallOptions(
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        if tools:
            options.tools = tools
            options.tool_choice = "auto"
        return options

    def _response_message(self, content: list[ContentPart]) -> Message:
        parts = list(content) or [TextPart(text=EMPTY_RESPONSE_TEXT)]
        return Message(role="assistant", parts=parts, name=self.name)

    # --- Context ---

    def _tool_schemas(self) -> list[ToolDefinition]:
        if self._config.toolkit is None:
            return []
        return self._config.toolkit.get_schemas()

    def _build_context(self, message: Message) -> list[Message]:
        """System prompt, stored history and the input, with the input once."""
        context: list[Message] = []
        prompt = self.build_system_prompt()
        if prompt:
            context.append(Message.system(prompt))

        memory = self._config.memory
        if memory is not None:
            history = list(memory.get_messages())
            if history and history[-1] is message:
                history.pop()
            context.extend(history)

        context.append(message)
        return context

    def build_system_prompt(self) -> str:
        """The system prompt plus a textual catalogue of attached tools."""
        prompt = self.system_prompt
        schemas = self._tool_schemas()
        if not schemas:
            return prompt

        lines = ["", "", "# Tools", "", "You have access to the following tools:", ""]
        for schema in schemas:
            lines.append(f"## {schema.name}")
            if schema.description:
                lines.append(schema.description)
            properties = schema.parameters.get("properties", {})
            for name, param in properties.items():
                if not isinstance(param, dict):
                    continue
                line = f"- {name}"
                if param.get("description"):
                    line += f": {param['description']}"
                if isinstance(param.get("type"), str):
                    line += f" ({param['type']})"
                lines.append(line)
            lines.append("")
        lines.append(
            "To use a tool, respond with a tool call containing the tool name and parameters."
        )
        return prompt + "\n".join(lines)

    # --- Memory ---

    async def _on_observe(self, message: Message) -> None:
        if self._config.memory is not None:
            await self._config.memory.add(message)

    async def compact_memory(self) -> CompactionResult | None:
        """Compact memory now if the compaction policy is triggered."""
        compaction = self._config.compaction
        memory = self._config.memory
        if compaction is None or memory is None:
            return None
        return await compact_memory(memory, compaction, self._config.model)

    def state_dict(self) -> dict[str, Any]:
        state = super().state_dict()
        memory = self._config.memory
        if memory is not None and hasattr(memory, "state_dict"):
            state["memory"] = memory.state_dict()
        return state

    def load_state_dict(self, state: dict[str, Any]) -> None:
        super().load_state_dict(state)
        memory = self._config.memory
        if "memory" in state and memory is not None and hasattr(memory, "load_state_dict"):
            memory.load_state_dict(state["memory"])
