"""Pipelines — compose agents by chaining, fanning out or looping ``reply``.

Every pipeline exposes ``async run(message) -> list[Message]`` returning
the replies it collected, in order. A failing agent aborts the run with a
PipelineError chained to the original exception.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from duet.agent.base import AgentBase
from duet.llm.message import Message

logger = logging.getLogger(__name__)

MessagePredicate = Callable[[Message], bool]


class PipelineError(Exception):
    """An agent inside a pipeline failed."""

    def __init__(
        self, pipeline: str, agent_name: str, index: int, cause: BaseException
    ) -> None:
        self.pipeline = pipeline
        self.agent_name = agent_name
        self.index = index
        super().__init__(
            f"{pipeline}: agent '{agent_name}' failed at step {index}: {cause}"
        )


class SequentialPipeline:
    """Each agent replies to the previous agent's reply."""

    def __init__(self, name: str, agents: list[AgentBase]) -> None:
        self.name = name
        self.agents = list(agents)

    async def run(self, message: Message) -> list[Message]:
        responses: list[Message] = []
        current = message
        for i, agent in enumerate(self.agents):
            try:
                current = await agent.reply(current)
            except Exception as e:
                raise PipelineError(self.name, agent.name, i, e) from e
            responses.append(current)
        return responses


class FanOutPipeline:
    """Every agent replies to the same input concurrently.

    Replies are returned in agent order. When several agents fail, the
    error of the first failing agent in that order is raised.
    """

    def __init__(self, name: str, agents: list[AgentBase]) -> None:
        self.name = name
        self.agents = list(agents)

    async def run(self, message: Message) -> list[Message]:
        results = await asyncio.gather(
            *(agent.reply(message) for agent in self.agents),
            return_exceptions=True,
        )
        responses: list[Message] = []
        for i, (agent, result) in enumerate(zip(self.agents, results)):
            if isinstance(result, Exception):
                raise PipelineError(self.name, agent.name, i, result) from result
            if isinstance(result, BaseException):
                raise result
            responses.append(result)
        return responses


class ForLoopPipeline:
    """One agent replies to its own previous reply up to ``max_loops`` times.

    ``break_when`` is checked after every reply; a true result ends the
    loop with that reply included.
    """

    def __init__(
        self,
        name: str,
        agent: AgentBase,
        max_loops: int,
        break_when: MessagePredicate | None = None,
    ) -> None:
        if max_loops < 1:
            raise ValueError("max_loops must be at least 1")
        self.name = name
        self.agent = agent
        self.max_loops = max_loops
        self.break_when = break_when

    async def run(self, message: Message) -> list[Message]:
        responses: list[Message] = []
        current = message
        for i in range(self.max_loops):
            try:
                current = await self.agent.reply(current)
            except Exception as e:
                raise PipelineError(self.name, self.agent.name, i, e) from e
            responses.append(current)
            if self.break_when is not None and self.break_when(current):
                logger.debug("%s: break condition met after %d loop(s)", self.name, i + 1)
                break
        return responses


class WhileLoopPipeline:
    """One agent keeps replying while ``condition`` holds for the last message.

    The condition is checked before every reply, starting with the input.
    At most ``max_loops`` replies are made.
    """

    def __init__(
        self,
        name: str,
        agent: AgentBase,
        max_loops: int,
        condition: MessagePredicate | None = None,
    ) -> None:
        if max_loops < 1:
            raise ValueError("max_loops must be at least 1")
        self.name = name
        self.agent = agent
        self.max_loops = max_loops
        self.condition = condition

    async def run(self, message: Message) -> list[Message]:
        responses: list[Message] = []
        current = message
        for i in range(self.max_loops):
            if self.condition is not None and not self.condition(current):
                logger.debug("%s: condition false after %d loop(s)", self.name, i)
                break
            try:
                current = await self.agent.reply(current)
            except Exception as e:
                raise PipelineError(self.name, self.agent.name, i, e) from e
            responses.append(current)
        return responses
