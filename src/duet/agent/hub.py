"""MsgHub — share every participant's replies with all other participants."""

from __future__ import annotations

import logging
from types import TracebackType

from duet.agent.base import AgentBase
from duet.llm.message import Message

logger = logging.getLogger(__name__)


class MsgHub:
    """Wires a group of agents as mutual subscribers under one topic.

    Usage:
        async with MsgHub("review", [coder, reviewer]) as hub:
            await coder.reply(task)   # reviewer observes the reply
            await hub.broadcast(Message.user("wrap up"))
    """

    def __init__(
        self,
        name: str,
        agents: list[AgentBase],
        announcement: Message | None = None,
    ) -> None:
        self.name = name
        self._agents = list(agents)
        self._announcement = announcement

    @property
    def agents(self) -> list[AgentBase]:
        return list(self._agents)

    async def __aenter__(self) -> MsgHub:
        self._update_subscribers()
        if self._announcement is not None:
            await self.broadcast(self._announcement)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def add(self, *agents: AgentBase) -> None:
        self._agents.extend(agents)
        self._update_subscribers()

    def remove(self, *agents: AgentBase) -> None:
        ids = {a.id for a in agents}
        for agent in self._agents:
            if agent.id in ids:
                agent.remove_subscribers(self.name)
        self._agents = [a for a in self._agents if a.id not in ids]
        self._update_subscribers()

    async def broadcast(self, message: Message) -> None:
        """Deliver ``message`` to every participant."""
        for agent in self._agents:
            await agent.observe(message)

    def close(self) -> None:
        for agent in self._agents:
            agent.remove_subscribers(self.name)
        logger.debug("MsgHub %s closed", self.name)

    def _update_subscribers(self) -> None:
        for agent in self._agents:
            agent.reset_subscribers(self.name, self._agents)
