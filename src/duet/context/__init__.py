"""Memory — bounded conversation history for agents.

``History`` is in-process and does no I/O. ``add`` is a coroutine so that
backing stores that persist messages fit the same ``Memory`` protocol and
can surface write failures to the agent.

History is single-writer: it performs no locking, and callers that share
one instance between concurrent replies must coordinate themselves.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from duet.llm.message import Message, Role

logger = logging.getLogger(__name__)


@runtime_checkable
class Memory(Protocol):
    """What an agent needs from its message store."""

    async def add(self, message: Message) -> None: ...

    def get_messages(self) -> list[Message]:
        """Stored messages, oldest first. Callers must not mutate the list."""
        ...

    def clear(self) -> None: ...


class History:
    """FIFO message history with a fixed capacity.

    When an ``add`` pushes the length past ``max_size`` the oldest
    messages are dropped. ``max_size <= 0`` disables the bound.
    """

    def __init__(self, max_size: int = 100) -> None:
        self.max_size = max_size
        self._messages: list[Message] = []

    async def add(self, message: Message) -> None:
        self._messages.append(message)
        if 0 < self.max_size < len(self._messages):
            dropped = len(self._messages) - self.max_size
            del self._messages[:dropped]
            logger.debug("History full, dropped %d oldest message(s)", dropped)

    def get_messages(self) -> list[Message]:
        return self._messages

    def get_last_n(self, n: int) -> list[Message]:
        if n <= 0:
            return []
        return self._messages[-n:]

    def get_by_role(self, role: Role) -> list[Message]:
        return [m for m in self._messages if m.role == role]

    def clear(self) -> None:
        self._messages = []

    def size(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def state_dict(self) -> dict[str, Any]:
        return {
            "max_size": self.max_size,
            "messages": [m.to_dict() for m in self._messages],
        }

    def load_state_dict(self, state: dict[str, Any]) -> None:
        self.max_size = state.get("max_size", self.max_size)
        messages = [Message.from_dict(d) for d in state.get("messages", [])]
        if self.max_size > 0:
            messages = messages[-self.max_size :]
        self._messages = messages
