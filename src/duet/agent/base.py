"""AgentBase — identity, hooks, console output and subscriber fan-out."""

from __future__ import annotations

import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, TextIO

from duet.agent.hooks import HookRegistry, HookType
from duet.llm.message import Message, generate_id

logger = logging.getLogger(__name__)


class AgentBase(ABC):
    """Common functionality for every agent.

    Subscribers are grouped by topic (usually a ``MsgHub`` name). After a
    reply, the agent calls ``observe`` on every subscriber of every topic.
    """

    def __init__(
        self,
        name: str,
        system_prompt: str = "",
        console: TextIO | None = None,
    ) -> None:
        self._id = generate_id()
        self._name = name
        self._system_prompt = system_prompt
        self._console = console
        self._console_enabled = True
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[AgentBase]] = {}
        self.hooks = HookRegistry(owner=self)

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @system_prompt.setter
    def system_prompt(self, prompt: str) -> None:
        self._system_prompt = prompt

    @abstractmethod
    async def reply(self, message: Message) -> Message:
        """Generate a response to ``message``."""
        ...

    async def observe(self, message: Message) -> None:
        """Receive a message without responding.

        The base implementation only runs the observe hooks.
        """
        kwargs = await self.hooks.run_pre(
            HookType.PRE_OBSERVE, message, {"message": message}
        )
        await self._on_observe(message)
        await self.hooks.run_post(HookType.POST_OBSERVE, message, kwargs, message)

    async def _on_observe(self, message: Message) -> None:
        """Subclass extension point for storing observed messages."""

    # --- Hooks ---

    def register_hook(
        self, hook_type: HookType | str, name: str, fn: Callable[..., Any]
    ) -> None:
        self.hooks.register(hook_type, name, fn)

    def remove_hook(self, hook_type: HookType | str, name: str) -> None:
        self.hooks.remove(hook_type, name)

    def clear_hooks(self, hook_type: HookType | str | None = None) -> None:
        self.hooks.clear(hook_type)

    def get_hooks(self, hook_type: HookType | str) -> dict[str, Callable[..., Any]]:
        return self.hooks.get(hook_type)

    # --- Console output ---

    def set_console_output_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._console_enabled = enabled

    async def print(self, message: Message) -> None:
        """Write ``message`` to the console, wrapped in the print hooks."""
        with self._lock:
            enabled = self._console_enabled
        if not enabled:
            return

        kwargs = await self.hooks.run_pre(HookType.PRE_PRINT, message, {"message": message})
        stream = self._console or sys.stdout
        stream.write(f"[{message.role}] {message.name}: {message.text}\n")
        stream.flush()
        await self.hooks.run_post(HookType.POST_PRINT, message, kwargs, message)

    # --- Pub/sub ---

    def reset_subscribers(self, topic: str, subscribers: list[AgentBase]) -> None:
        """Replace the subscriber list of ``topic``. The agent itself is skipped."""
        filtered = [s for s in subscribers if s.id != self._id]
        with self._lock:
            self._subscribers[topic] = filtered

    def remove_subscribers(self, topic: str) -> None:
        with self._lock:
            self._subscribers.pop(topic, None)

    def subscribers(self, topic: str) -> list[AgentBase]:
        with self._lock:
            return list(self._subscribers.get(topic, []))

    async def broadcast(self, message: Message) -> None:
        """Deliver ``message`` to every subscriber's ``observe``."""
        with self._lock:
            targets = [s for subs in self._subscribers.values() for s in subs]
        for sub in targets:
            await sub.observe(message)

    async def _finish_reply(
        self, message: Message, kwargs: dict[str, Any], response: Message
    ) -> Message:
        """Print, run post-reply hooks and broadcast a finished reply."""
        await self.print(response)
        response = await self.hooks.run_post(
            HookType.POST_REPLY, message, kwargs, response
        )
        await self.broadcast(response)
        return response

    # --- State ---

    def state_dict(self) -> dict[str, Any]:
        with self._lock:
            subscribers = {
                topic: [s.id for s in subs] for topic, subs in self._subscribers.items()
            }
        return {
            "id": self._id,
            "name": self._name,
            "system_prompt": self._system_prompt,
            "subscribers": subscribers,
        }

    def load_state_dict(self, state: dict[str, Any]) -> None:
        """Restore identity and prompt.

        Subscribers are not restored: they reference live agent instances
        and must be re-wired (e.g. by re-entering a ``MsgHub``).
        """
        self._id = state.get("id", self._id)
        self._name = state.get("name", self._name)
        self._system_prompt = state.get("system_prompt", self._system_prompt)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, id={self._id!r})"
