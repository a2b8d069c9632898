"""Lifecycle hooks — named callbacks run before/after reply, print and observe.

Pre-hooks receive ``(agent, kwargs)`` and may return a replacement kwargs
dict, which is threaded into the next pre-hook. Post-hooks receive
``(agent, kwargs, message)`` and may return a replacement message, which is
threaded into the next post-hook. Returning None keeps the current value.
Callbacks may be plain functions or coroutines.

Callbacks run in registration order of the underlying dict, but callers
should not rely on ordering across different hook names.
"""

from __future__ import annotations

import enum
import inspect
import logging
import threading
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from duet.llm.message import Message

if TYPE_CHECKING:
    from duet.agent.base import AgentBase

logger = logging.getLogger(__name__)

PreHook = Callable[
    ["AgentBase", dict[str, Any]],
    Union[dict[str, Any], None, Awaitable[Union[dict[str, Any], None]]],
]
PostHook = Callable[
    ["AgentBase", dict[str, Any], Message],
    Union[Message, None, Awaitable[Union[Message, None]]],
]


class HookType(enum.Enum):
    PRE_REPLY = "pre_reply"
    POST_REPLY = "post_reply"
    PRE_PRINT = "pre_print"
    POST_PRINT = "post_print"
    PRE_OBSERVE = "pre_observe"
    POST_OBSERVE = "post_observe"

    @property
    def is_pre(self) -> bool:
        return self.value.startswith("pre_")


class HookRegistry:
    """Per-agent hook storage.

    Registration and removal take the lock; running hooks copies the
    callbacks under the lock and invokes them outside it, so a hook may
    register or remove hooks without deadlocking and concurrent replies
    never see a half-updated registry.
    """

    def __init__(self, owner: AgentBase | None = None) -> None:
        self._owner = owner
        self._lock = threading.Lock()
        self._hooks: dict[HookType, dict[str, Callable[..., Any]]] = {
            t: {} for t in HookType
        }

    def register(
        self, hook_type: HookType | str, name: str, fn: Callable[..., Any]
    ) -> None:
        """Register ``fn`` under ``name``, replacing any hook of the same name."""
        hook_type = _coerce(hook_type)
        if not callable(fn):
            raise TypeError(f"invalid hook function for {hook_type.value}: {fn!r}")
        with self._lock:
            self._hooks[hook_type][name] = fn

    def remove(self, hook_type: HookType | str, name: str) -> None:
        hook_type = _coerce(hook_type)
        with self._lock:
            self._hooks[hook_type].pop(name, None)

    def clear(self, hook_type: HookType | str | None = None) -> None:
        """Clear hooks of one type, or of every type when ``hook_type`` is None."""
        with self._lock:
            if hook_type is None:
                for t in HookType:
                    self._hooks[t] = {}
            else:
                self._hooks[_coerce(hook_type)] = {}

    def get(self, hook_type: HookType | str) -> dict[str, Callable[..., Any]]:
        hook_type = _coerce(hook_type)
        with self._lock:
            return dict(self._hooks[hook_type])

    async def run_pre(
        self,
        hook_type: HookType,
        message: Message,
        kwargs: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run pre-hooks, returning the final kwargs."""
        kwargs = dict(kwargs or {})
        for name, hook in self.get(hook_type).items():
            kwargs["message"] = message
            result = await _maybe_await(hook(self._owner, kwargs))
            if result is not None:
                kwargs = result
            logger.debug("Ran %s hook %s", hook_type.value, name)
        return kwargs

    async def run_post(
        self,
        hook_type: HookType,
        message: Message,
        kwargs: dict[str, Any] | None,
        response: Message,
    ) -> Message:
        """Run post-hooks, returning the (possibly replaced) response."""
        kwargs = dict(kwargs or {})
        current = response
        for name, hook in self.get(hook_type).items():
            kwargs["message"] = message
            result = await _maybe_await(hook(self._owner, kwargs, current))
            if result is not None:
                current = result
            logger.debug("Ran %s hook %s", hook_type.value, name)
        return current


def _coerce(hook_type: HookType | str) -> HookType:
    if isinstance(hook_type, HookType):
        return hook_type
    try:
        return HookType(hook_type)
    except ValueError:
        raise ValueError(f"unknown hook type: {hook_type}") from None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
