"""Tests for duet.agent.pipeline (sequential, fan-out and loop pipelines)."""

from __future__ import annotations

import asyncio
import io

import pytest

from duet.agent.base import AgentBase
from duet.agent.pipeline import (
    FanOutPipeline,
    ForLoopPipeline,
    PipelineError,
    SequentialPipeline,
    WhileLoopPipeline,
)
from duet.llm.message import Message


class SuffixAgent(AgentBase):
    """Appends its name to the input text."""

    def __init__(self, name: str, fail: bool = False) -> None:
        super().__init__(name, console=io.StringIO())
        self.fail = fail
        self.inputs: list[str] = []

    async def reply(self, message: Message) -> Message:
        self.inputs.append(message.text)
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        return Message.assistant(f"{message.text}+{self.name}", name=self.name)


class WaitingAgent(AgentBase):
    """Sets ``mine`` and then waits for ``other``."""

    def __init__(self, name: str, mine: asyncio.Event, other: asyncio.Event) -> None:
        super().__init__(name, console=io.StringIO())
        self.mine = mine
        self.other = other

    async def reply(self, message: Message) -> Message:
        self.mine.set()
        await asyncio.wait_for(self.other.wait(), timeout=1.0)
        return Message.assistant(self.name, name=self.name)


# ---------------------------------------------------------------------------
# SequentialPipeline
# ---------------------------------------------------------------------------


class TestSequentialPipeline:
    async def test_chains_replies(self) -> None:
        a, b, c = SuffixAgent("a"), SuffixAgent("b"), SuffixAgent("c")
        responses = await SequentialPipeline("chain", [a, b, c]).run(Message.user("x"))
        assert [r.text for r in responses] == ["x+a", "x+a+b", "x+a+b+c"]
        assert b.inputs == ["x+a"]

    async def test_empty(self) -> None:
        assert await SequentialPipeline("chain", []).run(Message.user("x")) == []

    async def test_error_stops_chain(self) -> None:
        a, b, c = SuffixAgent("a"), SuffixAgent("b", fail=True), SuffixAgent("c")
        with pytest.raises(PipelineError, match="agent 'b' failed at step 1") as exc_info:
            await SequentialPipeline("chain", [a, b, c]).run(Message.user("x"))
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.agent_name == "b"
        assert c.inputs == []


# ---------------------------------------------------------------------------
# FanOutPipeline
# ---------------------------------------------------------------------------


class TestFanOutPipeline:
    async def test_same_input_ordered_replies(self) -> None:
        a, b = SuffixAgent("a"), SuffixAgent("b")
        responses = await FanOutPipeline("fan", [a, b]).run(Message.user("x"))
        assert [r.text for r in responses] == ["x+a", "x+b"]
        assert a.inputs == b.inputs == ["x"]

    async def test_runs_concurrently(self) -> None:
        first, second = asyncio.Event(), asyncio.Event()
        agents = [WaitingAgent("a", first, second), WaitingAgent("b", second, first)]
        responses = await FanOutPipeline("fan", agents).run(Message.user("x"))
        assert [r.text for r in responses] == ["a", "b"]

    async def test_error_propagates(self) -> None:
        agents = [SuffixAgent("a"), SuffixAgent("b", fail=True), SuffixAgent("c", fail=True)]
        with pytest.raises(PipelineError) as exc_info:
            await FanOutPipeline("fan", agents).run(Message.user("x"))
        assert exc_info.value.agent_name == "b"
        assert exc_info.value.index == 1


# ---------------------------------------------------------------------------
# ForLoopPipeline / WhileLoopPipeline
# ---------------------------------------------------------------------------


class TestForLoopPipeline:
    async def test_runs_max_loops(self) -> None:
        agent = SuffixAgent("a")
        responses = await ForLoopPipeline("loop", agent, max_loops=3).run(Message.user("x"))
        assert [r.text for r in responses] == ["x+a", "x+a+a", "x+a+a+a"]

    async def test_break_includes_last_reply(self) -> None:
        agent = SuffixAgent("a")
        pipeline = ForLoopPipeline(
            "loop", agent, max_loops=5, break_when=lambda m: m.text.count("+a") == 2
        )
        responses = await pipeline.run(Message.user("x"))
        assert [r.text for r in responses] == ["x+a", "x+a+a"]

    async def test_error_propagates(self) -> None:
        with pytest.raises(PipelineError, match="step 0"):
            await ForLoopPipeline("loop", SuffixAgent("a", fail=True), 2).run(
                Message.user("x")
            )

    def test_max_loops_validated(self) -> None:
        with pytest.raises(ValueError, match="max_loops"):
            ForLoopPipeline("loop", SuffixAgent("a"), max_loops=0)


class TestWhileLoopPipeline:
    async def test_condition_checked_before_each_reply(self) -> None:
        agent = SuffixAgent("a")
        pipeline = WhileLoopPipeline(
            "while", agent, max_loops=5, condition=lambda m: len(m.text) < 5
        )
        responses = await pipeline.run(Message.user("x"))
        assert [r.text for r in responses] == ["x+a", "x+a+a"]

    async def test_false_condition_skips_agent(self) -> None:
        agent = SuffixAgent("a")
        pipeline = WhileLoopPipeline("while", agent, max_loops=3, condition=lambda m: False)
        assert await pipeline.run(Message.user("x")) == []
        assert agent.inputs == []

    async def test_stops_at_max_loops(self) -> None:
        agent = SuffixAgent("a")
        responses = await WhileLoopPipeline("while", agent, max_loops=2).run(Message.user("x"))
        assert len(responses) == 2

    async def test_error_propagates(self) -> None:
        agent = SuffixAgent("a", fail=True)
        with pytest.raises(PipelineError):
            await WhileLoopPipeline("while", agent, max_loops=2).run(Message.user("x"))
