"""Tests for duet.agent.supervisor (double loop, decision and conclusion parsing)."""

from __future__ import annotations

from typing import Any

import pytest

from duet.agent.loop import ModelCallError, ReActAgent, ReActConfig
from duet.agent.supervisor import (
    REVIEW_TEMPLATE,
    Conclusion,
    Decision,
    DecisionAction,
    SupervisorAgent,
    SupervisorConfigError,
    SupervisoryConfig,
    extract_conclusion,
    format_steps,
    parse_decision,
)
from duet.context import History
from duet.llm.message import Message

from conftest import ScriptedModel, text_response


def make_agent(name: str, replies: list[Any]) -> tuple[ReActAgent, ScriptedModel]:
    model = ScriptedModel([text_response(r) if isinstance(r, str) else r for r in replies])
    agent = ReActAgent(ReActConfig(name=name, model=model, memory=History()))
    agent.set_console_output_enabled(False)
    return agent, model


def make_supervisor(
    executor_replies: list[Any], planner_replies: list[Any], **kwargs: Any
) -> tuple[SupervisorAgent, ScriptedModel, ScriptedModel]:
    executor, executor_model = make_agent("executor", executor_replies)
    planner, planner_model = make_agent("planner", planner_replies)
    supervisor = SupervisorAgent(
        SupervisoryConfig(planner=planner, executor=executor, **kwargs)
    )
    supervisor.set_console_output_enabled(False)
    return supervisor, executor_model, planner_model


def last_user_text(model: ScriptedModel, call: int = -1) -> str:
    return model.calls[call][0][-1].text


# ---------------------------------------------------------------------------
# SupervisoryConfig
# ---------------------------------------------------------------------------


class TestSupervisoryConfig:
    def test_missing_planner(self) -> None:
        executor, _ = make_agent("e", ["x"])
        with pytest.raises(SupervisorConfigError, match="planner"):
            SupervisoryConfig(planner=None, executor=executor)

    def test_missing_executor(self) -> None:
        planner, _ = make_agent("p", ["x"])
        with pytest.raises(SupervisorConfigError, match="executor"):
            SupervisoryConfig(planner=planner, executor=None)

    def test_non_positive_loops(self) -> None:
        planner, _ = make_agent("p", ["x"])
        executor, _ = make_agent("e", ["x"])
        with pytest.raises(SupervisorConfigError, match="max_loop_iterations"):
            SupervisoryConfig(planner=planner, executor=executor, max_loop_iterations=0)

    def test_bad_template_field(self) -> None:
        planner, _ = make_agent("p", ["x"])
        executor, _ = make_agent("e", ["x"])
        with pytest.raises(SupervisorConfigError, match="decision_prompt"):
            SupervisoryConfig(planner=planner, executor=executor, decision_prompt="{nope}")

    def test_is_value_error(self) -> None:
        assert issubclass(SupervisorConfigError, ValueError)

    def test_default_loops(self) -> None:
        planner, _ = make_agent("p", ["x"])
        executor, _ = make_agent("e", ["x"])
        assert SupervisoryConfig(planner=planner, executor=executor).max_loop_iterations == 3


# ---------------------------------------------------------------------------
# Double loop
# ---------------------------------------------------------------------------


class TestSupervisorLoop:
    async def test_terminating_planner_two_calls(self) -> None:
        supervisor, executor_model, planner_model = make_supervisor(
            ["- Read the file\n- Fixed the bug"],
            ["The task is complete and done.\nReasoning: bug is fixed"],
        )

        response = await supervisor.reply(Message.user("Fix the bug"))

        assert len(executor_model.calls) + len(planner_model.calls) == 2
        assert response.role == "assistant"
        assert response.name == "supervisor"
        assert response.text.startswith("## Task: Fix the bug")
        assert "  - Fixed the bug" in response.text
        assert "**Final Decision:** bug is fixed" in response.text
        assert response.metadata["decision"] == "terminate"
        assert supervisor.last_decision is not None
        assert supervisor.last_decision.should_terminate

    async def test_executor_gets_original_input_first(self) -> None:
        supervisor, executor_model, _ = make_supervisor(["working"], ["done"])
        await supervisor.reply(Message.user("Fix the bug"))
        assert last_user_text(executor_model, 0) == "Fix the bug"

    async def test_planner_sees_review(self) -> None:
        supervisor, _, planner_model = make_supervisor(
            ["- Step one\n- Step two"], ["finished"]
        )
        await supervisor.reply(Message.user("Fix the bug"))
        review = last_user_text(planner_model, 0)
        assert review.startswith("## Execution Review")
        assert "**Original Task:** Fix the bug" in review
        assert "1. - Step one\n2. - Step two" in review
        assert "**Confidence:** 0.50" in review

    async def test_budget_exhaustion(self) -> None:
        supervisor, executor_model, planner_model = make_supervisor(
            ["still working"], ["Need to continue with next steps."]
        )

        response = await supervisor.reply(Message.user("Big task"))

        assert len(executor_model.calls) == 3
        assert len(planner_model.calls) == 2
        assert supervisor.rounds == 3
        assert "**Final Decision:** Maximum loops reached" in response.text
        assert supervisor.last_decision == Decision(
            action=DecisionAction.TERMINATE, reasoning="Maximum loops reached"
        )

    async def test_single_round(self) -> None:
        supervisor, executor_model, planner_model = make_supervisor(
            ["working"], ["done"], max_loop_iterations=1
        )
        await supervisor.reply(Message.user("task"))
        assert len(executor_model.calls) == 1
        assert planner_model.calls == []

    async def test_continue_passes_instruction(self) -> None:
        supervisor, executor_model, _ = make_supervisor(
            ["started", "more"],
            ["Reasoning: tests are missing\nNext instruction: write the tests", "done"],
        )
        await supervisor.reply(Message.user("task"))
        assert last_user_text(executor_model, 1) == "write the tests"

    async def test_redirect_prefixes_new_approach(self) -> None:
        supervisor, executor_model, _ = make_supervisor(
            ["regex soup", "ok"],
            [
                "We should redirect and change approach.\nApproach: use a parser generator",
                "done",
            ],
        )
        await supervisor.reply(Message.user("parse it"))
        instruction = last_user_text(executor_model, 1)
        assert instruction.startswith("NEW APPROACH: use a parser generator\n\n")

    async def test_prompt_overrides(self) -> None:
        supervisor, executor_model, planner_model = make_supervisor(
            ["working", "ok"],
            ["Next:\nrun the linter", "done"],
            decision_prompt="Task={task} conf={confidence:.1f} steps={steps}",
            executor_task_prompt="Please: {instruction}",
            conclusion_format_prompt="End with a bullet list.",
        )
        await supervisor.reply(Message.user("lint"))

        assert last_user_text(planner_model, 0) == "Task=lint conf=0.5 steps="
        assert last_user_text(executor_model, 0) == "lint\n\nEnd with a bullet list."
        assert last_user_text(executor_model, 1) == (
            "Please: run the linter\n\nEnd with a bullet list."
        )

    async def test_conclusion_records_iterations(self) -> None:
        supervisor, _, _ = make_supervisor(["All done."], ["done"])
        await supervisor.reply(Message.user("task"))
        conclusion = supervisor.last_conclusion
        assert conclusion is not None
        assert conclusion.iterations == 1
        assert conclusion.original_input == "task"
        assert conclusion.is_complete

    async def test_executor_error_propagates(self) -> None:
        supervisor, _, planner_model = make_supervisor([RuntimeError("down")], ["done"])
        with pytest.raises(ModelCallError):
            await supervisor.reply(Message.user("task"))
        assert planner_model.calls == []

    async def test_planner_error_propagates(self) -> None:
        supervisor, _, _ = make_supervisor(["working"], [RuntimeError("down")])
        with pytest.raises(ModelCallError):
            await supervisor.reply(Message.user("task"))

    async def test_reply_broadcast_to_subscribers(self) -> None:
        supervisor, _, _ = make_supervisor(["working"], ["done"])
        watcher, _ = make_agent("watcher", ["x"])
        supervisor.reset_subscribers("room", [watcher])
        response = await supervisor.reply(Message.user("task"))
        assert watcher.memory is not None
        assert watcher.memory.get_messages() == [response]


# ---------------------------------------------------------------------------
# parse_decision
# ---------------------------------------------------------------------------


class TestParseDecision:
    def test_terminate(self) -> None:
        decision = parse_decision("The task is complete and done.")
        assert decision.action is DecisionAction.TERMINATE
        assert decision.new_instruction == ""

    def test_continue(self) -> None:
        decision = parse_decision("Need to continue with next steps.")
        assert decision.action is DecisionAction.CONTINUE
        assert decision.should_continue
        assert decision.new_instruction == "Need to continue with next steps."

    def test_redirect(self) -> None:
        decision = parse_decision("We should redirect and change approach.")
        assert decision.action is DecisionAction.REDIRECT
        assert decision.is_redirect
        assert decision.should_continue

    def test_terminate_beats_redirect(self) -> None:
        decision = parse_decision("Redirect? No, this is finished.")
        assert decision.action is DecisionAction.TERMINATE

    def test_reasoning_section(self) -> None:
        decision = parse_decision(
            "CONTINUE\n\n**Reasoning:**\n- tests fail\n- lint is clean\n## Next\nfix tests"
        )
        assert decision.reasoning == "tests fail lint is clean"
        assert decision.new_instruction == "fix tests"

    def test_instruction_label_wins_over_reasoning_mentioning_next(self) -> None:
        decision = parse_decision(
            "CONTINUE\nReasoning: the next patch must add tests\n"
            "Instruction: add unit tests for the parser"
        )
        assert decision.new_instruction == "add unit tests for the parser"
        assert decision.reasoning == "the next patch must add tests"

    def test_reasoning_body_is_not_an_instruction(self) -> None:
        decision = parse_decision(
            "CONTINUE\nReasoning:\nnext patch must add tests\n\n"
            "**Instruction:** add unit tests"
        )
        assert decision.new_instruction == "add unit tests"
        assert decision.reasoning == "next patch must add tests"

    def test_prose_mentioning_next_is_not_a_label(self) -> None:
        text = "Keep going, the next step is obvious.\nRun the suite."
        assert parse_decision(text).new_instruction == text

    def test_no_reasoning(self) -> None:
        assert parse_decision("keep going").reasoning == ""

    def test_redirect_approach_falls_back_to_reasoning(self) -> None:
        decision = parse_decision("REDIRECT\nReasoning: regexes cannot nest")
        assert decision.modified_approach == "regexes cannot nest"

    def test_is_frozen(self) -> None:
        decision = parse_decision("keep going")
        with pytest.raises(AttributeError):
            decision.reasoning = "changed"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# extract_conclusion / format_steps
# ---------------------------------------------------------------------------


class TestExtractConclusion:
    def test_bullet_steps(self) -> None:
        conclusion = extract_conclusion("- Step one\n- Step two\n- Step three")
        assert conclusion.steps == ("- Step one", "- Step two", "- Step three")
        assert conclusion.confidence == 0.5
        assert not conclusion.is_complete

    def test_numbered_steps(self) -> None:
        conclusion = extract_conclusion("Plan:\n1. Read\n  2. Edit\n10. Ship\nv1.2 notes")
        assert conclusion.steps == ("1. Read", "2. Edit", "10. Ship")

    def test_done_confidence(self) -> None:
        assert extract_conclusion("Everything is finished").confidence == 0.9

    def test_failure_confidence(self) -> None:
        assert extract_conclusion("The build failed").confidence == 0.2

    def test_done_beats_failure(self) -> None:
        assert extract_conclusion("Fixed the error, done.").confidence == 0.9

    def test_next_action(self) -> None:
        conclusion = extract_conclusion("Wrote parser\n**Next action:** add tests")
        assert conclusion.suggested_next_action == "add tests"

    def test_summary_is_full_text(self) -> None:
        conclusion = extract_conclusion("short", original_input="task", iterations=3)
        assert conclusion.summary == "short"
        assert conclusion.original_input == "task"
        assert conclusion.iterations == 3
        assert conclusion.artifacts == {}

    def test_is_frozen(self) -> None:
        with pytest.raises(AttributeError):
            Conclusion().confidence = 1.0  # type: ignore[misc]


class TestFormatSteps:
    def test_numbered(self) -> None:
        assert format_steps(["a", "b"]) == "1. a\n2. b"

    def test_empty(self) -> None:
        assert format_steps([]) == "No detailed steps recorded."

    def test_review_template_fields(self) -> None:
        text = REVIEW_TEMPLATE.format(
            task="t", summary="s", steps="1. x", confidence=0.25, next_action="n"
        )
        assert "**Confidence:** 0.25" in text
        assert "**Suggested Next Action:** n" in text
