"""Supervisory double loop — a planner agent steering an executor agent.

Round 0 runs the executor on the caller's input. Every later round first
asks the planner to review the executor's last conclusion; the planner's
reply is parsed into a Decision that either ends the run or produces the
executor's next instruction.

Both conclusion extraction and decision parsing are keyword heuristics
over free text. They are module-level functions so callers can reuse or
test them without agents.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from duet.agent.base import AgentBase
from duet.agent.hooks import HookType
from duet.agent.loop import ReActAgent
from duet.llm.message import Message, TextPart

logger = logging.getLogger(__name__)

COMPLETE_CONFIDENCE = 0.8

REVIEW_TEMPLATE = """\
## Execution Review

**Original Task:** {task}

**Work Summary:** {summary}

**Steps Taken:**
{steps}

**Confidence:** {confidence:.2f}

**Suggested Next Action:** {next_action}

---
Please evaluate this work and decide:
- TERMINATE: If the task is complete and satisfactory
- CONTINUE: If more work is needed (provide next instruction)
- REDIRECT: If the approach needs to change (explain new approach)

Respond with your decision and reasoning."""

_TERMINATE_KEYWORDS = ("terminate", "done", "complete", "finished")
_REDIRECT_KEYWORDS = ("redirect", "change approach", "different approach")
_DONE_KEYWORDS = ("done", "complete", "finished")
_FAILURE_KEYWORDS = ("error", "failed")

_NUMBERED = re.compile(r"^\d+\.")
_NEXT_ACTION = re.compile(r"next\s+(?:action|step)s?\W*:\s*(.*)", re.IGNORECASE)
_APPROACH = re.compile(r"approach\W*:\s*(.*)", re.IGNORECASE)
_LABEL = re.compile(r"^[#*\s]*[A-Za-z][\w -]{0,40}\**:")
# "Next instruction: ...", "## Next steps" or "**Instruction:**"
_INSTRUCTION_LABEL = re.compile(
    r"^[#*\s-]*(?:next|instruction)\b[\w ]*\**\s*(?::(.*))?$", re.IGNORECASE
)


class SupervisorConfigError(ValueError):
    """Invalid supervisor configuration."""


class DecisionAction(enum.Enum):
    CONTINUE = "continue"
    REDIRECT = "redirect"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class Decision:
    """The planner's verdict on one executor round."""

    action: DecisionAction
    reasoning: str = ""
    new_instruction: str = ""
    modified_approach: str = ""

    @property
    def should_continue(self) -> bool:
        return self.action is not DecisionAction.TERMINATE

    @property
    def should_terminate(self) -> bool:
        return self.action is DecisionAction.TERMINATE

    @property
    def is_redirect(self) -> bool:
        return self.action is DecisionAction.REDIRECT


@dataclass(frozen=True)
class Conclusion:
    """Confidence-scored summary of one executor reply."""

    summary: str = ""
    steps: tuple[str, ...] = ()
    confidence: float = 0.0
    suggested_next_action: str = ""
    original_input: str = ""
    iterations: int = 0
    artifacts: dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.confidence >= COMPLETE_CONFIDENCE


@dataclass
class SupervisoryConfig:
    """Wiring and prompts of a SupervisorAgent.

    Prompt overrides are ``str.format`` templates. ``decision_prompt`` may
    use ``{task}``, ``{summary}``, ``{steps}``, ``{confidence}`` and
    ``{next_action}``; ``executor_task_prompt`` may use ``{instruction}``.
    ``conclusion_format_prompt`` is appended to every executor instruction.
    """

    planner: ReActAgent | None
    executor: ReActAgent | None
    max_loop_iterations: int = 3
    decision_prompt: str | None = None
    executor_task_prompt: str | None = None
    conclusion_format_prompt: str | None = None
    verbose_logging: bool = False

    def __post_init__(self) -> None:
        if self.planner is None:
            raise SupervisorConfigError("planner agent is required")
        if self.executor is None:
            raise SupervisorConfigError("executor agent is required")
        if self.max_loop_iterations < 1:
            raise SupervisorConfigError("max_loop_iterations must be at least 1")

        if self.decision_prompt is not None:
            _check_template(
                "decision_prompt",
                self.decision_prompt,
                task="", summary="", steps="", confidence=0.0, next_action="",
            )
        if self.executor_task_prompt is not None:
            _check_template(
                "executor_task_prompt", self.executor_task_prompt, instruction=""
            )


def _check_template(label: str, template: str, **fields: Any) -> None:
    try:
        template.format(**fields)
    except (KeyError, IndexError, ValueError) as e:
        raise SupervisorConfigError(f"invalid {label} template: {e}") from e


class SupervisorAgent(AgentBase):
    """Alternates an executor and a planner until the planner terminates.

    Errors from either agent propagate unchanged. Running out of rounds is
    not an error: the last conclusion is returned with a synthetic
    TERMINATE decision.
    """

    def __init__(self, config: SupervisoryConfig, name: str = "supervisor") -> None:
        super().__init__(name)
        self._config = config
        self._last_conclusion: Conclusion | None = None
        self._last_decision: Decision | None = None
        self._rounds = 0

    @property
    def config(self) -> SupervisoryConfig:
        return self._config

    @property
    def planner(self) -> ReActAgent:
        assert self._config.planner is not None
        return self._config.planner

    @property
    def executor(self) -> ReActAgent:
        assert self._config.executor is not None
        return self._config.executor

    @property
    def last_conclusion(self) -> Conclusion | None:
        return self._last_conclusion

    @property
    def last_decision(self) -> Decision | None:
        return self._last_decision

    @property
    def rounds(self) -> int:
        """Rounds started by the most recent reply."""
        return self._rounds

    async def reply(self, message: Message) -> Message:
        kwargs = await self.hooks.run_pre(
            HookType.PRE_REPLY, message, {"message": message}
        )

        task = message.text
        instruction = self._executor_message(task)
        conclusion: Conclusion | None = None
        self._last_decision = None

        for round_no in range(self._config.max_loop_iterations):
            self._rounds = round_no + 1
            self._log(
                "Supervisor round %d/%d", round_no + 1, self._config.max_loop_iterations
            )

            if round_no > 0:
                assert conclusion is not None
                decision = await self._review(conclusion, task)
                self._last_decision = decision
                self._log("Planner decision: %s", decision.action.value)
                if decision.reasoning:
                    self._log("Reasoning: %s", decision.reasoning)

                if decision.should_terminate:
                    self._log("Terminating by planner decision")
                    return await self._finish_reply(
                        message, kwargs, self._final_response(task, conclusion, decision)
                    )

                instruction = self._executor_message(self._instruction_text(decision))

            conclusion = await self._execute(instruction)
            self._last_conclusion = conclusion
            self._log(
                "Executor conclusion (confidence %.2f, %d iteration(s)): %s",
                conclusion.confidence,
                conclusion.iterations,
                conclusion.summary,
            )

        assert conclusion is not None
        self._log("Maximum loops reached, returning current conclusion")
        decision = Decision(
            action=DecisionAction.TERMINATE, reasoning="Maximum loops reached"
        )
        self._last_decision = decision
        return await self._finish_reply(
            message, kwargs, self._final_response(task, conclusion, decision)
        )

    async def _execute(self, instruction: Message) -> Conclusion:
        response = await self.executor.reply(instruction)
        tool_names = [
            call.name for m in self.executor.last_transcript for call in m.tool_calls
        ]
        return extract_conclusion(
            response.text,
            original_input=instruction.text,
            iterations=self.executor.last_iterations,
            artifacts={"tool_calls": tool_names} if tool_names else None,
        )

    async def _review(self, conclusion: Conclusion, task: str) -> Decision:
        response = await self.planner.reply(
            Message.user(self._review_prompt(conclusion, task), name=self.name)
        )
        return parse_decision(response.text)

    def _review_prompt(self, conclusion: Conclusion, task: str) -> str:
        if self._config.decision_prompt is not None:
            return self._config.decision_prompt.format(
                task=task,
                summary=conclusion.summary,
                steps="\n".join(conclusion.steps),
                confidence=conclusion.confidence,
                next_action=conclusion.suggested_next_action,
            )
        return REVIEW_TEMPLATE.format(
            task=task,
            summary=conclusion.summary,
            steps=format_steps(conclusion.steps),
            confidence=conclusion.confidence,
            next_action=conclusion.suggested_next_action,
        )

    def _instruction_text(self, decision: Decision) -> str:
        if self._config.executor_task_prompt is not None:
            return self._config.executor_task_prompt.format(
                instruction=decision.new_instruction
            )
        if decision.is_redirect:
            approach = decision.modified_approach
            return f"NEW APPROACH: {approach}\n\n{decision.new_instruction}"
        return decision.new_instruction

    def _executor_message(self, text: str) -> Message:
        if self._config.conclusion_format_prompt:
            text = f"{text}\n\n{self._config.conclusion_format_prompt}"
        return Message.user(text, name=self.name)

    def _final_response(
        self, task: str, conclusion: Conclusion, decision: Decision
    ) -> Message:
        lines = [f"## Task: {task}", "", f"**Summary:** {conclusion.summary}", ""]
        if conclusion.steps:
            lines.append("**Steps Taken:**")
            lines.extend(f"  {step}" for step in conclusion.steps)
            lines.append("")
        if decision.reasoning:
            lines.extend([f"**Final Decision:** {decision.reasoning}", ""])
        return Message(
            role="assistant",
            parts=[TextPart(text="\n".join(lines))],
            name=self.name,
            metadata={
                "decision": decision.action.value,
                "confidence": conclusion.confidence,
                "rounds": self._rounds,
            },
        )

    def _log(self, msg: str, *args: Any) -> None:
        if self._config.verbose_logging:
            logger.info(msg, *args)
        else:
            logger.debug(msg, *args)

    def state_dict(self) -> dict[str, Any]:
        state = super().state_dict()
        state["config"] = {"max_loop_iterations": self._config.max_loop_iterations}
        return state


# ---------------------------------------------------------------------------
# Text heuristics
# ---------------------------------------------------------------------------


def extract_conclusion(
    text: str,
    original_input: str = "",
    iterations: int = 0,
    artifacts: dict[str, Any] | None = None,
) -> Conclusion:
    """Score an executor reply and pull out its listed steps.

    Confidence is 0.9 when the reply mentions being done, complete or
    finished, 0.2 when it mentions an error or failure, 0.5 otherwise.
    Steps are lines starting with ``-`` or a number followed by a dot.
    """
    lowered = text.lower()
    if any(k in lowered for k in _DONE_KEYWORDS):
        confidence = 0.9
    elif any(k in lowered for k in _FAILURE_KEYWORDS):
        confidence = 0.2
    else:
        confidence = 0.5

    steps: list[str] = []
    next_action = ""
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        match = _NEXT_ACTION.search(stripped)
        if match and not next_action:
            next_action = match.group(1).strip().strip("*").strip()
        if stripped.startswith("-") or _NUMBERED.match(stripped):
            steps.append(stripped)

    return Conclusion(
        summary=text,
        steps=tuple(steps),
        confidence=confidence,
        suggested_next_action=next_action,
        original_input=original_input,
        iterations=iterations,
        artifacts=dict(artifacts or {}),
    )


def parse_decision(text: str) -> Decision:
    """Classify a planner reply.

    TERMINATE wins over REDIRECT, which wins over CONTINUE.
    """
    lowered = text.lower()
    if any(k in lowered for k in _TERMINATE_KEYWORDS):
        action = DecisionAction.TERMINATE
    elif any(k in lowered for k in _REDIRECT_KEYWORDS):
        action = DecisionAction.REDIRECT
    else:
        action = DecisionAction.CONTINUE

    lines = text.split("\n")
    reasoning = _extract_reasoning(lines)

    new_instruction = ""
    modified_approach = ""
    if action is not DecisionAction.TERMINATE:
        new_instruction = _extract_instruction(lines) or text.strip()
        for line in lines:
            match = _APPROACH.search(line)
            if match and match.group(1).strip():
                modified_approach = match.group(1).strip().strip("*").strip()
                break
        if not modified_approach and action is DecisionAction.REDIRECT:
            modified_approach = reasoning

    return Decision(
        action=action,
        reasoning=reasoning,
        new_instruction=new_instruction,
        modified_approach=modified_approach,
    )


def _reasoning_span(lines: list[str]) -> tuple[int, int]:
    """Line range of the Reasoning section; empty when there is none."""
    for start, line in enumerate(lines):
        if "reasoning" in line.lower():
            end = start + 1
            while end < len(lines):
                if lines[end].startswith("#") or _LABEL.match(lines[end]):
                    break
                end += 1
            return start, end
    return 0, 0


def _extract_reasoning(lines: list[str]) -> str:
    start, end = _reasoning_span(lines)
    if start == end:
        return ""
    collected: list[str] = []
    _, sep, rest = lines[start].partition(":")
    if sep:
        rest = rest.strip().strip("*").strip()
        if rest:
            collected.append(rest)
    for line in lines[start + 1 : end]:
        item = line.strip().lstrip("*-").strip()
        if item:
            collected.append(item)
    return " ".join(collected)


def _extract_instruction(lines: list[str]) -> str:
    skip_start, skip_end = _reasoning_span(lines)
    for i, line in enumerate(lines):
        if skip_start <= i < skip_end:
            continue
        match = _INSTRUCTION_LABEL.match(line)
        if not match:
            continue
        rest = (match.group(1) or "").strip().strip("*").strip()
        if rest:
            return rest
        if i + 1 < len(lines):
            return lines[i + 1].strip()
        return ""
    return ""


def format_steps(steps: tuple[str, ...] | list[str]) -> str:
    """Number steps for the review prompt."""
    if not steps:
        return "No detailed steps recorded."
    return "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))
