"""Agent system — hooks, base agent, ReAct loop, supervisor, hub, pipelines."""

from duet.agent.agent import AgentConfig, AgentDefinition, discover_agents
from duet.agent.base import AgentBase
from duet.agent.hooks import HookRegistry, HookType
from duet.agent.hub import MsgHub
from duet.agent.loop import ModelCallError, ReActAgent, ReActConfig, TurnOutcome
from duet.agent.pipeline import (
    FanOutPipeline,
    ForLoopPipeline,
    PipelineError,
    SequentialPipeline,
    WhileLoopPipeline,
)
from duet.agent.supervisor import (
    Conclusion,
    Decision,
    DecisionAction,
    SupervisorAgent,
    SupervisorConfigError,
    SupervisoryConfig,
    extract_conclusion,
    parse_decision,
)

__all__ = [
    "AgentConfig",
    "AgentDefinition",
    "discover_agents",
    "AgentBase",
    "HookRegistry",
    "HookType",
    "MsgHub",
    "FanOutPipeline",
    "ForLoopPipeline",
    "PipelineError",
    "SequentialPipeline",
    "WhileLoopPipeline",
    "ModelCallError",
    "ReActAgent",
    "ReActConfig",
    "TurnOutcome",
    "Conclusion",
    "Decision",
    "DecisionAction",
    "SupervisorAgent",
    "SupervisorConfigError",
    "SupervisoryConfig",
    "extract_conclusion",
    "parse_decision",
]
