"""Configuration — Pydantic models for duet settings."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from duet.context.management import CompactionConfig
from duet.llm.provider import ChatModel, create_model

logger = logging.getLogger(__name__)


class LLMConfig(BaseModel):
    """LLM provider configuration.

    Model names use litellm's provider-prefix format:
        "anthropic/claude-sonnet-4-5-20250929"
        "openai/gpt-4o"

    API keys are read from env vars automatically by litellm
    (ANTHROPIC_API_KEY, OPENAI_API_KEY, ...).
    """

    model: str = Field(default="anthropic/claude-sonnet-4-5-20250929")
    fast_model: str = Field(
        default="anthropic/claude-haiku-4-5-20251001",
        description="Lightweight model for compaction summaries (litellm format)",
    )
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None)
    stream: bool = Field(default=False, description="Consume model output as a stream")


class AgentSettings(BaseModel):
    """Defaults for every ReAct agent."""

    max_iterations: int = Field(default=10, ge=1, description="Max model calls per reply")
    memory_size: int = Field(
        default=100, description="History capacity in messages (<= 0 is unbounded)"
    )


class CompactionSettings(BaseModel):
    """Memory compaction policy."""

    enabled: bool = Field(default=True)
    trigger_threshold: int = Field(
        default=8000, gt=0, description="Compact once memory reaches this many tokens"
    )
    keep_recent: int = Field(
        default=3, ge=0, description="Most recent messages kept verbatim"
    )


class SupervisorSettings(BaseModel):
    """Planner/executor double-loop settings."""

    max_loop_iterations: int = Field(default=3, ge=1)
    verbose_logging: bool = Field(default=False)


class DuetConfig(BaseModel):
    """Top-level duet configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    compaction: CompactionSettings = Field(default_factory=CompactionSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    agents_dir: str = Field(
        default="agents", description="Directory for agent definitions"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> DuetConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            DUET_MODEL                 - Override primary model (litellm format)
            DUET_FAST_MODEL            - Override compaction model
            DUET_MAX_ITERATIONS        - Override agent max_iterations
            DUET_MAX_LOOP_ITERATIONS   - Override supervisor max_loop_iterations
            DUET_COMPACTION_THRESHOLD  - Override compaction trigger_threshold
        """
        # override=True so an edited .env wins over stale exported values
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}
        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)
            logger.debug("Loaded config from %s", config_path)

        _override(config_data, "llm", "model", os.environ.get("DUET_MODEL"))
        _override(config_data, "llm", "fast_model", os.environ.get("DUET_FAST_MODEL"))
        _override(
            config_data, "agent", "max_iterations", _env_int("DUET_MAX_ITERATIONS")
        )
        _override(
            config_data,
            "supervisor",
            "max_loop_iterations",
            _env_int("DUET_MAX_LOOP_ITERATIONS"),
        )
        _override(
            config_data,
            "compaction",
            "trigger_threshold",
            _env_int("DUET_COMPACTION_THRESHOLD"),
        )

        return cls.model_validate(config_data)

    def create_model(self, fast: bool = False) -> ChatModel:
        """Build the primary model, or the fast one used for summaries."""
        return create_model(
            self.llm.fast_model if fast else self.llm.model,
            stream=self.llm.stream,
            temperature=self.llm.temperature,
            max_tokens=self.llm.max_tokens,
        )

    def compaction_config(self) -> CompactionConfig:
        """Compaction policy summarizing with the fast model."""
        return CompactionConfig(
            enabled=self.compaction.enabled,
            trigger_threshold=self.compaction.trigger_threshold,
            keep_recent=self.compaction.keep_recent,
            compaction_model=self.create_model(fast=True),
        )


def _override(data: dict[str, Any], section: str, key: str, value: Any) -> None:
    if value is None or value == "":
        return
    data.setdefault(section, {})[key] = value


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
