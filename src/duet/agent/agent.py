"""Agent definition — loaded from YAML frontmatter in markdown files."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from duet.agent.loop import ReActAgent
    from duet.context.management import CompactionConfig
    from duet.llm.provider import ChatModel
    from duet.tool.registry import Toolkit

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*\n?(.*)", re.DOTALL)


@dataclass
class AgentConfig:
    """Configuration for an agent, typically from YAML frontmatter."""

    name: str
    description: str = ""
    tools: list[str] = field(default_factory=list)
    max_iterations: int = 10
    memory_size: int = 100
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class AgentDefinition:
    """A named agent prompt plus its loop settings.

    Definitions are markdown files with YAML frontmatter:

        ---
        name: planner
        description: Reviews executor progress
        max_iterations: 3
        ---

        You review the work of another agent...
    """

    config: AgentConfig
    system_prompt: str = ""

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def tools(self) -> list[str]:
        return self.config.tools

    @classmethod
    def from_markdown(cls, path: str) -> AgentDefinition:
        """Load a definition from a markdown file with YAML frontmatter."""
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()

        config_dict, prompt = _parse_frontmatter(content)
        if "name" not in config_dict:
            config_dict["name"] = os.path.splitext(os.path.basename(path))[0]
        return cls.from_dict(config_dict, system_prompt=prompt.strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any], system_prompt: str = "") -> AgentDefinition:
        """Create a definition from a dictionary config.

        Unknown keys are ignored with a warning.
        """
        known = {f.name for f in fields(AgentConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown agent config keys: %s", ", ".join(unknown))
        config = AgentConfig(**{k: v for k, v in data.items() if k in known})
        return cls(config=config, system_prompt=system_prompt)

    def build(
        self,
        model: ChatModel,
        toolkit: Toolkit | None = None,
        compaction: CompactionConfig | None = None,
    ) -> ReActAgent:
        """Instantiate a ReActAgent from this definition.

        When the definition lists tools, only those tools of ``toolkit``
        are attached.
        """
        from duet.agent.loop import ReActAgent, ReActConfig
        from duet.context import History

        if toolkit is not None and self.tools:
            toolkit = toolkit.subset(self.tools)

        return ReActAgent(
            ReActConfig(
                name=self.name,
                system_prompt=self.system_prompt,
                model=model,
                toolkit=toolkit,
                memory=History(max_size=self.config.memory_size),
                max_iterations=self.config.max_iterations,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                compaction=compaction,
            )
        )


def _parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from markdown content.

    Returns (config_dict, body_text).

    Raises:
        ValueError: if the frontmatter is not a valid YAML mapping.
    """
    import yaml  # lazy import, only needed when loading agents

    match = _FRONTMATTER.match(content)
    if not match:
        return {}, content

    try:
        config = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid agent frontmatter: {e}") from e

    if not isinstance(config, dict):
        raise ValueError("Agent frontmatter must be a mapping")

    return config, match.group(2)


def discover_agents(search_dirs: list[str]) -> list[AgentDefinition]:
    """Discover agent definitions from markdown files in directories.

    Files that fail to parse are skipped with a warning.
    """
    agents = []
    for dir_path in search_dirs:
        if not os.path.isdir(dir_path):
            continue
        for fname in sorted(os.listdir(dir_path)):
            if not fname.endswith(".md"):
                continue
            full_path = os.path.join(dir_path, fname)
            try:
                agents.append(AgentDefinition.from_markdown(full_path))
            except (OSError, ValueError, TypeError) as e:
                logger.warning("Skipping agent file %s: %s", full_path, e)
    return agents
