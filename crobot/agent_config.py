"""Agent configuration and its resolution into a run configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

DEFAULT_TIMEOUT = 600.0
"""Default agent execution timeout in seconds."""


class AgentConfigError(ValueError):
    """Raised when no usable agent can be resolved from the configuration."""


@dataclass
class AgentDef:
    """How to launch one named agent."""

    command: str = ""
    args: list[str] = field(default_factory=list)


@dataclass
class AgentConfig:
    """The agent section of the application configuration."""

    default: str = ""
    timeout: int = 0
    agents: dict[str, AgentDef] = field(default_factory=dict)


@dataclass
class Config:
    """Application configuration as far as running agents is concerned."""

    agent: AgentConfig = field(default_factory=AgentConfig)


@dataclass
class RunConfig:
    """Resolved settings for running one agent; timeout is in seconds."""

    name: str
    command: str
    args: list[str]
    timeout: float


def resolve_agent_config(cfg: Config, agent_name: str = "") -> RunConfig:
    """Pick the named agent, or the configured default when no name is given."""
    name = agent_name or cfg.agent.default
    if not name:
        raise AgentConfigError("no agent specified and no default agent configured")

    definition = cfg.agent.agents.get(name)
    if definition is None:
        raise AgentConfigError(f"agent {json.dumps(name)} not found in configuration")

    timeout = float(cfg.agent.timeout) if cfg.agent.timeout > 0 else DEFAULT_TIMEOUT
    return RunConfig(
        name=name,
        command=definition.command,
        args=list(definition.args),
        timeout=timeout,
    )