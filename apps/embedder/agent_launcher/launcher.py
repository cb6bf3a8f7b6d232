"""Launcher agent that starts every agent registered in the bundle manifest.

A runtime only auto-starts one launcher agent per bundle and passes it no
argument string. The embedder therefore declares AgentLauncher as the
bundle's Launcher-Agent-Class and records the real agents in one manifest
section:

    Name: agent-embedder/agents
    Agent-Count: 2
    Agent-Class-1: org.acme.weaver.Agent
    Agent-Class-2: org.acme.tracing.Agent
    Agent-Args-2: sample=0.5

At startup AgentLauncher.premain() calls each agent's
premain(agent_args, instrumentation) in index order. An exception raised by
an agent propagates unchanged and the remaining agents are not started.
"""

import enum
import importlib
import logging
from typing import Any, Optional, Protocol

from agent_launcher.bundle import LauncherError, read_bundle_manifest
from agent_launcher.manifest import Manifest

logger = logging.getLogger(__name__)

AGENT_ATTRIBUTES_GROUP = "agent-embedder/agents"
AGENT_COUNT = "Agent-Count"
AGENT_CLASS = "Agent-Class-"
AGENT_ARGS = "Agent-Args-"


class Agent(Protocol):
    """Startup hooks an agent exposes (as a module, class or instance)."""

    def premain(self, agent_args: Optional[str], instrumentation: Any) -> None:
        ...


class LauncherState(enum.Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    TERMINAL = "terminal"


def resolve_object(name: str) -> Any:
    """Import a dotted name ("pkg.mod", "pkg.mod.Attr") or "pkg.mod:Attr".

    For dotted names the longest importable module prefix wins and the rest
    is looked up as attributes.
    """
    if ":" in name:
        module_name, _, attr_path = name.partition(":")
        attrs = attr_path.split(".") if attr_path else []
        candidates = [(module_name, attrs)]
    else:
        parts = name.split(".")
        candidates = [(".".join(parts[:i]), parts[i:]) for i in range(len(parts), 0, -1)]

    for module_name, attrs in candidates:
        if not module_name:
            continue
        try:
            target = importlib.import_module(module_name)
        except ModuleNotFoundError as exc:
            # only skip if the candidate itself (or one of its parents) is missing,
            # not when an import inside that module fails
            if exc.name and (module_name == exc.name or module_name.startswith(exc.name + ".")):
                continue
            raise
        try:
            for attr in attrs:
                target = getattr(target, attr)
        except AttributeError as exc:
            raise LauncherError(f"Cannot resolve '{name}': {exc}") from exc
        return target

    raise LauncherError(f"Cannot import '{name}'")


def resolve_agent(name: str) -> Agent:
    target = resolve_object(name)
    if not callable(getattr(target, "premain", None)):
        raise LauncherError(f"Agent '{name}' has no premain(agent_args, instrumentation) hook")
    return target


class AgentLauncher:
    """Dispatches the agents listed in a manifest, exactly once."""

    def __init__(self, manifest: Manifest):
        self.manifest = manifest
        self.state = LauncherState.IDLE
        self.started: list[str] = []

    @classmethod
    def premain(cls, agent_args: Optional[str], instrumentation: Any) -> "AgentLauncher":
        """Launcher-Agent-Class hook. The launcher's own argument string is ignored."""
        launcher = cls(read_bundle_manifest())
        launcher.dispatch(instrumentation)
        return launcher

    @classmethod
    def agentmain(cls, agent_args: Optional[str], instrumentation: Any) -> "AgentLauncher":
        # Attach path: per-agent argument strings come from the manifest.
        return cls.premain(None, instrumentation)

    def registered_agents(self) -> list[tuple[str, Optional[str]]]:
        """Return (agent_class, agent_args) pairs in activation order."""
        group = self.manifest.section(AGENT_ATTRIBUTES_GROUP)
        if group is None:
            raise LauncherError(f"Manifest section '{AGENT_ATTRIBUTES_GROUP}' not found")

        raw_count = group.get(AGENT_COUNT)
        try:
            count = int(raw_count)
        except (TypeError, ValueError):
            raise LauncherError(f"Invalid or missing '{AGENT_COUNT}' attribute: {raw_count!r}") from None
        if count < 0:
            raise LauncherError(f"Invalid '{AGENT_COUNT}' attribute: {raw_count!r}")

        agents: list[tuple[str, Optional[str]]] = []
        for index in range(1, count + 1):
            agent_class = group.get(f"{AGENT_CLASS}{index}")
            if not agent_class:
                raise LauncherError(f"Missing '{AGENT_CLASS}{index}' attribute")
            agents.append((agent_class, group.get(f"{AGENT_ARGS}{index}")))
        return agents

    def dispatch(self, instrumentation: Any) -> None:
        if self.state is not LauncherState.IDLE:
            raise LauncherError(f"Launcher already {self.state.value}")
        self.state = LauncherState.DISPATCHING
        try:
            for agent_class, agent_args in self.registered_agents():
                logger.info("Starting agent %s with arguments %s", agent_class, agent_args)
                resolve_agent(agent_class).premain(agent_args, instrumentation)
                self.started.append(agent_class)
        finally:
            self.state = LauncherState.TERMINAL
