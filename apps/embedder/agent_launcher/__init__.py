"""Runtime side of agent embedding.

This package is copied verbatim into every processed bundle and must only
depend on the standard library.

Public API:
    AgentLauncher.premain(agent_args, instrumentation)
    AgentLauncher.agentmain(agent_args, instrumentation)
    Instrumentation
    parse_manifest(data) -> Manifest
"""

from agent_launcher.bundle import LauncherError
from agent_launcher.instrumentation import Instrumentation
from agent_launcher.launcher import AgentLauncher, LauncherState, resolve_agent
from agent_launcher.manifest import Manifest, ManifestFormatError, parse_manifest

__all__ = [
    "AgentLauncher",
    "Instrumentation",
    "LauncherError",
    "LauncherState",
    "Manifest",
    "ManifestFormatError",
    "parse_manifest",
    "resolve_agent",
]
