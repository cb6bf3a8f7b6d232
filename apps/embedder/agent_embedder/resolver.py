"""Agent archive location and agent class resolution.

Location precedence for one agent:
1. the first resolved artifact matching the agent's coordinates
2. the agent's explicit agent_path

The location is then looked up on the host filesystem and, when needed,
inside the primary archive (see locate_agent_archive).

Agent class precedence: explicit agent_class, then Premain-Class, then
Agent-Class from the agent archive's own manifest.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from agent_embedder.archive import Archive, ArchivePath
from agent_embedder.manifest import read_manifest
from agent_embedder.merger import locate_embedded_copy
from agent_embedder.types import (
    AgentClassUnresolvedError,
    AgentDescriptor,
    AgentNotFoundError,
    ResolvedArtifact,
)
from agent_launcher.manifest import ManifestFormatError

logger = logging.getLogger(__name__)

AGENT_CLASS_ATTRIBUTES = ("Premain-Class", "Agent-Class")


@dataclass
class AgentSource:
    """Where to read an agent archive from.

    embedded_path is the nested duplicate inside the primary archive, if one
    was looked for and found (it may also be the location itself).
    """

    location: Union[Path, ArchivePath]
    embedded_path: Optional[str] = None


def resolve_agent_location(agent: AgentDescriptor, artifacts: Sequence[ResolvedArtifact]) -> str:
    for artifact in artifacts:
        if agent.matches_artifact(artifact):
            return artifact.path
    if agent.agent_path:
        return agent.agent_path
    raise AgentNotFoundError(agent, "no matching resolved artifact and no agent path")


def locate_agent_archive(
    primary: Archive,
    agent: AgentDescriptor,
    location: str,
    search_embedded: bool = False,
    prefer_external: bool = True,
) -> AgentSource:
    """Pick the host file or the nested copy inside primary for an agent."""
    host_path = Path(location)
    external_found = host_path.is_file()

    embedded_path = None
    if search_embedded or not external_found or not prefer_external:
        embedded_path = locate_embedded_copy(primary, location)

    if external_found and (prefer_external or embedded_path is None):
        return AgentSource(host_path, embedded_path)
    if embedded_path is not None:
        return AgentSource(primary.path(embedded_path), embedded_path)
    raise AgentNotFoundError(agent, f"'{location}' exists neither on disk nor inside {primary.name}")


def discover_agent_class(source: Archive) -> Optional[str]:
    try:
        manifest = read_manifest(source)
    except ManifestFormatError as exc:
        logger.warning("Cannot read manifest of agent archive %s: %s", source.name, exc)
        return None
    if manifest is None:
        return None
    for attribute in AGENT_CLASS_ATTRIBUTES:
        value = (manifest.main.get(attribute) or "").strip()
        if value:
            return value
    return None


def resolve_agent_class(agent: AgentDescriptor, source: Archive) -> str:
    """Fill in agent.agent_class from the agent archive if it was not configured."""
    if agent.agent_class:
        return agent.agent_class
    discovered = discover_agent_class(source)
    if not discovered:
        raise AgentClassUnresolvedError(agent)
    logger.info("Discovered agent class %s for %s", discovered, agent.coordinates)
    agent.agent_class = discovered
    return discovered
