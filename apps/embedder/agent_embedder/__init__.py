"""Agent embedding for executable archives.

Public API:
    embed_agents(archive_path, agents, artifacts) -> EmbedResult
    open_archive(location, create=False) -> Archive | None
"""

from agent_embedder.archive import open_archive
from agent_embedder.embedder import embed_agents
from agent_embedder.types import AgentDescriptor, EmbedResult, ResolvedArtifact

__all__ = ["AgentDescriptor", "EmbedResult", "ResolvedArtifact", "embed_agents", "open_archive"]
