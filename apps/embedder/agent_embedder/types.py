"""Types for the agent embedding pipeline.

AgentDescriptor describes one agent to embed; ResolvedArtifact is one file
the host build tool resolved for the project. EmbedResult is returned by a
successful embed_agents() call. Fatal failures derive from EmbedderError.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ResolvedArtifact:
    """A dependency the host build tool already resolved to a file."""

    group_id: str
    artifact_id: str
    path: str
    classifier: Optional[str] = None
    type: str = "jar"


@dataclass
class AgentDescriptor:
    """One agent to embed.

    The agent archive is found through the coordinates (matched against the
    resolved artifacts) or, failing that, through agent_path, which may point
    to a host file or to an entry inside the primary archive.
    agent_class is the only field the pipeline fills in: when it is not given
    it is discovered from the agent archive's own manifest.
    """

    group_id: Optional[str] = None
    artifact_id: Optional[str] = None
    classifier: Optional[str] = None
    agent_class: Optional[str] = None
    agent_args: Optional[str] = None
    agent_path: Optional[str] = None
    type: str = "jar"

    @property
    def coordinates(self) -> str:
        parts = [p for p in (self.group_id, self.artifact_id, self.classifier) if p]
        return ":".join(parts) if parts else (self.agent_path or "<unnamed agent>")

    def matches_artifact(self, artifact: ResolvedArtifact) -> bool:
        # Compare type first, it is a fixed value
        return (
            self.type == artifact.type
            and self.group_id == artifact.group_id
            and self.artifact_id == artifact.artifact_id
            and self.classifier == artifact.classifier
        )

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "artifact_id": self.artifact_id,
            "classifier": self.classifier,
            "agent_class": self.agent_class,
            "agent_args": self.agent_args,
            "agent_path": self.agent_path,
        }


@dataclass
class EmbedResult:
    """Outcome of one embedding run.

    warnings collects the non-fatal conflicts (e.g. an overwritten
    Launcher-Agent-Class attribute) that were logged along the way.
    """

    archive: str
    agents: list[AgentDescriptor] = field(default_factory=list)
    merged_entries: list[str] = field(default_factory=list)
    removed_embedded: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "archive": self.archive,
            "skipped": self.skipped,
            "agents": [a.to_dict() for a in self.agents],
            "merged_entry_count": len(self.merged_entries),
            "removed_embedded": self.removed_embedded,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class EmbedderError(Exception):
    """Base class for failures that abort an embedding run."""


class NotRunnableError(EmbedderError):
    """The primary archive has no manifest or no Main-Class attribute."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            f"Target archive is not executable. Reason: {reason}. "
            "Therefore, it does not make sense to embed any agents."
        )


class AgentNotFoundError(EmbedderError):
    """Neither a resolved artifact nor an agent path points to an existing archive."""

    def __init__(self, agent: AgentDescriptor, detail: str = ""):
        self.agent = agent
        message = f"Agent archive for {agent.coordinates} not found"
        super().__init__(f"{message}: {detail}" if detail else message)


class AgentClassUnresolvedError(EmbedderError):
    """No agent class was configured and none could be discovered."""

    def __init__(self, agent: AgentDescriptor):
        self.agent = agent
        super().__init__(
            f"Agent class for {agent.coordinates} is not configured and its archive "
            "manifest declares neither Premain-Class nor Agent-Class"
        )


class ArchiveIOError(EmbedderError):
    """Reading, writing or copying archive content failed."""
