"""Primary archive manifest editing.

load_runnable_manifest() refuses archives that cannot be launched (no
manifest or no Main-Class), before anything else is touched.
register_bootstrap() declares the launcher agent, register_agents() writes
the agent attribute group the launcher reads at startup, and persist()
replaces the manifest entry in place.
"""

import logging
from collections.abc import Sequence
from typing import Optional

from agent_embedder.archive import Archive
from agent_embedder.types import AgentClassUnresolvedError, AgentDescriptor, EmbedderError, NotRunnableError
from agent_launcher.launcher import AGENT_ARGS, AGENT_ATTRIBUTES_GROUP, AGENT_CLASS, AGENT_COUNT
from agent_launcher.manifest import MANIFEST_PATH, Attributes, Manifest, ManifestFormatError, parse_manifest

logger = logging.getLogger(__name__)

MANIFEST_HEADER_MAIN_CLASS = "Main-Class"
MANIFEST_HEADER_LAUNCHER_AGENT = "Launcher-Agent-Class"


def read_manifest(archive: Archive) -> Optional[Manifest]:
    """Parse the archive's manifest, or return None if it has none.

    Raises ManifestFormatError for an unparsable manifest.
    """
    if not archive.is_file(MANIFEST_PATH):
        return None
    return parse_manifest(archive.read_bytes(MANIFEST_PATH))


def load_runnable_manifest(archive: Archive) -> Manifest:
    try:
        manifest = read_manifest(archive)
    except ManifestFormatError as exc:
        raise NotRunnableError(f"malformed manifest file '{MANIFEST_PATH}' ({exc})") from exc
    if manifest is None:
        raise NotRunnableError(f"missing manifest file '{MANIFEST_PATH}'")
    if manifest.main.get(MANIFEST_HEADER_MAIN_CLASS) is None:
        raise NotRunnableError(f"missing manifest attribute '{MANIFEST_HEADER_MAIN_CLASS}'")
    return manifest


def register_bootstrap(manifest: Manifest, class_name: str) -> Optional[str]:
    """Set Launcher-Agent-Class. Returns a warning if another value was overwritten."""
    warning = None
    existing = manifest.main.get(MANIFEST_HEADER_LAUNCHER_AGENT)
    if existing is not None and existing != class_name:
        warning = f"Overwriting existing manifest attribute '{MANIFEST_HEADER_LAUNCHER_AGENT}: {existing}'"
        logger.warning(warning)
    logger.debug("Setting manifest attribute '%s: %s'", MANIFEST_HEADER_LAUNCHER_AGENT, class_name)
    manifest.main[MANIFEST_HEADER_LAUNCHER_AGENT] = class_name
    return warning


def register_agents(manifest: Manifest, descriptors: Sequence[AgentDescriptor]) -> Attributes:
    """Replace the agent attribute group; index i matches activation order."""
    group = Attributes()
    group[AGENT_COUNT] = str(len(descriptors))
    for index, agent in enumerate(descriptors, start=1):
        if not agent.agent_class:
            raise AgentClassUnresolvedError(agent)
        try:
            group[f"{AGENT_CLASS}{index}"] = agent.agent_class
            if agent.agent_args:
                group[f"{AGENT_ARGS}{index}"] = agent.agent_args
        except ManifestFormatError as exc:
            raise EmbedderError(f"Cannot register agent {agent.coordinates}: {exc}") from exc
    manifest.sections[AGENT_ATTRIBUTES_GROUP] = group
    return group


def persist(manifest: Manifest, archive: Archive) -> None:
    archive.write_bytes(MANIFEST_PATH, manifest.to_bytes())
