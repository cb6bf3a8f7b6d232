"""Embeds agents into an executable archive so they start with the bundle.

Entry point: embed_agents(archive_path, agents, artifacts) -> EmbedResult

Pipeline, all on one open primary archive that is committed on success and
left untouched on any failure:
1. load the runnable manifest (Main-Class required)
2. declare AgentLauncher as Launcher-Agent-Class and copy the launcher
   package plus the root __main__.py into the archive
3. per agent: locate its archive, fill in the agent class, unpack it into
   the primary archive, optionally delete the nested duplicate
4. write the agent attribute group and persist the manifest
"""

import logging
from collections.abc import Sequence
from importlib import resources
from pathlib import Path
from typing import Union

from agent_embedder.archive import Archive, ArchivePath, open_archive
from agent_embedder.manifest import load_runnable_manifest, persist, register_agents, register_bootstrap
from agent_embedder.merger import merge_into, remove_embedded_copy
from agent_embedder.resolver import locate_agent_archive, resolve_agent_class, resolve_agent_location
from agent_embedder.types import (
    AgentDescriptor,
    AgentNotFoundError,
    ArchiveIOError,
    EmbedResult,
    ResolvedArtifact,
)

logger = logging.getLogger(__name__)

LAUNCHER_PACKAGE = "agent_launcher"
LAUNCHER_AGENT_CLASS = "agent_launcher.launcher.AgentLauncher"
BUNDLE_MAIN = "__main__.py"
BUNDLE_MAIN_SOURCE = (
    b"# Generated by agent-embedder: starts the launcher agent, then Main-Class.\n"
    b"from agent_launcher.startup import main\n"
    b"\n"
    b"main()\n"
)


def embed_launcher(primary: Archive) -> list[str]:
    """Copy the launcher package and the bundle __main__.py into primary.

    Returns warnings for replaced content that was not ours.
    """
    warnings: list[str] = []
    try:
        package = resources.files(LAUNCHER_PACKAGE)
        modules = sorted(
            (r for r in package.iterdir() if r.is_file() and r.name.endswith(".py")),
            key=lambda r: r.name,
        )
        for module in modules:
            primary.write_bytes(f"{LAUNCHER_PACKAGE}/{module.name}", module.read_bytes())
    except OSError as exc:
        raise ArchiveIOError(f"Cannot find/open launcher agent resources: {exc}") from exc
    if not modules:
        raise ArchiveIOError(f"Launcher agent package '{LAUNCHER_PACKAGE}' has no modules")

    if primary.is_file(BUNDLE_MAIN) and primary.read_bytes(BUNDLE_MAIN) != BUNDLE_MAIN_SOURCE:
        warning = f"Replacing existing {BUNDLE_MAIN}; the bundle now starts through Main-Class"
        logger.warning(warning)
        warnings.append(warning)
    primary.write_bytes(BUNDLE_MAIN, BUNDLE_MAIN_SOURCE)
    logger.debug("Embedded launcher agent %s (%d modules)", LAUNCHER_AGENT_CLASS, len(modules))
    return warnings


def _unpack_agent(primary: Archive, agent: AgentDescriptor, location: Union[Path, ArchivePath]) -> list[str]:
    source = open_archive(location)
    if source is None:
        raise AgentNotFoundError(agent, f"cannot open '{location}'")
    with source:
        resolve_agent_class(agent, source)
        merge = merge_into(primary, source)
    if not merge.is_success:
        raise ArchiveIOError(
            f"Problem when unpacking agent archive {location}: {merge.failure.error}"
        )
    return merge.copied


def embed_agents(
    archive_path: Union[str, Path],
    agents: Sequence[AgentDescriptor],
    artifacts: Sequence[ResolvedArtifact] = (),
    remove_embedded_agents: bool = False,
    prefer_external_agents: bool = True,
) -> EmbedResult:
    """Embed agents into the executable archive at archive_path.

    Raises an EmbedderError subclass on any failure; the archive is then
    left as it was.
    """
    result = EmbedResult(archive=str(archive_path))
    if not agents:
        logger.warning("List of agents to embed is empty, skipping execution")
        result.skipped = True
        return result

    primary = open_archive(archive_path)
    if primary is None:
        raise ArchiveIOError(f"Cannot open archive {archive_path}: file not found")

    with primary:
        manifest = load_runnable_manifest(primary)
        warning = register_bootstrap(manifest, LAUNCHER_AGENT_CLASS)
        if warning:
            result.warnings.append(warning)
        result.warnings.extend(embed_launcher(primary))

        logger.info("Embedding %d agent(s) into %s", len(agents), primary.name)
        for agent in agents:
            location = resolve_agent_location(agent, artifacts)
            source = locate_agent_archive(
                primary,
                agent,
                location,
                search_embedded=remove_embedded_agents,
                prefer_external=prefer_external_agents,
            )
            logger.info("Processing agent %s", source.location)
            result.merged_entries.extend(_unpack_agent(primary, agent, source.location))

            if remove_embedded_agents and source.embedded_path:
                if remove_embedded_copy(primary, source.embedded_path):
                    result.removed_embedded.append(source.embedded_path)

        register_agents(manifest, agents)
        persist(manifest, primary)

    result.agents = list(agents)
    logger.info(
        "Embedded %d agent(s) into %s (%d entries merged, %d duplicates removed)",
        len(result.agents), archive_path, len(result.merged_entries), len(result.removed_embedded),
    )
    return result
