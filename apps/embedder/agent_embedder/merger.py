"""Unpacks agent archives into the primary archive.

Agents are loaded from the primary archive's root, not from nested
archives, so every entry of the agent archive is copied across. Entries the
primary archive already has (its own META-INF/MANIFEST.MF in particular)
are never overwritten.
"""

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional

from agent_embedder.archive import Archive, normalize_entry_name
from agent_embedder.types import ArchiveIOError

logger = logging.getLogger(__name__)


@dataclass
class CopyOutcome:
    name: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MergeResult:
    """Entries copied and skipped; failure is the copy that stopped the merge."""

    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failure: Optional[CopyOutcome] = None

    @property
    def is_success(self) -> bool:
        return self.failure is None


def _copy_entry(primary: Archive, source: Archive, name: str) -> CopyOutcome:
    try:
        if name.endswith("/"):
            primary.make_dir(name)
        else:
            primary.write_bytes(name, source.read_bytes(name))
    except ArchiveIOError as exc:
        return CopyOutcome(name, error=str(exc))
    return CopyOutcome(name)


def merge_into(primary: Archive, source: Archive) -> MergeResult:
    result = MergeResult()
    for name in source.entries():
        if primary.exists(name):
            result.skipped.append(name)
            continue
        outcome = _copy_entry(primary, source, name)
        if not outcome.ok:
            logger.error("Problem when unpacking %s from %s: %s", name, source.name, outcome.error)
            result.failure = outcome
            break
        logger.debug("Unpacking: %s", name)
        result.copied.append(name)

    logger.info(
        "Merged %s into %s: %d copied, %d skipped",
        source.name, primary.name, len(result.copied), len(result.skipped),
    )
    return result


def locate_embedded_copy(primary: Archive, expected_path: str) -> Optional[str]:
    """Find a nested copy of an agent archive inside the primary archive.

    Checks the exact path first, then falls back to the first file with the
    same file name anywhere in the archive (e.g. under a vendored lib/ dir).
    """
    name = normalize_entry_name(expected_path)
    if primary.is_file(name):
        return name
    file_name = PurePosixPath(name).name
    if not file_name:
        return None
    return primary.find(lambda entry: not entry.endswith("/") and PurePosixPath(entry).name == file_name)


def remove_embedded_copy(primary: Archive, path: str) -> bool:
    if not primary.is_file(path):
        return False
    logger.info("Removing embedded agent: %s", path)
    return primary.delete(path)
