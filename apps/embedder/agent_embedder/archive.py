"""Zip archives as mutable, randomly addressable virtual filesystems.

Entry point: open_archive(location, create=False) -> Archive | None

A location is either a host path or an ArchivePath naming an entry inside an
archive that is already open. zipfile can neither update a member in place
nor open a member of a member for writing, so one of two strategies is
selected per location:

- HostZipStrategy reads the container directly and buffers changes in
  memory. close() rewrites the container into a temporary sibling file and
  renames it over the original.
- NestedZipStrategy copies the nested entry out to a private temporary
  directory, opens the copy with the host strategy, and on close writes the
  modified copy back into the parent archive before deleting the directory.

Unmodified archives are never rewritten. Leading bytes before the first
entry (e.g. a "#!" interpreter line of a zipapp) and the file mode are kept.
"""

import logging
import os
import shutil
import struct
import tempfile
import time
import zipfile
import zlib
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from agent_embedder.types import ArchiveIOError

logger = logging.getLogger(__name__)

_ZIP_ERRORS = (OSError, zipfile.BadZipFile, zlib.error, NotImplementedError)

# unix permission bits in the high word of external_attr; 0x10 is the MS-DOS directory flag
_FILE_ATTR = 0o100644 << 16
_DIR_ATTR = (0o40755 << 16) | 0x10

# zipfile writes its own ZIP64 extra field when an entry needs one
_ZIP64_EXTRA_ID = 0x0001


def normalize_entry_name(name: str) -> str:
    """Turn a host-style or absolute path into a zip entry name."""
    normalized = str(name).replace("\\", "/").lstrip("/")
    while normalized.startswith("./"):
        normalized = normalized[2:].lstrip("/")
    return normalized


def _parent_dirs(name: str) -> list[str]:
    """Directories an entry makes exist: "a/b/c.txt" -> ["a", "a/b"], "a/b/" -> ["a", "a/b"]."""
    parts = name.rstrip("/").split("/")
    depth = len(parts) if name.endswith("/") else len(parts) - 1
    return ["/".join(parts[:i]) for i in range(1, depth + 1)]


def _new_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=time.localtime(time.time())[:6])
    if name.endswith("/"):
        info.external_attr = _DIR_ATTR
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.external_attr = _FILE_ATTR
        info.compress_type = zipfile.ZIP_DEFLATED
    return info


def _strip_zip64(extra: bytes) -> bytes:
    kept = bytearray()
    offset = 0
    while offset + 4 <= len(extra):
        header_id, size = struct.unpack("<HH", extra[offset:offset + 4])
        end = offset + 4 + size
        if header_id != _ZIP64_EXTRA_ID:
            kept += extra[offset:end]
        offset = end
    return bytes(kept)


def _copy_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    """Copy everything of an entry's header that is not recomputed on write."""
    copy = zipfile.ZipInfo(info.filename, date_time=info.date_time)
    copy.compress_type = info.compress_type
    copy.external_attr = info.external_attr
    copy.internal_attr = info.internal_attr
    copy.create_system = info.create_system
    copy.comment = info.comment
    copy.extra = _strip_zip64(info.extra)
    copy.flag_bits = info.flag_bits
    return copy


def _create_empty(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w"):
        pass


class Archive:
    """An open zip container.

    Entry names use "/" separators; names ending in "/" are directory
    entries. Directories are also implied by the files below them.
    Use as a context manager: a clean exit commits, an exception discards
    pending changes.
    """

    def __init__(
        self,
        path: Union[str, os.PathLike],
        on_close: Optional[Callable[["Archive", bool], None]] = None,
        display_name: Optional[str] = None,
    ):
        self.file_path = Path(path)
        self.name = display_name or str(self.file_path)
        self._on_close = on_close
        self._zip: Optional[zipfile.ZipFile] = None
        # pending entries hold (header template or None, data)
        self._entries: dict[str, Union[zipfile.ZipInfo, tuple[Optional[zipfile.ZipInfo], bytes]]] = {}
        # directory -> number of entries at or below it
        self._dir_counts: Counter = Counter()
        self._prefix = b""
        self._comment = b""
        self._modified = False
        self._closed = False
        self._load()

    def _load(self) -> None:
        try:
            self._zip = zipfile.ZipFile(self.file_path)
            infos = self._zip.infolist()
            for info in infos:
                self._add_entry(info.filename, info)
            self._comment = self._zip.comment
            first_offset = min((info.header_offset for info in infos), default=0)
            if first_offset:
                with open(self.file_path, "rb") as fh:
                    self._prefix = fh.read(first_offset)
        except _ZIP_ERRORS as exc:
            self._release()
            raise ArchiveIOError(f"Cannot open archive {self.name}: {exc}") from exc
        logger.debug("Opened archive %s (%d entries)", self.name, len(self._entries))

    # -- state ---------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def modified(self) -> bool:
        return self._modified

    def _check_open(self) -> None:
        if self._closed:
            raise ArchiveIOError(f"Archive {self.name} is closed")

    # -- queries -------------------------------------------------------------

    def entries(self) -> list[str]:
        """All entry names in archive order, directory entries included."""
        self._check_open()
        return list(self._entries)

    def is_file(self, name: str) -> bool:
        key = normalize_entry_name(name)
        return bool(key) and not key.endswith("/") and key in self._entries

    def is_dir(self, name: str) -> bool:
        key = normalize_entry_name(name).rstrip("/")
        return not key or self._dir_counts[key] > 0

    def exists(self, name: str) -> bool:
        return self.is_file(name) or self.is_dir(name)

    def find(self, predicate: Callable[[str], bool]) -> Optional[str]:
        """Return the first entry name (archive order) matching predicate."""
        self._check_open()
        return next((entry for entry in self._entries if predicate(entry)), None)

    def path(self, name: str) -> "ArchivePath":
        return ArchivePath(self, normalize_entry_name(name))

    # -- content -------------------------------------------------------------

    def read_bytes(self, name: str) -> bytes:
        self._check_open()
        key = normalize_entry_name(name)
        source = self._entries.get(key)
        if source is None or key.endswith("/"):
            raise ArchiveIOError(f"No such file '{key}' in {self.name}")
        if isinstance(source, tuple):
            return source[1]
        try:
            return self._zip.read(source)
        except _ZIP_ERRORS as exc:
            raise ArchiveIOError(f"Cannot read '{key}' from {self.name}: {exc}") from exc

    def write_bytes(self, name: str, data: bytes) -> None:
        """Create or replace a file entry.

        A replaced entry keeps its position and header metadata
        (compression method, attributes, timestamp, extra field).
        """
        self._check_open()
        key = normalize_entry_name(name)
        if not key or key.endswith("/"):
            raise ArchiveIOError(f"Invalid file name '{name}' for {self.name}")
        if self.is_dir(key):
            raise ArchiveIOError(f"Cannot write '{key}' in {self.name}: is a directory")
        current = self._entries.get(key)
        template = current[0] if isinstance(current, tuple) else current
        self._add_entry(key, (template, bytes(data)))
        self._modified = True

    def make_dir(self, name: str) -> None:
        """Add an explicit directory entry unless the directory already exists."""
        self._check_open()
        key = normalize_entry_name(name).rstrip("/")
        if not key or self.is_dir(key):
            return
        if self.is_file(key):
            raise ArchiveIOError(f"Cannot create directory '{key}' in {self.name}: is a file")
        self._add_entry(key + "/", (None, b""))
        self._modified = True

    def delete(self, name: str) -> bool:
        """Delete a file or an empty directory entry. Returns False if absent."""
        self._check_open()
        key = normalize_entry_name(name)
        if self.is_file(key):
            self._remove_entry(key)
            self._modified = True
            return True
        dir_key = key.rstrip("/") + "/"
        if dir_key in self._entries:
            if self._dir_counts[dir_key[:-1]] > 1:
                raise ArchiveIOError(f"Cannot delete '{dir_key}' in {self.name}: directory not empty")
            self._remove_entry(dir_key)
            self._modified = True
            return True
        return False

    def _add_entry(self, name: str, source) -> None:
        if name not in self._entries:
            self._dir_counts.update(_parent_dirs(name))
        self._entries[name] = source

    def _remove_entry(self, name: str) -> None:
        del self._entries[name]
        self._dir_counts.subtract(_parent_dirs(name))

    # -- lifecycle -----------------------------------------------------------

    def close(self, commit: bool = True) -> None:
        """Flush pending changes (if commit) and release resources. Idempotent."""
        if self._closed:
            return
        self._closed = True
        flushed = False
        try:
            if commit and self._modified:
                self._flush()
                flushed = True
            elif self._modified:
                logger.debug("Discarding pending changes to %s", self.name)
        finally:
            self._release()
            if self._on_close is not None:
                self._on_close(self, flushed)

    def _release(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def _flush(self) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.file_path.name}.", suffix=".tmp", dir=self.file_path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(self._prefix)
                with zipfile.ZipFile(fh, "w") as out:
                    out.comment = self._comment
                    for name, source in self._entries.items():
                        if isinstance(source, tuple):
                            template, data = source
                            info = _copy_info(template) if template is not None else _new_info(name)
                            out.writestr(info, data)
                        else:
                            out.writestr(_copy_info(source), self._zip.read(source))
            if self.file_path.exists():
                shutil.copymode(self.file_path, tmp_path)
            self._release()
            os.replace(tmp_path, self.file_path)
        except _ZIP_ERRORS as exc:
            tmp_path.unlink(missing_ok=True)
            raise ArchiveIOError(f"Cannot write archive {self.name}: {exc}") from exc
        logger.debug("Wrote archive %s (%d entries)", self.name, len(self._entries))

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close(commit=exc_type is None)
        return False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Archive({self.name!r}, {state})"


@dataclass(frozen=True)
class ArchivePath:
    """A location inside an open archive, usable as an open_archive() location."""

    archive: Archive
    name: str

    @property
    def file_name(self) -> str:
        return PurePosixPath(self.name).name

    def exists(self) -> bool:
        return self.archive.is_file(self.name)

    def __str__(self) -> str:
        return f"{self.archive.name}!/{self.name}"


Location = Union[str, os.PathLike, ArchivePath]


# ---------------------------------------------------------------------------
# Opening strategies
# ---------------------------------------------------------------------------


class ArchiveStrategy(ABC):
    @abstractmethod
    def supports(self, location: Location) -> bool:
        ...

    @abstractmethod
    def open(self, location: Location, create: bool) -> Optional[Archive]:
        ...


class HostZipStrategy(ArchiveStrategy):
    """Archives that are plain files on the host filesystem."""

    def supports(self, location: Location) -> bool:
        return isinstance(location, (str, os.PathLike))

    def open(self, location: Location, create: bool) -> Optional[Archive]:
        path = Path(location)
        if not path.exists():
            if not create:
                return None
            try:
                _create_empty(path)
            except OSError as exc:
                raise ArchiveIOError(f"Cannot create archive {path}: {exc}") from exc
            logger.debug("Created empty archive %s", path)
        return Archive(path)


class NestedZipStrategy(ArchiveStrategy):
    """Archives stored as an entry of another open archive."""

    def supports(self, location: Location) -> bool:
        return isinstance(location, ArchivePath)

    def open(self, location: Location, create: bool) -> Optional[Archive]:
        parent = location.archive
        exists = parent.is_file(location.name)
        if not exists and not create:
            return None
        data = parent.read_bytes(location.name) if exists else None

        temp_dir = Path(tempfile.mkdtemp(prefix="agent-embedder-"))
        temp_file = temp_dir / (location.file_name or "nested.zip")

        def write_back(archive: Archive, flushed: bool) -> None:
            try:
                # a newly created nested archive is written back even if left empty
                if flushed or data is None:
                    try:
                        content = temp_file.read_bytes()
                    except OSError as exc:
                        raise ArchiveIOError(f"Cannot read temporary copy of {location}: {exc}") from exc
                    parent.write_bytes(location.name, content)
                    logger.debug("Wrote nested archive %s back into %s", location.name, parent.name)
            finally:
                shutil.rmtree(temp_dir, ignore_errors=True)

        try:
            if data is None:
                _create_empty(temp_file)
            else:
                temp_file.write_bytes(data)
            return Archive(temp_file, on_close=write_back, display_name=str(location))
        except OSError as exc:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise ArchiveIOError(f"Cannot copy nested archive {location}: {exc}") from exc
        except ArchiveIOError:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise


_STRATEGIES: tuple[ArchiveStrategy, ...] = (NestedZipStrategy(), HostZipStrategy())


def select_strategy(location: Location) -> ArchiveStrategy:
    for strategy in _STRATEGIES:
        if strategy.supports(location):
            return strategy
    raise TypeError(f"Unsupported archive location: {location!r}")


def open_archive(location: Location, create: bool = False) -> Optional[Archive]:
    """Open an archive, or return None if it does not exist and create is False."""
    return select_strategy(location).open(location, create)
