"""JAR manifest codec (META-INF/MANIFEST.MF).

Format rules followed when reading and writing:
- one "Name: value" header per logical line, UTF-8 encoded
- physical lines are at most 72 bytes; longer headers continue on lines
  starting with a single space
- a blank line ends a section; the first section holds the main attributes,
  every later section starts with a "Name:" header
- Manifest-Version, when present, is written first

Stdlib only: this module is copied into bundles together with the launcher.
"""

import re
from collections.abc import Iterable, Iterator, MutableMapping
from typing import Optional, Union

MANIFEST_PATH = "META-INF/MANIFEST.MF"
MANIFEST_VERSION = "Manifest-Version"
SECTION_NAME = "Name"

_MAX_LINE_BYTES = 72
_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_ATTRIBUTE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,70}$")


class ManifestFormatError(ValueError):
    """Raised for unparsable manifest text or invalid attribute names/values."""


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not _ATTRIBUTE_NAME.match(name):
        raise ManifestFormatError(f"Invalid manifest attribute name: {name!r}")


def _check_value(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise ManifestFormatError(f"Manifest attribute '{name}' must be a string, got {type(value).__name__}")
    if "\r" in value or "\n" in value or "\0" in value:
        raise ManifestFormatError(f"Manifest attribute '{name}' contains a line break or NUL")


class Attributes(MutableMapping):
    """Ordered attribute map with case-insensitive names.

    Overwriting an attribute keeps its original spelling and position.
    """

    def __init__(self, items: Union[Iterable[tuple[str, str]], dict, None] = None):
        self._data: dict[str, tuple[str, str]] = {}
        if items:
            self.update(items)

    def __getitem__(self, name: str) -> str:
        return self._data[name.lower()][1]

    def __setitem__(self, name: str, value: str) -> None:
        _check_name(name)
        _check_value(name, value)
        key = name.lower()
        existing = self._data.get(key)
        self._data[key] = (existing[0] if existing else name, value)

    def __delitem__(self, name: str) -> None:
        del self._data[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attributes):
            return NotImplemented
        return {k: v for k, (_, v) in self._data.items()} == {k: v for k, (_, v) in other._data.items()}

    def __repr__(self) -> str:
        return f"Attributes({dict(self.items())!r})"


class Manifest:
    """Main attributes plus ordered named sections."""

    def __init__(self) -> None:
        self.main = Attributes()
        self.sections: dict[str, Attributes] = {}

    def section(self, name: str) -> Optional[Attributes]:
        return self.sections.get(name)

    def to_bytes(self) -> bytes:
        out = bytearray()
        version = self.main.get(MANIFEST_VERSION)
        if version is not None:
            _write_header(out, MANIFEST_VERSION, version)
        for name, value in self.main.items():
            if name.lower() != MANIFEST_VERSION.lower():
                _write_header(out, name, value)
        out += b"\r\n"

        for section_name, attributes in self.sections.items():
            _write_header(out, SECTION_NAME, section_name)
            for name, value in attributes.items():
                _write_header(out, name, value)
            out += b"\r\n"
        return bytes(out)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.main == other.main and self.sections == other.sections

    def __repr__(self) -> str:
        return f"Manifest(main={self.main!r}, sections={self.sections!r})"


def _write_header(out: bytearray, name: str, value: str) -> None:
    """Append one header, wrapped to 72-byte physical lines."""
    data = f"{name}: {value}".encode("utf-8")
    start = 0
    limit = _MAX_LINE_BYTES
    while len(data) - start > limit:
        end = start + limit
        # never split a multi-byte UTF-8 sequence
        while end > start and (data[end] & 0xC0) == 0x80:
            end -= 1
        out += data[start:end]
        out += b"\r\n "
        start = end
        limit = _MAX_LINE_BYTES - 1
    out += data[start:]
    out += b"\r\n"


def _split_blocks(text: str) -> list[list[tuple[int, str]]]:
    """Group logical header lines into blocks separated by blank lines.

    Block 0 is always the main section, even when empty.
    """
    blocks: list[list[tuple[int, str]]] = [[]]
    for lineno, line in enumerate(_LINE_BREAK.split(text), start=1):
        if not line:
            if len(blocks) == 1 or blocks[-1]:
                blocks.append([])
            continue
        if line.startswith(" "):
            if not blocks[-1]:
                raise ManifestFormatError(f"line {lineno}: continuation line without a header")
            header_lineno, previous = blocks[-1][-1]
            blocks[-1][-1] = (header_lineno, previous + line[1:])
            continue
        blocks[-1].append((lineno, line))
    return blocks


def _parse_header(lineno: int, line: str) -> tuple[str, str]:
    name, sep, value = line.partition(": ")
    if not sep:
        raise ManifestFormatError(f"line {lineno}: invalid header {line!r}")
    try:
        _check_name(name)
    except ManifestFormatError as exc:
        raise ManifestFormatError(f"line {lineno}: {exc}") from None
    return name, value


def parse_manifest(data: Union[bytes, str]) -> Manifest:
    """Parse manifest bytes (or text) into a Manifest."""
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ManifestFormatError(f"manifest is not valid UTF-8: {exc}") from exc
    else:
        text = data
    text = text.lstrip("\ufeff")

    manifest = Manifest()
    blocks = _split_blocks(text)

    for lineno, line in blocks[0]:
        name, value = _parse_header(lineno, line)
        manifest.main[name] = value

    for block in blocks[1:]:
        if not block:
            continue
        lineno, line = block[0]
        name, section_name = _parse_header(lineno, line)
        if name.lower() != SECTION_NAME.lower():
            raise ManifestFormatError(f"line {lineno}: section must start with '{SECTION_NAME}:', got {name!r}")
        attributes = manifest.sections.setdefault(section_name, Attributes())
        for lineno, line in block[1:]:
            name, value = _parse_header(lineno, line)
            attributes[name] = value

    return manifest
