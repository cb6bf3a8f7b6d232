"""Access to the bundle the launcher was loaded from.

When the bundle runs as a zip archive the package is imported by zipimport,
whose loader can read any archive member. When it runs unpacked, the bundle
root is the directory above this package.
"""

import os
from pathlib import Path
from typing import Optional

from agent_launcher.manifest import MANIFEST_PATH, Manifest, ManifestFormatError, parse_manifest


class LauncherError(RuntimeError):
    """Raised when the bundle's launcher metadata is missing or inconsistent."""


def _zip_loader():
    loader = __spec__.loader if __spec__ is not None else None
    if getattr(loader, "archive", None):
        return loader
    return None


def bundle_location() -> Path:
    """Return the archive file (or unpacked root directory) of the running bundle."""
    loader = _zip_loader()
    if loader is not None:
        return Path(loader.archive)
    return Path(__file__).resolve().parent.parent


def read_bundle_resource(name: str) -> Optional[bytes]:
    """Read a file relative to the bundle root, or None if it does not exist."""
    loader = _zip_loader()
    if loader is not None:
        try:
            return loader.get_data(name.replace("/", os.sep))
        except OSError:
            return None
    path = bundle_location() / name
    if not path.is_file():
        return None
    return path.read_bytes()


def read_bundle_manifest() -> Manifest:
    data = read_bundle_resource(MANIFEST_PATH)
    if data is None:
        raise LauncherError(f"Bundle manifest '{MANIFEST_PATH}' not found in {bundle_location()}")
    try:
        return parse_manifest(data)
    except ManifestFormatError as exc:
        raise LauncherError(f"Bundle manifest '{MANIFEST_PATH}' is malformed: {exc}") from exc
