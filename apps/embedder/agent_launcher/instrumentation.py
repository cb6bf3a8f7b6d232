"""Instrumentation context handed to every agent's startup hook."""

import sys
from importlib.abc import MetaPathFinder
from pathlib import Path
from typing import Optional

from agent_launcher.manifest import Manifest


class Instrumentation:
    """Per-process handle agents use to hook into module loading.

    Transformers are meta path finders; they see every import that happens
    after they are added, which includes the bundle's Main-Class.
    """

    def __init__(self, bundle: Optional[Path] = None, manifest: Optional[Manifest] = None):
        self.bundle = bundle
        self.manifest = manifest
        self._transformers: list[MetaPathFinder] = []

    @property
    def transformers(self) -> tuple[MetaPathFinder, ...]:
        return tuple(self._transformers)

    def add_transformer(self, finder: MetaPathFinder, first: bool = True) -> None:
        """Install a finder on sys.meta_path (ahead of the default finders unless first=False)."""
        if finder in self._transformers:
            return
        if first:
            sys.meta_path.insert(0, finder)
        else:
            sys.meta_path.append(finder)
        self._transformers.append(finder)

    def remove_transformer(self, finder: MetaPathFinder) -> bool:
        if finder not in self._transformers:
            return False
        self._transformers.remove(finder)
        if finder in sys.meta_path:
            sys.meta_path.remove(finder)
        return True

    def __repr__(self) -> str:
        return f"Instrumentation(bundle={self.bundle!r}, transformers={len(self._transformers)})"
