"""Bundle entry point: start the launcher agent, then run Main-Class.

The embedder writes a root __main__.py calling main(), so that running the
bundle (python app.pyz) honours Launcher-Agent-Class the same way a runtime
with native launcher-agent support would.
"""

import importlib.util
import logging
import runpy
import sys
from typing import Any, Optional

from agent_launcher.bundle import LauncherError, bundle_location, read_bundle_manifest
from agent_launcher.instrumentation import Instrumentation
from agent_launcher.launcher import resolve_agent, resolve_object
from agent_launcher.manifest import Manifest

logger = logging.getLogger(__name__)

MAIN_CLASS = "Main-Class"
LAUNCHER_AGENT_CLASS = "Launcher-Agent-Class"


def _is_module(name: str) -> bool:
    if ":" in name:
        return False
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def run_main(name: str) -> Any:
    """Run a module as __main__, or call an object (or its main attribute)."""
    if _is_module(name):
        runpy.run_module(name, run_name="__main__", alter_sys=True)
        return None
    target = resolve_object(name)
    entry = getattr(target, "main", target)
    if not callable(entry):
        raise LauncherError(f"{MAIN_CLASS} '{name}' is not callable and has no main()")
    return entry()


def start_launcher_agent(manifest: Manifest, instrumentation: Instrumentation) -> None:
    launcher_agent = manifest.main.get(LAUNCHER_AGENT_CLASS)
    if not launcher_agent:
        return
    logger.debug("Starting launcher agent %s", launcher_agent)
    resolve_agent(launcher_agent).premain(None, instrumentation)


def main(argv: Optional[list[str]] = None) -> Any:
    if argv is not None:
        sys.argv[1:] = argv
    manifest = read_bundle_manifest()
    main_class = manifest.main.get(MAIN_CLASS)
    if not main_class:
        raise LauncherError(f"Bundle manifest has no '{MAIN_CLASS}' attribute")

    start_launcher_agent(manifest, Instrumentation(bundle_location(), manifest))
    return run_main(main_class)
