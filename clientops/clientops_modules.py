"""
Dynamic module import by locator.

  http:// or https://   source fetched and executed into a fresh module
  file://... or *.py    loaded from the filesystem
  anything else         imported as a dotted module name
"""
import os
import sys
import types
import logging
import importlib
import importlib.util
from typing import Optional

from clientops.clientops_http import fetch_text

logger = logging.getLogger(__name__)


def _module_name_for(locator: str) -> str:
    base = os.path.splitext(os.path.basename(locator.rstrip("/")))[0] or "module"
    return "clientops_dyn_" + "".join(ch if ch.isalnum() else "_" for ch in base)


def _load_from_file(path: str) -> types.ModuleType:
    if not os.path.isfile(path):
        raise ModuleNotFoundError(f"No module file at {path}")
    name = _module_name_for(path)
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _load_from_source(source: str, locator: str) -> types.ModuleType:
    module = types.ModuleType(_module_name_for(locator))
    module.__file__ = locator
    code = compile(source, locator, "exec")
    exec(code, module.__dict__)
    return module


async def import_module(locator: str, *, base_dir: Optional[str] = None,
                        timeout: Optional[float] = None) -> types.ModuleType:
    """Imports a module namespace from `locator`."""
    if locator.startswith(("http://", "https://")):
        logger.debug("Fetching module source from %s", locator)
        source = await fetch_text(locator, timeout=timeout)
        return _load_from_source(source, locator)
    if locator.startswith("file://") or locator.endswith(".py"):
        path = locator[7:] if locator.startswith("file://") else locator
        if not os.path.isabs(path):
            path = os.path.normpath(os.path.join(base_dir or os.getcwd(), path))
        return _load_from_file(path)
    if locator in sys.modules:
        return sys.modules[locator]
    return importlib.import_module(locator)
