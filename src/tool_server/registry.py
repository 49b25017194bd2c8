"""Tool Registry for the tool server.

Discovers plugin modules in a tools directory and runs their registration
entry point against the shared dispatcher. Plugins are loaded once at
startup, before the server accepts requests.
"""

import importlib.util
import inspect
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional

from shared.logging import get_logger
from shared.models import PluginFailure, PluginLoadResult, ToolRegistration
from tool_server.dispatcher import Dispatcher

logger = get_logger(__name__)

PLUGIN_SUFFIX = ".py"
PLUGIN_NAMESPACE = "tool_server_plugins"


class PluginError(Exception):
    """A plugin file that does not satisfy the registration contract."""


class ToolRegistry:
    """
    Loads tool plugins into a dispatcher.

    A plugin is any `*.py` file in the tools directory whose name does not
    start with an underscore. It must expose one of:
    - a callable `register`
    - a callable `default`
    - an object `default` with a callable `register`

    The entry point is called as `register(dispatcher=, tool_id=, logger=)`
    and may be a coroutine function.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    def discover(self, directory: str | Path) -> list[Path]:
        """
        List plugin files in a directory (non-recursive).

        Raises:
            OSError: If the directory cannot be read
        """
        path = Path(directory)
        return sorted(
            p for p in path.iterdir()
            if p.is_file() and p.suffix == PLUGIN_SUFFIX and not p.name.startswith("_")
        )

    async def load(self, directory: str | Path) -> PluginLoadResult:
        """
        Load every plugin in `directory` into the dispatcher.

        A failing plugin is logged and recorded; it never stops the others.

        Args:
            directory: Tools directory

        Returns:
            Count of registered plugins and the failures
        """
        result = PluginLoadResult()

        try:
            files = self.discover(directory)
        except OSError as e:
            logger.error("Cannot read tools directory", directory=str(directory), error=str(e))
            return result

        for file in files:
            tool_id = file.stem
            try:
                registration = self.resolve(file)
                await self.register(registration)
            except Exception as e:
                logger.error(
                    "Error registering tool plugin",
                    plugin=file.name,
                    error=str(e),
                    exc_info=True
                )
                result.failures.append(PluginFailure(plugin_id=tool_id, error=str(e) or repr(e)))
                continue

            logger.debug("Registered tool plugin", plugin=file.name)
            result.registered_count += 1

        logger.info(
            "Tool plugins loaded",
            directory=str(directory),
            registered=result.registered_count,
            failed=len(result.failures)
        )
        return result

    def resolve(self, file: Path) -> ToolRegistration:
        """
        Import a plugin file and find its entry point.

        Raises:
            PluginError: If the module exposes no usable entry point
        """
        module = _import_file(file)
        entry_point = _find_entry_point(module)
        if entry_point is None:
            raise PluginError(f"No register entry point in {file.name}")
        return ToolRegistration(name=file.stem, registration_fn=entry_point)

    async def register(self, registration: ToolRegistration) -> None:
        """Run a plugin's entry point against the dispatcher."""
        outcome = registration.registration_fn(
            dispatcher=self.dispatcher,
            tool_id=registration.name,
            logger=get_logger(f"{PLUGIN_NAMESPACE}.{registration.name}", tool=registration.name),
        )
        if inspect.isawaitable(outcome):
            await outcome


def _import_file(file: Path) -> ModuleType:
    module_name = f"{PLUGIN_NAMESPACE}.{file.stem}"
    spec = importlib.util.spec_from_file_location(module_name, file)
    if spec is None or spec.loader is None:
        raise PluginError(f"Cannot import {file.name}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        # Registered tools keep what they need through their handlers
        sys.modules.pop(module_name, None)
    return module


def _find_entry_point(module: ModuleType) -> Optional[Callable[..., Any]]:
    candidate = getattr(module, "register", None)
    if callable(candidate):
        return candidate

    default = getattr(module, "default", None)
    if callable(default):
        return default

    nested = getattr(default, "register", None)
    if callable(nested):
        return nested
    return None
