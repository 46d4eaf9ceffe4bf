"""Plugin registry - central management of all plugins.

The registry handles:
- Plugin registration and validation
- Dependency checks
- Configuration injection
- Lifecycle management (configure, start, stop)
- Lookup by ID or capability
- Hook execution

Everything here is synchronous: an upload run is a single sequential flow.
"""

import sys
from typing import Optional, Type
from collections import defaultdict

from .base import Plugin, PluginMeta, HOOK_METHODS


class PluginError(Exception):
    """Error during plugin operations."""

    pass


class PluginRegistry:
    """Central registry for plugin management."""

    def __init__(self):
        self._plugins: dict[str, Plugin] = {}  # id -> instance
        self._capabilities: dict[str, list[str]] = defaultdict(
            list
        )  # capability -> [ids]
        self._load_order: list[str] = []  # Ordered list of plugin IDs
        self._started: bool = False

    def __len__(self) -> int:
        return len(self._plugins)

    def register(self, plugin_class: Type[Plugin]) -> Plugin:
        """Validate and register a plugin class.

        Args:
            plugin_class: Plugin class (not instance)

        Returns:
            Plugin instance

        Raises:
            PluginError: If plugin is invalid or already registered
        """
        if not isinstance(plugin_class, type) or not issubclass(plugin_class, Plugin):
            raise PluginError(
                f"Invalid plugin: {plugin_class} is not a Plugin subclass"
            )

        if not hasattr(plugin_class, "meta") or not isinstance(
            plugin_class.meta, PluginMeta
        ):
            raise PluginError(
                f"Plugin {plugin_class.__name__} missing valid 'meta' attribute"
            )

        meta = plugin_class.meta

        if meta.id in self._plugins:
            raise PluginError(f"Plugin '{meta.id}' already registered")

        try:
            instance = plugin_class()
        except Exception as e:
            raise PluginError(f"Failed to instantiate plugin '{meta.id}': {e}")

        self._plugins[meta.id] = instance

        for cap in meta.capabilities:
            self._capabilities[cap].append(meta.id)

        return instance

    def get(self, plugin_id: str) -> Optional[Plugin]:
        """Get plugin by ID."""
        return self._plugins.get(plugin_id)

    def get_by_capability(self, capability: str) -> Optional[Plugin]:
        """Get the highest-priority plugin providing a capability.

        Args:
            capability: Capability name (e.g., "store", "changelog")

        Returns:
            Plugin instance or None
        """
        plugin_ids = self._capabilities.get(capability, [])
        if not plugin_ids:
            return None

        best = min(plugin_ids, key=lambda pid: self._plugins[pid].meta.priority)
        return self._plugins[best]

    def all_with_capability(self, capability: str) -> list[Plugin]:
        """Get all plugins providing a capability."""
        plugin_ids = self._capabilities.get(capability, [])
        return [self._plugins[pid] for pid in plugin_ids if pid in self._plugins]

    def all_plugins(self) -> list[Plugin]:
        """Get all registered plugins in load order."""
        order = self._load_order or self._resolve_load_order()
        return [self._plugins[pid] for pid in order]

    def _resolve_load_order(self) -> list[str]:
        """Resolve plugin load order based on priority."""
        return sorted(
            self._plugins.keys(), key=lambda pid: self._plugins[pid].meta.priority
        )

    def _check_dependencies(self) -> None:
        """Check that all plugin dependencies are satisfied."""
        for plugin_id, plugin in self._plugins.items():
            for dep in plugin.meta.dependencies:
                if dep not in self._plugins:
                    raise PluginError(
                        f"Plugin '{plugin_id}' depends on '{dep}' which is not registered"
                    )

    def configure_all(self, config: dict) -> None:
        """Inject configuration to all plugins.

        Each plugin receives the full config dict and picks its own section.
        """
        self._load_order = self._resolve_load_order()
        self._check_dependencies()

        for plugin_id in self._load_order:
            plugin = self._plugins[plugin_id]
            try:
                plugin.configure(config)
            except Exception as e:
                print(
                    f"[Registry] Failed to configure '{plugin_id}': {e}",
                    file=sys.stderr,
                )
                raise PluginError(f"Configuration failed for '{plugin_id}': {e}")

    def start_all(self) -> None:
        """Start all plugins in priority order."""
        if self._started:
            return

        for plugin_id in self._load_order:
            plugin = self._plugins[plugin_id]
            try:
                plugin.start()
            except Exception as e:
                print(f"[Registry] Failed to start '{plugin_id}': {e}", file=sys.stderr)
                raise PluginError(f"Start failed for '{plugin_id}': {e}")

        self._started = True

    def stop_all(self) -> None:
        """Stop all plugins in reverse priority order."""
        if not self._started:
            return

        for plugin_id in reversed(self._load_order):
            plugin = self._plugins[plugin_id]
            try:
                plugin.stop()
            except Exception as e:
                print(f"[Registry] Error stopping '{plugin_id}': {e}", file=sys.stderr)

        self._started = False

    def run_hook(self, hook_name: str, ctx: dict) -> dict:
        """Run a hook on all plugins that override it.

        Hooks run in load order and may replace the context. A failing hook
        is reported and skipped; it never interrupts the caller.

        Args:
            hook_name: Name of the hook method
            ctx: Context dict to pass through

        Returns:
            Modified context dict
        """
        if hook_name not in HOOK_METHODS:
            return ctx

        for plugin in self.all_plugins():
            method = getattr(plugin, hook_name, None)
            if method is None:
                continue

            # Skip the inherited no-op
            if getattr(method, "__func__", None) is getattr(Plugin, hook_name, None):
                continue

            try:
                result = method(ctx)
                if result is not None:
                    ctx = result
            except Exception as e:
                print(
                    f"[Registry] Error in {plugin.meta.id}.{hook_name}: {e}",
                    file=sys.stderr,
                )

        return ctx

    def list_plugins(self) -> list[dict]:
        """List all registered plugins with metadata."""
        return [
            {
                "id": plugin.meta.id,
                "version": plugin.meta.version,
                "capabilities": plugin.meta.capabilities,
                "dependencies": plugin.meta.dependencies,
                "priority": plugin.meta.priority,
            }
            for plugin in self.all_plugins()
        ]


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Stop and drop the global registry (for testing)."""
    global _registry
    if _registry:
        _registry.stop_all()
    _registry = None
