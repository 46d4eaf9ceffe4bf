"""Plugin system for tguploader.

This module provides:
- Plugin base class and metadata (base.py)
- Collaborator interfaces and the error taxonomy (interfaces.py)
- Plugin registry (registry.py)

Plugins are discovered from plugin directories. Each plugin directory
must contain a plugin.py with a create_plugin() factory function.
"""

import importlib
import sys
from pathlib import Path
from typing import Optional

from .base import Plugin, PluginMeta, HOOK_METHODS
from .interfaces import (
    Artifact,
    ArtifactListError,
    ArtifactStore,
    BuildInfo,
    CaptionExpansionError,
    ChangeEntry,
    ChangelogSource,
    NoArtifactsError,
    ProxySetupError,
    Result,
    TelegramApiError,
    TransportError,
    UploadError,
    UploadSizeExceededError,
)
from .registry import (
    PluginRegistry,
    PluginError,
    get_registry,
    reset_registry,
)

BUILTIN_PLUGINS_DIR = Path(__file__).parent


def discover_plugins(plugins_dir: Path = BUILTIN_PLUGINS_DIR) -> list[type[Plugin]]:
    """Discover plugin classes from a directory.

    Each subdirectory with a plugin.py containing create_plugin() is loaded.

    Args:
        plugins_dir: Directory containing plugin subdirectories

    Returns:
        List of plugin classes
    """
    plugin_classes = []

    if not plugins_dir.exists():
        return plugin_classes

    package = __name__ if plugins_dir.resolve() == BUILTIN_PLUGINS_DIR.resolve() else None

    for path in sorted(plugins_dir.iterdir()):
        if not path.is_dir():
            continue
        if path.name.startswith("_"):
            continue

        plugin_file = path / "plugin.py"
        if not plugin_file.exists():
            continue

        try:
            if package:
                module = importlib.import_module(f"{package}.{path.name}.plugin")
            else:
                module = _load_module_from_file(path.name, plugin_file)

            create_plugin = getattr(module, "create_plugin", None)
            if create_plugin is None:
                print(
                    f"[Plugins] Warning: {path.name}/plugin.py has no create_plugin()",
                    file=sys.stderr,
                )
                continue

            instance = create_plugin()
            plugin_classes.append(type(instance))

        except Exception as e:
            print(f"[Plugins] Failed to load {path.name}: {e}", file=sys.stderr)

    return plugin_classes


def _load_module_from_file(name: str, plugin_file: Path):
    """Load a plugin.py that lives outside the tguploader package."""
    import importlib.util

    module_name = f"tguploader_local_plugins.{name}.plugin"
    spec = importlib.util.spec_from_file_location(module_name, plugin_file)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load {plugin_file}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def load_external_plugins(packages: list[str]) -> list[type]:
    """Load plugins from installed packages.

    Args:
        packages: List of package names (e.g., ["tguploader_s3"])

    Returns:
        List of plugin classes
    """
    plugin_classes = []

    for package_name in packages:
        try:
            module = importlib.import_module(package_name)

            create_plugin = getattr(module, "create_plugin", None)

            if create_plugin is None:
                try:
                    plugin_module = importlib.import_module(f"{package_name}.plugin")
                    create_plugin = getattr(plugin_module, "create_plugin", None)
                except ImportError:
                    pass

            if create_plugin:
                instance = create_plugin()
                plugin_classes.append(type(instance))
                print(f"[Plugins] Loaded external: {package_name}", file=sys.stderr)
            else:
                print(
                    f"[Plugins] Warning: {package_name} has no create_plugin()",
                    file=sys.stderr,
                )

        except ImportError as e:
            print(f"[Plugins] Failed to load {package_name}: {e}", file=sys.stderr)
        except Exception as e:
            print(f"[Plugins] Error loading {package_name}: {e}", file=sys.stderr)

    return plugin_classes


def init_plugins(
    plugins_dir: Path = BUILTIN_PLUGINS_DIR, config: Optional[dict] = None
) -> PluginRegistry:
    """Initialize the plugin system.

    1. Discover plugins from directory
    2. Load external plugins from packages
    3. Filter based on config (enabled/disabled)
    4. Register plugins
    5. Configure all plugins
    6. Start all plugins

    Args:
        plugins_dir: Directory containing plugin subdirectories
        config: Full configuration dict (from tguploader.yml)

    Returns:
        Configured and started PluginRegistry
    """
    config = config or {}

    plugins_config = config.get("plugins", {}) or {}
    disabled_list = plugins_config.get("disabled", [])
    external_packages = plugins_config.get("external", [])

    registry = get_registry()

    plugin_classes = discover_plugins(plugins_dir)

    if external_packages:
        plugin_classes.extend(load_external_plugins(external_packages))

    for plugin_class in plugin_classes:
        plugin_id = plugin_class.meta.id

        if plugin_id in disabled_list:
            print(f"[Plugins] Skipping disabled plugin: {plugin_id}", file=sys.stderr)
            continue

        if registry.get(plugin_id) is not None:
            continue

        try:
            registry.register(plugin_class)
        except PluginError as e:
            print(f"[Plugins] Failed to register: {e}", file=sys.stderr)

    registry.configure_all(config)
    registry.start_all()

    uploader = registry.get("uploader")
    if uploader and hasattr(uploader, "set_registry"):
        uploader.set_registry(registry)

    return registry


def run(hook_name: str, ctx: dict) -> dict:
    """Run a hook on all plugins of the global registry."""
    return get_registry().run_hook(hook_name, ctx)


__all__ = [
    # Base
    "Plugin",
    "PluginMeta",
    "HOOK_METHODS",
    # Interfaces
    "Artifact",
    "ArtifactStore",
    "BuildInfo",
    "ChangeEntry",
    "ChangelogSource",
    "Result",
    # Errors
    "UploadError",
    "ArtifactListError",
    "NoArtifactsError",
    "CaptionExpansionError",
    "ProxySetupError",
    "TelegramApiError",
    "UploadSizeExceededError",
    "TransportError",
    # Registry
    "PluginRegistry",
    "PluginError",
    "get_registry",
    "reset_registry",
    # Functions
    "discover_plugins",
    "load_external_plugins",
    "init_plugins",
    "run",
]
