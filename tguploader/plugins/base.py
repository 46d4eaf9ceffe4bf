"""Plugin base class and metadata.

All plugins must inherit from Plugin and define a PluginMeta.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class PluginMeta:
    """Plugin metadata - defines identity and capabilities."""

    id: str  # Unique identifier: "telegram", "artifacts"
    version: str  # Semver: "1.0.0"
    capabilities: list[str] = field(default_factory=list)  # What it provides: ["store"]
    dependencies: list[str] = field(
        default_factory=list
    )  # Required plugins: ["config"]
    priority: int = 50  # Load order (lower = earlier)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Plugin id is required")
        if not self.version:
            raise ValueError("Plugin version is required")


class Plugin(ABC):
    """Base class for all plugins.

    Plugins must:
    1. Define a `meta` class attribute with PluginMeta
    2. Implement configure(), start(), stop()
    3. Optionally implement hook methods (on_before_upload, etc.)
    4. Optionally implement capability interfaces (ArtifactStore, etc.)

    Example:
        class MyPlugin(Plugin):
            meta = PluginMeta(
                id="myplugin",
                version="1.0.0",
                capabilities=["store"],
                dependencies=["config"],
                priority=20,
            )

            def configure(self, config: dict) -> None:
                self._config = config

            def start(self) -> None:
                pass

            def stop(self) -> None:
                pass
    """

    meta: PluginMeta  # Must be defined by subclass

    @abstractmethod
    def configure(self, config: dict) -> None:
        """Receive configuration.

        Called before start(). Config is the full dict from tguploader.yml;
        plugins pick their own section.

        Args:
            config: Full config dict (may be empty)
        """
        pass

    @abstractmethod
    def start(self) -> None:
        """Initialize the plugin.

        Called after all plugins are configured, in priority order.
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Clean up plugin resources.

        Called on shutdown, in reverse priority order.
        """
        pass

    # --- Optional Hook Methods ---
    # Override these to observe the upload workflow

    def on_run_start(self, ctx: dict) -> dict:
        """Called when an upload run begins."""
        return ctx

    def on_before_upload(self, ctx: dict) -> dict:
        """Called before an artifact is sent."""
        return ctx

    def on_after_upload(self, ctx: dict) -> dict:
        """Called after an artifact was delivered (file or link)."""
        return ctx

    def on_forward(self, ctx: dict) -> dict:
        """Called after a message was forwarded to an extra chat."""
        return ctx

    def on_failure(self, ctx: dict) -> dict:
        """Called when the failure policy reports an error."""
        return ctx

    def on_run_complete(self, ctx: dict) -> dict:
        """Called when an upload run ends, aborted or not."""
        return ctx

    # --- CLI Extension ---

    def register_commands(self, cli) -> None:
        """Register CLI commands.

        Called during CLI initialization. Plugins can add commands/groups
        to the main CLI.

        Args:
            cli: Click group (the main tguploader CLI)

        Example:
            def register_commands(self, cli):
                @cli.command()
                def my_command():
                    '''My plugin command.'''
                    click.echo("Hello from plugin!")
        """
        pass


# List of all hook method names
HOOK_METHODS = [
    "on_run_start",
    "on_before_upload",
    "on_after_upload",
    "on_forward",
    "on_failure",
    "on_run_complete",
]
