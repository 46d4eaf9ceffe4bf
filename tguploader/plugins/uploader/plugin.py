"""Uploader plugin - runs the upload workflow with registry collaborators.

Priority: 40 (after every collaborator it uses)
Capability: upload
"""

from pathlib import Path
from typing import Optional, TextIO

from ..base import Plugin, PluginMeta
from ..config.plugin import UploaderConfig, UploadJob
from ..interfaces import BuildInfo, Result


class UploaderPlugin(Plugin):
    """Builds UploadWorkflow instances from the registered plugins."""

    meta = PluginMeta(
        id="uploader",
        version="1.0.0",
        capabilities=["upload"],
        dependencies=["config", "telegram", "artifacts", "changelog"],
        priority=40,
    )

    def __init__(self):
        self._config: Optional[UploaderConfig] = None
        self._registry = None

    def configure(self, config: dict) -> None:
        self._config = UploaderConfig.from_dict(config)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def set_registry(self, registry) -> None:
        """Set registry reference for collaborator lookup and hooks."""
        self._registry = registry

    def job(self, **overrides) -> UploadJob:
        config = self._config or UploaderConfig()
        return config.upload_job(**overrides)

    def build_info(
        self,
        result: Optional[Result],
        env: dict,
        since: Optional[str] = None,
        url: Optional[str] = None,
    ) -> BuildInfo:
        """Describe the current build, with git changes since a revision."""
        changes = []
        source = self._registry.get_by_capability("changelog") if self._registry else None
        if source is not None and since:
            changes = source.get_source().changes(since)
        return BuildInfo(result=result, env=dict(env), changes=changes, url=url)

    def workflow(
        self,
        artifacts_root: Optional[Path] = None,
        base_url: Optional[str] = None,
        log: Optional[TextIO] = None,
    ):
        from tguploader.workflow import UploadWorkflow

        if self._registry is None:
            raise RuntimeError("Uploader plugin has no registry")

        telegram = self._registry.get_by_capability("telegram")
        artifacts = self._registry.get_by_capability("store")
        return UploadWorkflow(
            client_factory=telegram.create_client,
            store=artifacts.get_store(artifacts_root, base_url),
            log=log,
            hooks=self._registry,
        )


def create_plugin() -> UploaderPlugin:
    return UploaderPlugin()
