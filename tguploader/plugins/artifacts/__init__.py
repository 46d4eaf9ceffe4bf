"""Artifacts plugin - local artifact store."""

from .plugin import ArtifactsPlugin, LocalArtifactStore, compile_glob, create_plugin

__all__ = ["ArtifactsPlugin", "LocalArtifactStore", "compile_glob", "create_plugin"]
