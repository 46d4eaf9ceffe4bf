"""Artifacts plugin - build artifacts from a local directory.

Priority: 20 (after config)
Capability: store

Config:
    artifacts:
      root: ./build/artifacts
      base_url: https://ci.example.com/job/app/42   # Optional, for link fallback
"""

import re
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..base import Plugin, PluginMeta
from ..interfaces import ArtifactListError, ArtifactStore, Artifact


def _segment_regex(segment: str) -> str:
    out = []
    for char in segment:
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(char))
    return "".join(out)


def compile_glob(pattern: str) -> re.Pattern:
    """Compile one Ant-style pattern.

    ``**`` matches any number of directories, ``*`` and ``?`` stay within a
    path segment. A trailing ``/`` means everything below that directory.
    """
    pattern = pattern.strip().replace("\\", "/").lstrip("/")
    if pattern.endswith("/"):
        pattern += "**"

    parts = []
    segments = pattern.split("/")
    for i, segment in enumerate(segments):
        last = i == len(segments) - 1
        if segment == "**":
            parts.append(".*" if last else "(?:.*/)?")
        else:
            parts.append(_segment_regex(segment) + ("" if last else "/"))
    return re.compile("".join(parts) + r"\Z")


def match_any(patterns: list[re.Pattern], path: str) -> bool:
    return any(p.match(path) for p in patterns)


class LocalArtifactStore(ArtifactStore):
    """Artifacts stored under a directory on disk."""

    def __init__(self, root: Path, base_url: Optional[str] = None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def list(self, pattern: str) -> list[str]:
        if not self.root.is_dir():
            raise ArtifactListError(f"Artifacts directory not found: {self.root}")

        patterns = [compile_glob(p) for p in pattern.split(",") if p.strip()]
        try:
            paths = [
                p.relative_to(self.root).as_posix()
                for p in self.root.rglob("*")
                if p.is_file()
            ]
        except OSError as e:
            raise ArtifactListError(str(e)) from e

        return sorted(p for p in paths if match_any(patterns, p))

    def child(self, relative_path: str) -> Artifact:
        location = self.root / relative_path
        url = None
        if self.base_url:
            url = f"{self.base_url}/artifact/{quote(relative_path)}"
        return Artifact(
            relative_path=relative_path,
            size_bytes=location.stat().st_size,
            location=location,
            url=url,
        )


class ArtifactsPlugin(Plugin):
    """Provides the local artifact store."""

    meta = PluginMeta(
        id="artifacts",
        version="1.0.0",
        capabilities=["store"],
        dependencies=["config"],
        priority=20,
    )

    def __init__(self):
        self._root: Path = Path(".")
        self._base_url: Optional[str] = None

    def configure(self, config: dict) -> None:
        artifacts_config = config.get("artifacts", {}) or {}
        self._root = Path(artifacts_config.get("root") or ".")
        self._base_url = artifacts_config.get("base_url")

    def start(self) -> None:
        print(f"[Artifacts] Root: {self._root}", file=sys.stderr)

    def stop(self) -> None:
        pass

    def get_store(
        self, root: Optional[Path] = None, base_url: Optional[str] = None
    ) -> LocalArtifactStore:
        """Store for the configured root, or an explicit override."""
        return LocalArtifactStore(root or self._root, base_url or self._base_url)


# Factory function
def create_plugin() -> ArtifactsPlugin:
    return ArtifactsPlugin()
