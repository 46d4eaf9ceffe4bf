"""Changelog plugin - change entries from git history.

Priority: 25 (after artifacts)
Capability: changelog

Config:
    changelog:
      repo: .          # Working tree to read history from
"""

import subprocess
import sys
from pathlib import Path
from typing import Optional

from ..base import Plugin, PluginMeta
from ..interfaces import ChangeEntry, ChangelogSource

# Unit and record separators keep multi-line commit bodies intact
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"--format=%an{_FIELD_SEP}%B{_RECORD_SEP}"


def parse_git_log(output: str) -> list[ChangeEntry]:
    """Parse `git log` output produced with _LOG_FORMAT."""
    entries = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        author, _, message = record.partition(_FIELD_SEP)
        entries.append(ChangeEntry(author=author.strip(), message=message.strip()))
    return entries


class GitChangelog(ChangelogSource):
    """Reads commits between a revision and HEAD."""

    def __init__(self, repo: Path = Path("."), timeout: int = 30):
        self.repo = Path(repo)
        self.timeout = timeout

    def changes(self, since: Optional[str] = None) -> list[ChangeEntry]:
        if not since:
            return []

        cmd = ["git", "log", "--reverse", _LOG_FORMAT, f"{since}..HEAD"]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            print(f"[Changelog] git log failed: {e}", file=sys.stderr)
            return []

        if result.returncode != 0:
            print(
                f"[Changelog] git log failed: {result.stderr.strip()}",
                file=sys.stderr,
            )
            return []

        return parse_git_log(result.stdout)


class ChangelogPlugin(Plugin):
    """Provides the git changelog source."""

    meta = PluginMeta(
        id="changelog",
        version="1.0.0",
        capabilities=["changelog"],
        dependencies=["config"],
        priority=25,
    )

    def __init__(self):
        self._repo: Path = Path(".")

    def configure(self, config: dict) -> None:
        changelog_config = config.get("changelog", {}) or {}
        self._repo = Path(changelog_config.get("repo") or ".")

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def get_source(self) -> GitChangelog:
        return GitChangelog(self._repo)


def create_plugin() -> ChangelogPlugin:
    return ChangelogPlugin()
