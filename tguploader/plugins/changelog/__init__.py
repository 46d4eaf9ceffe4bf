"""Changelog plugin - change entries from git history."""

from .plugin import ChangelogPlugin, GitChangelog, create_plugin, parse_git_log

__all__ = ["ChangelogPlugin", "GitChangelog", "create_plugin", "parse_git_log"]
