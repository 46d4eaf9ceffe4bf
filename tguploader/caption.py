"""Caption expansion for uploaded documents.

A caption template may reference build environment variables as ``$NAME`` or
``${NAME}``, plus ``${TELEGRAM_CHANGELOG}``, which receives a Markdown digest
of the changes that went into the build.
"""

import re
from typing import Iterator, Optional

from tguploader.plugins.interfaces import (
    BuildInfo,
    CaptionExpansionError,
    ChangeEntry,
    Result,
)

# Telegram rejects longer document captions
CAPTION_MAX_LENGTH = 1024

CHANGELOG_VARIABLE = "TELEGRAM_CHANGELOG"

_VARIABLE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_.]*)\}|([A-Za-z_][A-Za-z0-9_]*))")

_MARKDOWN_SPECIAL = ("_", "*", "[", "`")


def expand_variables(template: str, env: dict) -> str:
    """Substitute $NAME and ${NAME}; unknown names are kept verbatim."""

    def replacer(match):
        name = match.group(1) or match.group(2)
        value = env.get(name)
        if value is None:
            return match.group(0)
        return str(value)

    return _VARIABLE.sub(replacer, template)


def escape_markdown(text: str) -> str:
    """Backslash-escape the characters legacy Markdown mode treats as markup."""
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, "\\" + char)
    return text


def format_change(entry: ChangeEntry) -> str:
    lines = (entry.message or "").strip().splitlines()
    first_line = lines[0] if lines else ""
    return f"\n* {escape_markdown(entry.author)}: {escape_markdown(first_line)}"


def iter_changes_newest_first(build: Optional[BuildInfo]) -> Iterator[ChangeEntry]:
    """Changes of this build and of the failed builds right before it."""
    while build is not None:
        yield from reversed(build.changes)
        previous = build.previous
        if previous is None or previous.result is None:
            break
        if not previous.result.is_worse_than(Result.SUCCESS):
            break
        build = previous


def changelog_digest(build: Optional[BuildInfo], max_length: int) -> str:
    """Newest changes that fit in max_length characters, in chronological order."""
    if max_length <= 0:
        return ""

    picked = []
    length = 0
    for entry in iter_changes_newest_first(build):
        line = format_change(entry)
        if length + len(line) > max_length:
            break
        picked.append(line)
        length += len(line)

    picked.reverse()
    return "".join(picked)


def expand_caption(
    template: Optional[str], env: dict, build: Optional[BuildInfo] = None
) -> Optional[str]:
    """Expand a caption template for a build.

    Args:
        template: Raw caption, may be None or blank
        env: Build environment variables
        build: Build whose changelog feeds ${TELEGRAM_CHANGELOG}

    Returns:
        The expanded caption, or None when no caption should be sent

    Raises:
        CaptionExpansionError: If the template cannot be expanded
    """
    if template is None or not template.strip():
        return None

    template = template.strip()
    try:
        expanded = expand_variables(template, env)
        digest = changelog_digest(build, CAPTION_MAX_LENGTH - len(expanded))
        return expand_variables(template, {**env, CHANGELOG_VARIABLE: digest})
    except Exception as e:
        raise CaptionExpansionError(
            f"Can't expand document caption '{template}': {e}"
        ) from e
