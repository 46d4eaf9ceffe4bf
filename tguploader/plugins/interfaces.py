"""Capability interfaces for plugins.

Plugins that provide a collaborator of the upload workflow implement one of
these interfaces, so a different artifact store or changelog source can be
swapped in without touching the workflow.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# --- Errors ---


class UploadError(Exception):
    """Base class for everything the failure policy reports."""
    pass


class ArtifactListError(UploadError):
    """The artifact store could not enumerate artifacts."""
    pass


class NoArtifactsError(UploadError):
    """The filter matched no artifacts."""
    pass


class CaptionExpansionError(UploadError):
    """The caption template could not be expanded."""
    pass


class ProxySetupError(UploadError):
    """The configured HTTP proxy is unusable."""
    pass


class TelegramApiError(UploadError):
    """Non-2xx status, malformed body or ok:false from the Bot API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.description = description


class UploadSizeExceededError(UploadError):
    """Artifact is over the upload limit and no link fallback applies."""
    pass


class TransportError(UploadError):
    """Network or IO failure during an API call."""
    pass


# --- Build model ---


class Result(enum.IntEnum):
    """Build outcome, ordered from best to worst."""

    SUCCESS = 0
    UNSTABLE = 1
    FAILURE = 2
    NOT_BUILT = 3
    ABORTED = 4

    def is_worse_than(self, other: "Result") -> bool:
        return self > other

    def is_worse_or_equal_to(self, other: "Result") -> bool:
        return self >= other


@dataclass(frozen=True)
class ChangeEntry:
    """One source-control change attached to a build."""
    author: str
    message: str


@dataclass
class BuildInfo:
    """What the workflow needs to know about a finished build."""
    result: Optional[Result] = None
    env: dict = field(default_factory=dict)
    changes: list[ChangeEntry] = field(default_factory=list)
    previous: Optional["BuildInfo"] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Artifact:
    """A build artifact selected for upload."""
    relative_path: str
    size_bytes: int
    location: Path
    url: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]


# --- Artifact Store Interface ---


class ArtifactStore(ABC):
    """Interface for artifact store plugins.

    Any plugin with capability ["store"] must implement this interface.
    """

    @abstractmethod
    def list(self, pattern: str) -> list[str]:
        """List relative artifact paths matching a glob pattern.

        Args:
            pattern: Ant-style glob ("**", "**/*.apk", "a/*.txt,b/**")

        Returns:
            Relative POSIX paths in enumeration order

        Raises:
            ArtifactListError: If the store cannot be enumerated
        """
        pass

    @abstractmethod
    def child(self, relative_path: str) -> Artifact:
        """Resolve a listed path to an Artifact handle."""
        pass


# --- Changelog Source Interface ---


class ChangelogSource(ABC):
    """Interface for changelog plugins.

    Any plugin with capability ["changelog"] must implement this interface.
    """

    @abstractmethod
    def changes(self, since: Optional[str] = None) -> list[ChangeEntry]:
        """Get change entries for the current build, oldest first.

        Args:
            since: Source-control revision the previous build was made from

        Returns:
            List of ChangeEntry objects
        """
        pass
