"""Shared types for archive readers."""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from jmap_mail_import.models.types import MessageFlag

FolderPath = tuple[str, ...]
"""Ordered, case-sensitive folder segments. The empty path is the Inbox."""

INBOX_LABEL = "Inbox"


def folder_label(path: FolderPath) -> str:
    """Return a human-readable label for a folder path."""
    return "/".join(path) if path else INBOX_LABEL


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be opened at all."""


class MessageReadError(ArchiveError):
    """Raised internally when a single message cannot be read."""


class MaildirFlagsError(MessageReadError):
    """Raised when a maildir filename carries an unparseable info suffix."""


@dataclass(frozen=True)
class SourceMessage:
    """A message read from an archive, ready for upload."""

    sequence_number: int
    identifier: str
    flags: frozenset[MessageFlag]
    received_at: datetime | None
    content: bytes = field(repr=False)


@dataclass(frozen=True)
class ReadFailure:
    """A message that could not be read from the archive."""

    sequence_number: int
    identifier: str
    reason: str


ArchiveItem = SourceMessage | ReadFailure


@dataclass
class ArchiveFolder:
    """One folder of an archive; its messages are produced lazily."""

    path: FolderPath
    _produce: Callable[[], Iterator[ArchiveItem]] | None = field(default=None, repr=False)

    @property
    def label(self) -> str:
        """Return the display label for this folder."""
        return folder_label(self.path)

    def messages(self) -> Iterator[ArchiveItem]:
        """Yield the folder's messages (and read failures) in source order."""
        if self._produce is None:
            return iter(())
        return self._produce()


class ArchiveReader(ABC):
    """Decodes one archive into folders of messages."""

    def __init__(self) -> None:
        """Initialize the shared sequence counter."""
        self._sequence = itertools.count(1)

    def _next_sequence(self) -> int:
        """Return the next message sequence number."""
        return next(self._sequence)

    @abstractmethod
    def folders(self) -> list[ArchiveFolder]:
        """Discover the archive's folders, parents before children.

        Returns:
            Folders in the order they will be drained.
        """

    def folder_paths(self) -> list[FolderPath]:
        """Return the distinct folder paths of the archive."""
        return [folder.path for folder in self.folders()]
