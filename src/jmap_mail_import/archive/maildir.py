"""Reader for Maildir, Maildir++ and nested (filesystem layout) maildir trees."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

from jmap_mail_import.archive.base import (
    ArchiveError,
    ArchiveFolder,
    ArchiveItem,
    ArchiveReader,
    FolderPath,
    MaildirFlagsError,
    MessageReadError,
    ReadFailure,
    SourceMessage,
)
from jmap_mail_import.models.types import MessageFlag

ROOT_PLACEHOLDER = "."
"""Stands in for an empty folder-name segment."""

_MESSAGE_SUBDIRS: tuple[str, ...] = ("cur", "new")
_MAILDIR_SUBDIRS: frozenset[str] = frozenset({"cur", "new", "tmp"})
_FLAG_LETTERS: dict[str, MessageFlag] = {flag.value: flag for flag in MessageFlag}

logger = logging.getLogger(__name__)


def parse_maildir_flags(filename: str) -> frozenset[MessageFlag]:
    """Decode the flags encoded in a maildir filename.

    Args:
        filename: Message filename, e.g. ``1700000000.M1P2.host:2,RS``.

    Returns:
        The decoded flags; empty when the name has no info suffix.

    Raises:
        MaildirFlagsError: If the info suffix is malformed or names unknown flags.
    """
    _, sep, info = filename.rpartition(":")
    if not sep:
        return frozenset()
    if not info.startswith("2,"):
        raise MaildirFlagsError(f"Unsupported maildir info {info!r} in {filename!r}")

    flags: set[MessageFlag] = set()
    for letter in info[2:]:
        if letter in _FLAG_LETTERS:
            flags.add(_FLAG_LETTERS[letter])
        elif "a" <= letter <= "z":
            # Dovecot keyword slots; no portable meaning.
            continue
        else:
            raise MaildirFlagsError(f"Invalid maildir flag {letter!r} in {filename!r}")
    return frozenset(flags)


def split_folder_name(name: str, *, separator: str) -> FolderPath:
    """Split an on-disk folder name into path segments.

    Args:
        name: Folder name relative to the maildir root.
        separator: Hierarchy separator (``.`` or ``/``).

    Returns:
        Segments, with empty segments replaced by the root placeholder.
    """
    return tuple(part.strip() or ROOT_PLACEHOLDER for part in name.split(separator))


def _is_maildir(path: Path) -> bool:
    """Return True if the directory holds maildir message subdirectories."""
    return any((path / sub).is_dir() for sub in _MESSAGE_SUBDIRS)


class MaildirReader(ArchiveReader):
    """Reads a maildir tree, one folder at a time."""

    def __init__(self, *, root: Path, nested: bool = False) -> None:
        """Initialize the reader.

        Args:
            root: Maildir root directory.
            nested: Whether folders are nested directories (``/`` separated)
                rather than Maildir++ dot-prefixed siblings (``.`` separated).

        Raises:
            ArchiveError: If the root is not a directory.
        """
        super().__init__()
        if not root.is_dir():
            raise ArchiveError(f"Maildir directory does not exist: {root}")
        self._root = root
        self._nested = nested
        self._folders: list[ArchiveFolder] | None = None

    def folders(self) -> list[ArchiveFolder]:
        """Discover folders; ancestors of a folder are listed before it."""
        if self._folders is not None:
            return self._folders

        dirs_by_path: dict[FolderPath, list[Path]] = {}
        if _is_maildir(self._root):
            dirs_by_path[()] = [self._root]

        for path, directory in self._discover():
            for depth in range(1, len(path)):
                dirs_by_path.setdefault(path[:depth], [])
            dirs_by_path.setdefault(path, []).append(directory)

        self._folders = [
            ArchiveFolder(path=path, _produce=self._producer(dirs) if dirs else None)
            for path, dirs in dirs_by_path.items()
        ]
        return self._folders

    def _discover(self) -> Iterator[tuple[FolderPath, Path]]:
        """Yield (path, directory) pairs for every sub-folder on disk."""
        if not self._nested:
            for entry in sorted(self._root.iterdir()):
                if (
                    entry.name.startswith(".")
                    and entry.name not in {".", ".."}
                    and entry.is_dir()
                    and _is_maildir(entry)
                ):
                    yield split_folder_name(entry.name[1:], separator="."), entry
            return

        stack: list[Path] = [self._root]
        while stack:
            current = stack.pop()
            children = sorted(
                (
                    child
                    for child in current.iterdir()
                    if child.is_dir()
                    and not child.name.startswith(".")
                    and not (_is_maildir(current) and child.name in _MAILDIR_SUBDIRS)
                ),
            )
            for child in children:
                if _is_maildir(child):
                    relative = child.relative_to(self._root).as_posix()
                    yield split_folder_name(relative, separator="/"), child
            stack.extend(reversed(children))

    def _producer(self, directories: list[Path]) -> Callable[[], Iterator[ArchiveItem]]:
        """Bind a lazy message iterator to a folder's directories."""

        def _produce() -> Iterator[ArchiveItem]:
            for directory in directories:
                yield from self._iter_directory(directory)

        return _produce

    def _iter_directory(self, directory: Path) -> Iterator[ArchiveItem]:
        """Yield the messages stored in one maildir directory."""
        for sub in _MESSAGE_SUBDIRS:
            subdir = directory / sub
            if not subdir.is_dir():
                continue
            for entry in sorted(subdir.iterdir()):
                if entry.name.startswith(".") or not entry.is_file():
                    continue
                seq = self._next_sequence()
                try:
                    yield self._read_message(entry, seq)
                except MessageReadError as exc:
                    logger.warning("Skipping unreadable maildir message %s: %s", entry, exc)
                    yield ReadFailure(sequence_number=seq, identifier=entry.name, reason=str(exc))

    @staticmethod
    def _read_message(entry: Path, seq: int) -> SourceMessage:
        """Read one maildir message file.

        Raises:
            MessageReadError: On I/O errors, empty files or corrupt flags.
        """
        flags = parse_maildir_flags(entry.name)
        try:
            mtime = entry.stat().st_mtime
            content = entry.read_bytes()
        except OSError as exc:
            raise MessageReadError(f"I/O error reading {entry.name}: {exc}") from exc
        if not content:
            raise MessageReadError(f"Empty message file {entry.name}")
        return SourceMessage(
            sequence_number=seq,
            identifier=entry.name,
            flags=flags,
            received_at=datetime.fromtimestamp(mtime, tz=UTC) if mtime > 0 else None,
            content=content,
        )
