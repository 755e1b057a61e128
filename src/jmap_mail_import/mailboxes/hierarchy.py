"""Map archive folder paths onto the account's existing mailbox tree."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from jmap_mail_import.archive.base import FolderPath
from jmap_mail_import.models.mailbox import RemoteMailbox
from jmap_mail_import.models.types import MailboxRole

logger = logging.getLogger(__name__)


class MissingInboxError(RuntimeError):
    """Raised when the target account has no mailbox with the Inbox role."""


@dataclass(frozen=True)
class ExistingId:
    """Folder already present on the server."""

    id: str


@dataclass(frozen=True)
class CreateRef:
    """Reference to another folder created in the same batch."""

    path: FolderPath


@dataclass(frozen=True)
class ToCreate:
    """Folder that must be created under ``parent`` (None for top level)."""

    name: str
    parent: ExistingId | CreateRef | None


@dataclass(frozen=True)
class Unresolved:
    """Folder with no usable mailbox."""


PendingMailbox = ExistingId | ToCreate | Unresolved


@dataclass(frozen=True)
class MailboxIndex:
    """Full-path index of the remote mailbox forest."""

    inbox_id: str
    by_path: dict[FolderPath, str]

    @classmethod
    def build(cls, mailboxes: Iterable[RemoteMailbox]) -> MailboxIndex:
        """Flatten the remote forest breadth-first from its roots.

        Args:
            mailboxes: Every mailbox of the account.

        Returns:
            Index of full paths to mailbox ids.

        Raises:
            MissingInboxError: If no mailbox carries the Inbox role.
        """
        inbox_id: str | None = None
        children: dict[str | None, list[RemoteMailbox]] = {}
        for mailbox in mailboxes:
            if mailbox.role is not None and mailbox.role.lower() == MailboxRole.inbox:
                inbox_id = mailbox.id
            children.setdefault(mailbox.parent_id, []).append(mailbox)

        if inbox_id is None:
            raise MissingInboxError(
                "Failed to locate Inbox on account, please check the server logs.",
            )

        by_path: dict[FolderPath, str] = {}
        queue: deque[tuple[FolderPath, RemoteMailbox]] = deque(
            ((mailbox.name,), mailbox) for mailbox in children.get(None, [])
        )
        while queue:
            path, mailbox = queue.popleft()
            if path in by_path:
                logger.warning(
                    "Duplicate remote mailbox path %r (id=%s)",
                    "/".join(path),
                    mailbox.id,
                )
            else:
                by_path[path] = mailbox.id
            queue.extend((path + (child.name,), child) for child in children.get(mailbox.id, []))

        return cls(inbox_id=inbox_id, by_path=by_path)


def required_paths(paths: Iterable[FolderPath]) -> list[FolderPath]:
    """Return paths plus all their ancestors, shortest first.

    Args:
        paths: Folder paths found in the archive.

    Returns:
        Distinct paths ordered by segment count, then lexically.
    """
    out: set[FolderPath] = set()
    for path in paths:
        for depth in range(len(path) + 1):
            out.add(path[:depth])
    return sorted(out, key=lambda p: (len(p), p))


def resolve_hierarchy(
    mailboxes: Iterable[RemoteMailbox],
    paths: Iterable[FolderPath],
) -> dict[FolderPath, PendingMailbox]:
    """Decide, for every folder path, which mailbox it maps to.

    Args:
        mailboxes: Snapshot of the account's mailboxes.
        paths: Folder paths required by the archive.

    Returns:
        Mapping of folder path to an existing id or a create instruction.

    Raises:
        MissingInboxError: If the account has no Inbox.
    """
    index = MailboxIndex.build(mailboxes)
    resolved: dict[FolderPath, PendingMailbox] = {}
    for path in required_paths(paths):
        if not path:
            resolved[path] = ExistingId(index.inbox_id)
            continue

        existing = index.by_path.get(path)
        if existing is not None:
            resolved[path] = ExistingId(existing)
            continue

        parent_path = path[:-1]
        parent: ExistingId | CreateRef | None
        if not parent_path:
            parent = None
        else:
            parent_entry = resolved[parent_path]
            if isinstance(parent_entry, ExistingId):
                parent = parent_entry
            elif isinstance(parent_entry, ToCreate):
                parent = CreateRef(parent_path)
            else:
                resolved[path] = Unresolved()
                continue
        resolved[path] = ToCreate(name=path[-1], parent=parent)

    missing = sum(isinstance(entry, ToCreate) for entry in resolved.values())
    logger.info("Resolved %d folders (%d to create)", len(resolved), missing)
    return resolved
