"""Create missing mailboxes in one batch and resolve forward references."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from jmap_mail_import.archive.base import FolderPath, folder_label
from jmap_mail_import.jmap.client import JmapError
from jmap_mail_import.jmap.mailboxes import MailboxCreate, MailboxSetResult
from jmap_mail_import.mailboxes.hierarchy import (
    CreateRef,
    ExistingId,
    PendingMailbox,
    ToCreate,
)

logger = logging.getLogger(__name__)


class MailboxCreator(Protocol):
    """Anything able to run a Mailbox/set create batch."""

    def create_mailboxes(
        self,
        account_id: str,
        creates: Mapping[str, MailboxCreate],
    ) -> MailboxSetResult: ...


@dataclass(frozen=True)
class ProvisionResult:
    """Concrete mailbox ids per folder, plus the folders that failed."""

    mailbox_ids: dict[FolderPath, str] = field(default_factory=dict)
    created: dict[FolderPath, str] = field(default_factory=dict)
    failed: dict[FolderPath, str] = field(default_factory=dict)


def build_create_batch(
    pending: Mapping[FolderPath, PendingMailbox],
) -> dict[FolderPath, tuple[str, MailboxCreate]]:
    """Assign creation ids and parent references to every ToCreate entry.

    Args:
        pending: Output of hierarchy resolution.

    Returns:
        Mapping of folder path to (creation id, create entry), parents first.

    Raises:
        ValueError: If an entry references a parent that is not in the batch.
    """
    batch: dict[FolderPath, tuple[str, MailboxCreate]] = {}
    ordered = sorted(
        ((path, entry) for path, entry in pending.items() if isinstance(entry, ToCreate)),
        key=lambda item: (len(item[0]), item[0]),
    )
    for n, (path, entry) in enumerate(ordered):
        parent = entry.parent
        if parent is None:
            create = MailboxCreate(name=entry.name)
        elif isinstance(parent, ExistingId):
            create = MailboxCreate(name=entry.name, parent_id=parent.id)
        else:
            if parent.path not in batch:
                raise ValueError(f"Parent of {folder_label(path)!r} is not part of the batch")
            create = MailboxCreate(name=entry.name, parent_ref=batch[parent.path][0])
        batch[path] = (f"m{n}", create)
    return batch


def provision_mailboxes(
    api: MailboxCreator,
    account_id: str,
    pending: Mapping[FolderPath, PendingMailbox],
) -> ProvisionResult:
    """Create every missing folder and return concrete ids for all folders.

    A folder whose creation fails takes its whole subtree down with it; those
    folders are reported in ``failed`` instead of ``mailbox_ids``.

    Args:
        api: Mailbox creation backend.
        account_id: Target account.
        pending: Output of hierarchy resolution.

    Returns:
        ProvisionResult for every path in ``pending``.
    """
    batch = build_create_batch(pending)
    result = ProvisionResult()

    created: dict[str, str] = {}
    errors: dict[str, str] = {}
    if batch:
        creates = {cid: create for cid, create in batch.values()}
        try:
            set_result = api.create_mailboxes(account_id, creates)
        except JmapError as exc:
            logger.error("Mailbox creation batch failed: %s", exc)
            errors = {cid: f"Failed to create mailbox: {exc}" for cid in creates}
        else:
            created = set_result.created
            errors = {
                cid: f"Failed to create mailbox: {err}"
                for cid, err in set_result.not_created.items()
            }

    for path in sorted(pending, key=lambda p: (len(p), p)):
        entry = pending[path]
        if isinstance(entry, ExistingId):
            result.mailbox_ids[path] = entry.id
            continue
        if not isinstance(entry, ToCreate):
            result.failed[path] = f"No mailbox could be resolved for '{folder_label(path)}'"
            continue

        cid, _ = batch[path]
        if cid in created:
            result.mailbox_ids[path] = created[cid]
            result.created[path] = created[cid]
        elif isinstance(entry.parent, CreateRef) and entry.parent.path in result.failed:
            result.failed[path] = (
                f"Parent mailbox '{folder_label(entry.parent.path)}' could not be created"
            )
        else:
            result.failed[path] = errors.get(cid, "Failed to create mailbox: unknown error")

    for path, reason in result.failed.items():
        logger.error("Mailbox %r unavailable: %s", folder_label(path), reason)
    return result
