"""Shared enums and lightweight Pydantic models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from jmap_mail_import.models.base import AppModel


class MailboxFormat(StrEnum):
    """Supported archive layouts."""

    mbox = "mbox"
    maildir = "maildir"
    maildir_nested = "maildir-nested"


class MessageFlag(StrEnum):
    """Maildir flags that survive the import as JMAP keywords."""

    passed = "P"
    replied = "R"
    seen = "S"
    trashed = "T"
    draft = "D"
    flagged = "F"

    @property
    def keyword(self) -> str:
        """Return the JMAP keyword for this flag."""
        return _FLAG_KEYWORDS[self]


_FLAG_KEYWORDS: dict[MessageFlag, str] = {
    MessageFlag.passed: "$passed",
    MessageFlag.replied: "$answered",
    MessageFlag.seen: "$seen",
    MessageFlag.trashed: "$deleted",
    MessageFlag.draft: "$draft",
    MessageFlag.flagged: "$flagged",
}


class MailboxRole(StrEnum):
    """Mailbox roles we care about."""

    inbox = "inbox"


class FailureKind(StrEnum):
    """Categories of per-message failures."""

    read = "read"
    mailbox = "mailbox"
    rejected = "rejected"
    transport = "transport"


class DeliveryStatus(StrEnum):
    """Delivery status values returned by the ingest endpoint."""

    success = "success"
    failure = "failure"
    not_found = "notFound"
    temporary_failure = "temporaryFailure"


class FailureEntry(AppModel):
    """Single failure line of an import report."""

    sequence_number: int = Field(ge=1)
    folder: str
    identifier: str
    kind: FailureKind
    reason: str


class ImportReport(AppModel):
    """Summarized import run emitted by the CLI."""

    created_at: datetime
    account: str
    source: str
    total: int = Field(default=0, ge=0)
    imported: int = Field(default=0, ge=0)
    failures: list[FailureEntry] = Field(default_factory=list)
    failed_mailboxes: dict[str, str] = Field(default_factory=dict)
