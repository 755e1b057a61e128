"""Validated domain models (Pydantic)."""

from __future__ import annotations

from jmap_mail_import.models.types import (
    DeliveryStatus,
    FailureEntry,
    FailureKind,
    ImportReport,
    MailboxFormat,
    MailboxRole,
    MessageFlag,
)

__all__ = [
    "DeliveryStatus",
    "FailureEntry",
    "FailureKind",
    "ImportReport",
    "MailboxFormat",
    "MailboxRole",
    "MessageFlag",
]
