"""Blob upload and Email/import helpers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from jmap_mail_import.jmap.client import JmapClient, JmapError, JmapMethodError
from jmap_mail_import.utils.email import to_utc_date


@dataclass(frozen=True)
class ImportedEmail:
    """Result of an Email/import call."""

    email_id: str
    blob_id: str


class EmailImporter:
    """Imports raw RFC822 messages into one account."""

    def __init__(self, *, client: JmapClient, account_id: str) -> None:
        """Initialize the importer.

        Args:
            client: Shared JMAP client.
            account_id: Account receiving the messages.
        """
        self._client = client
        self._account_id = account_id

    @property
    def account_id(self) -> str:
        """Return the target account id."""
        return self._account_id

    def import_message(
        self,
        *,
        content: bytes,
        mailbox_ids: Iterable[str],
        keywords: Iterable[str] | None = None,
        received_at: datetime | None = None,
    ) -> ImportedEmail:
        """Upload a message and file it into the given mailboxes.

        Args:
            content: Raw RFC822 bytes.
            mailbox_ids: Mailboxes the message belongs to.
            keywords: Optional JMAP keywords (``$seen`` etc.).
            received_at: Optional received timestamp.

        Returns:
            ImportedEmail with the server-assigned ids.

        Raises:
            JmapMethodError: If the server refuses the message.
            JmapTransportError: If the server could not be reached.
        """
        blob_id = self._client.upload_blob(
            self._account_id,
            content,
            content_type="message/rfc822",
        )

        email: dict[str, Any] = {
            "blobId": blob_id,
            "mailboxIds": {mailbox_id: True for mailbox_id in mailbox_ids},
        }
        if keywords:
            email["keywords"] = {keyword: True for keyword in keywords}
        if received_at is not None:
            email["receivedAt"] = to_utc_date(received_at)

        resp = self._client.call(
            [("Email/import", {"accountId": self._account_id, "emails": {"i0": email}}, "i0")],
        )["i0"]

        created = (resp.get("created") or {}).get("i0")
        if isinstance(created, dict) and "id" in created:
            return ImportedEmail(email_id=str(created["id"]), blob_id=blob_id)
        not_created = (resp.get("notCreated") or {}).get("i0")
        if not_created is not None:
            raise JmapMethodError.from_payload(not_created)
        raise JmapError(f"Unexpected Email/import response: {resp!r}")
