"""Mailbox/get and Mailbox/set helpers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jmap_mail_import.jmap.client import JmapClient, JmapError, JmapMethodError
from jmap_mail_import.models.mailbox import RemoteMailbox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailboxCreate:
    """One entry of a Mailbox/set create batch.

    ``parent_ref`` names another creation id of the same batch; it takes
    precedence over ``parent_id``. Neither set means a top-level mailbox.
    """

    name: str
    parent_id: str | None = None
    parent_ref: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Return the JMAP object for this entry."""
        parent = f"#{self.parent_ref}" if self.parent_ref is not None else self.parent_id
        return {"name": self.name, "parentId": parent}


@dataclass(frozen=True)
class MailboxSetResult:
    """Outcome of a create batch, keyed by creation id."""

    created: dict[str, str] = field(default_factory=dict)
    not_created: dict[str, JmapMethodError] = field(default_factory=dict)


class MailboxApi:
    """Wrapper around the JMAP Mailbox methods for one server."""

    def __init__(self, *, client: JmapClient) -> None:
        """Initialize the API wrapper.

        Args:
            client: Shared JMAP client.
        """
        self._client = client

    def list_mailboxes(self, account_id: str) -> list[RemoteMailbox]:
        """Fetch every mailbox of an account.

        Raises:
            JmapError: If the response is malformed.
        """
        resp = self._client.call(
            [
                (
                    "Mailbox/get",
                    {
                        "accountId": account_id,
                        "ids": None,
                        "properties": ["id", "name", "parentId", "role"],
                    },
                    "g0",
                ),
            ],
        )
        items = resp["g0"].get("list")
        if not isinstance(items, list):
            raise JmapError(f"Unexpected Mailbox/get response: {resp['g0']!r}")
        return [
            RemoteMailbox(
                id=str(item["id"]),
                name=str(item.get("name") or "Untitled"),
                parent_id=item.get("parentId"),
                role=item.get("role"),
            )
            for item in items
        ]

    def create_mailboxes(
        self,
        account_id: str,
        creates: Mapping[str, MailboxCreate],
    ) -> MailboxSetResult:
        """Create several mailboxes in one Mailbox/set call.

        Args:
            account_id: Target account.
            creates: Entries keyed by creation id.

        Returns:
            Created ids and per-entry errors, keyed by creation id.
        """
        if not creates:
            return MailboxSetResult()
        resp = self._client.call(
            [
                (
                    "Mailbox/set",
                    {
                        "accountId": account_id,
                        "create": {cid: entry.to_payload() for cid, entry in creates.items()},
                    },
                    "s0",
                ),
            ],
        )["s0"]

        created = {
            str(cid): str(obj["id"])
            for cid, obj in (resp.get("created") or {}).items()
            if isinstance(obj, dict) and "id" in obj
        }
        not_created = {
            str(cid): JmapMethodError.from_payload(err)
            for cid, err in (resp.get("notCreated") or {}).items()
        }
        for cid in creates:
            if cid not in created and cid not in not_created:
                not_created[cid] = JmapMethodError(
                    "serverFail",
                    "missing from Mailbox/set response",
                )
        logger.info(
            "Mailbox/set created=%d not_created=%d",
            len(created),
            len(not_created),
        )
        return MailboxSetResult(created=created, not_created=not_created)
