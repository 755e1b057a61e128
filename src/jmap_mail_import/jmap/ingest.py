"""Raw message delivery through the server's ingest endpoint."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from pydantic import TypeAdapter, ValidationError

from jmap_mail_import.jmap.client import JmapClient, JmapError
from jmap_mail_import.models.mailbox import Dsn
from jmap_mail_import.models.types import DeliveryStatus

# sysexits.h
EX_OK = 0
EX_NOUSER = 67
EX_TEMPFAIL = 75
EX_NOPERM = 77
EX_UNEXPECTED = 1

_EXIT_CODES: dict[DeliveryStatus, int] = {
    DeliveryStatus.success: EX_OK,
    DeliveryStatus.failure: EX_NOPERM,
    DeliveryStatus.not_found: EX_NOUSER,
    DeliveryStatus.temporary_failure: EX_TEMPFAIL,
}

_DSN_LIST = TypeAdapter(list[Dsn])

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestOutcome:
    """Interpreted ingest response."""

    exit_code: int
    message: str | None = None


def ingest_url(base_url: str, *, recipients: Sequence[str], sender: str | None) -> str:
    """Build the ingest endpoint URL.

    Args:
        base_url: Server base URL.
        recipients: Envelope recipients.
        sender: Optional envelope sender.

    Returns:
        Fully qualified ingest URL with percent-encoded addresses.
    """
    params: dict[str, str] = {}
    if sender:
        params["from"] = sender
    params["to"] = ",".join(recipients)
    return str(httpx.URL(f"{base_url}/ingest", params=params))


def interpret_ingest_response(payload: object) -> IngestOutcome:
    """Map an ingest response to an exit code.

    Args:
        payload: Decoded JSON response.

    Returns:
        Outcome for the first undelivered recipient, or success.
    """
    try:
        dsns = _DSN_LIST.validate_python(payload)
    except ValidationError:
        return IngestOutcome(
            exit_code=EX_UNEXPECTED,
            message=f"Received unexpected response from server: {payload!r}",
        )

    for dsn in dsns:
        if dsn.status == DeliveryStatus.success:
            continue
        return IngestOutcome(
            exit_code=_EXIT_CODES[dsn.status],
            message=f"<{dsn.to}>: {dsn.reason or 'Unknown error'}",
        )
    return IngestOutcome(exit_code=EX_OK)


def ingest_message(
    client: JmapClient,
    raw_message: bytes,
    *,
    recipients: Sequence[str],
    sender: str | None = None,
) -> IngestOutcome:
    """Deliver one raw message to local recipients.

    Raises:
        JmapError: If the request itself fails.
    """
    if not recipients:
        raise JmapError("At least one recipient is required")
    url = ingest_url(client.base_url, recipients=recipients, sender=sender)
    payload = client.request_json(
        "POST",
        url,
        content=raw_message,
        headers={"Content-Type": "message/rfc822"},
    )
    outcome = interpret_ingest_response(payload)
    logger.info("Ingest finished (recipients=%d, exit_code=%d)", len(recipients), outcome.exit_code)
    return outcome
