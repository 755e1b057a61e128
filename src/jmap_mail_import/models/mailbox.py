"""Pydantic models for remote mailbox state."""

from __future__ import annotations

from pydantic import ConfigDict, Field

from jmap_mail_import.models.base import FrozenModel
from jmap_mail_import.models.types import DeliveryStatus


class RemoteMailbox(FrozenModel):
    """Mailbox as reported by the server for the target account."""

    id: str = Field(min_length=1)
    name: str
    parent_id: str | None = None
    role: str | None = None


class Dsn(FrozenModel):
    """Delivery status notification for one ingest recipient."""

    model_config = ConfigDict(extra="ignore")

    to: str
    status: DeliveryStatus
    reason: str | None = None
