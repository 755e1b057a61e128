"""Base Pydantic models shared by reports and API records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class AppModel(BaseModel):
    """Mutable model that rejects unknown fields and validates on assignment."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        validate_default=True,
        validate_assignment=True,
    )


class FrozenModel(AppModel):
    """Immutable variant of :class:`AppModel`."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)
