"""Envelope and header helpers for raw RFC822 messages."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from email import policy
from email.parser import BytesHeaderParser
from email.utils import parsedate_to_datetime

_ENVELOPE_RE = re.compile(rb"^From (?P<sender>\S*)(?:[ \t]+(?P<date>.*?))?\s*$")
_ASCTIME_FORMATS: tuple[str, ...] = (
    "%a %b %d %H:%M:%S %Y",
    "%a %b %d %H:%M %Y",
    "%a %b %d %H:%M:%S %Z %Y",
)
_WS_RE = re.compile(r"\s+")


def parse_envelope_line(line: bytes) -> tuple[str, datetime | None]:
    """Parse an mbox ``From `` separator line.

    Args:
        line: Raw separator line, with or without its line ending.

    Returns:
        Tuple of (envelope sender, envelope date). The sender falls back to
        ``"unknown"`` and the date to None when they cannot be parsed.
    """
    match = _ENVELOPE_RE.match(line)
    if match is None:
        return "unknown", None
    sender = match.group("sender").decode("utf-8", errors="replace") or "unknown"
    raw_date = match.group("date")
    if not raw_date:
        return sender, None
    return sender, _parse_asctime(raw_date.decode("ascii", errors="replace"))


def _parse_asctime(value: str) -> datetime | None:
    """Parse the asctime-style date of an envelope line as UTC."""
    normalized = _WS_RE.sub(" ", value.strip())
    for fmt in _ASCTIME_FORMATS:
        try:
            return datetime.strptime(normalized, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def header_date(raw_rfc822: bytes) -> datetime | None:
    """Return the message ``Date:`` header as an aware datetime.

    Args:
        raw_rfc822: Raw RFC822 message bytes.

    Returns:
        Parsed date (naive values are assumed UTC), or None if missing/invalid.
    """
    headers = BytesHeaderParser(policy=policy.compat32).parsebytes(raw_rfc822)
    date_raw = headers.get("Date")
    if not date_raw:
        return None
    try:
        parsed = parsedate_to_datetime(str(date_raw))
    except (TypeError, ValueError, IndexError):
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def to_utc_date(value: datetime) -> str:
    """Format a datetime as a JMAP ``UTCDate`` string.

    Args:
        value: Datetime to format; naive values are assumed UTC.

    Returns:
        ISO-8601 string with a ``Z`` suffix and second precision.
    """
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return aware.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
