"""Streaming reader for single-file mbox archives.

The archive is split here instead of through :class:`mailbox.mbox`, which needs
a seekable file on disk and so cannot read an mbox piped on standard input.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import AbstractContextManager, nullcontext
from pathlib import Path
from typing import BinaryIO

from jmap_mail_import.archive.base import (
    ArchiveError,
    ArchiveFolder,
    ArchiveItem,
    ArchiveReader,
    ReadFailure,
    SourceMessage,
)
from jmap_mail_import.utils.email import header_date, parse_envelope_line

_QUOTED_FROM_RE = re.compile(rb"^>(>*From )")

logger = logging.getLogger(__name__)


def split_mbox(stream: BinaryIO) -> Iterator[tuple[bytes | None, list[bytes]]]:
    """Split an mbox byte stream on envelope ``From `` lines.

    Args:
        stream: Binary stream positioned at the start of the archive.

    Yields:
        Tuples of (envelope line, message lines). The envelope is None for
        non-blank data found before the first separator.
    """
    envelope: bytes | None = None
    lines: list[bytes] = []
    for line in stream:
        if line.startswith(b"From "):
            if envelope is not None or any(chunk.strip() for chunk in lines):
                yield envelope, lines
            envelope, lines = line, []
        else:
            lines.append(line)
    if envelope is not None or any(chunk.strip() for chunk in lines):
        yield envelope, lines


def _message_bytes(lines: list[bytes]) -> bytes:
    """Join message lines, dropping the separator blank line and mboxrd quoting."""
    if lines and not lines[-1].strip():
        lines = lines[:-1]
    return b"".join(_QUOTED_FROM_RE.sub(rb"\1", line) for line in lines)


class MboxReader(ArchiveReader):
    """Reads an mbox file (or stream) as a single Inbox folder."""

    def __init__(self, *, path: Path | None = None, stream: BinaryIO | None = None) -> None:
        """Initialize the reader.

        Args:
            path: Path to the mbox file.
            stream: Already open binary stream (e.g. stdin); used when path is None.

        Raises:
            ArchiveError: If neither source is usable.
        """
        super().__init__()
        if path is None and stream is None:
            raise ArchiveError("mbox reader needs a path or a stream")
        if path is not None and not path.is_file():
            raise ArchiveError(f"mbox file does not exist: {path}")
        self._path = path
        self._stream = stream

    def folders(self) -> list[ArchiveFolder]:
        """Return the single root folder."""
        return [ArchiveFolder(path=(), _produce=self._iter_messages)]

    def _iter_messages(self) -> Iterator[ArchiveItem]:
        """Yield messages from the underlying stream."""
        if self._path is not None:
            try:
                handle = self._path.open("rb")
            except OSError as exc:
                raise ArchiveError(f"Failed to open mbox file {self._path}: {exc}") from exc
            source: AbstractContextManager[BinaryIO] = handle
        else:
            assert self._stream is not None
            source = nullcontext(self._stream)

        with source as stream:
            for envelope, lines in split_mbox(stream):
                seq = self._next_sequence()
                if envelope is None:
                    logger.warning("Data before first mbox separator (message %d)", seq)
                    yield ReadFailure(
                        sequence_number=seq,
                        identifier="unknown",
                        reason="Failed to parse from mbox file: missing 'From ' separator",
                    )
                    continue

                sender, envelope_date = parse_envelope_line(envelope)
                content = _message_bytes(lines)
                if not content.strip():
                    yield ReadFailure(
                        sequence_number=seq,
                        identifier=sender,
                        reason="Failed to parse from mbox file: empty message",
                    )
                    continue

                yield SourceMessage(
                    sequence_number=seq,
                    identifier=sender,
                    flags=frozenset(),
                    received_at=envelope_date or header_date(content),
                    content=content,
                )
