"""Archive reader factory."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import BinaryIO

from jmap_mail_import.archive.base import ArchiveError, ArchiveReader
from jmap_mail_import.archive.maildir import MaildirReader
from jmap_mail_import.archive.mbox import MboxReader
from jmap_mail_import.models.types import MailboxFormat

STDIN_PATH = "-"


def open_archive(
    fmt: MailboxFormat,
    path: str,
    *,
    stdin: BinaryIO | None = None,
) -> ArchiveReader:
    """Open an archive for reading.

    Args:
        fmt: Archive layout.
        path: Filesystem path, or ``-`` to read an mbox from standard input.
        stdin: Stream used for ``-``; defaults to the process's binary stdin.

    Returns:
        Reader for the requested layout.

    Raises:
        ArchiveError: If the source cannot be opened with this layout.
    """
    if path == STDIN_PATH:
        if fmt != MailboxFormat.mbox:
            raise ArchiveError("Reading from standard input is only supported for mbox archives")
        return MboxReader(stream=stdin if stdin is not None else sys.stdin.buffer)

    source = Path(path).expanduser()
    if fmt == MailboxFormat.mbox:
        return MboxReader(path=source)
    return MaildirReader(root=source, nested=fmt == MailboxFormat.maildir_nested)
