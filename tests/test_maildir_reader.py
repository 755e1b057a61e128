"""Tests for maildir, Maildir++ and nested maildir reading."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest
from conftest import make_maildir, make_message

from jmap_mail_import.archive.base import (
    ArchiveError,
    MaildirFlagsError,
    ReadFailure,
    SourceMessage,
)
from jmap_mail_import.archive.maildir import MaildirReader, parse_maildir_flags, split_folder_name
from jmap_mail_import.models.types import MessageFlag


def test_parse_maildir_flags() -> None:
    """Flag letters map onto message flags; keywords are ignored."""
    assert parse_maildir_flags("123.M1.host") == frozenset()
    assert parse_maildir_flags("123.M1.host:2,") == frozenset()
    assert parse_maildir_flags("123.M1.host:2,FRSa") == frozenset(
        {MessageFlag.flagged, MessageFlag.replied, MessageFlag.seen},
    )
    assert parse_maildir_flags("1:2,PTD") == frozenset(
        {MessageFlag.passed, MessageFlag.trashed, MessageFlag.draft},
    )


@pytest.mark.parametrize("name", ["1.host:1,S", "1.host:2,S?", "1.host:2,X"])
def test_parse_maildir_flags_rejects_corrupt_info(name: str) -> None:
    """Malformed info suffixes raise."""
    with pytest.raises(MaildirFlagsError):
        parse_maildir_flags(name)


def test_split_folder_name_normalizes_empty_segments() -> None:
    """Empty segments become the root placeholder."""
    assert split_folder_name("Work.2024", separator=".") == ("Work", "2024")
    assert split_folder_name("Work..X", separator=".") == ("Work", ".", "X")
    assert split_folder_name("A/B", separator="/") == ("A", "B")


def test_maildirpp_folders_include_ancestors(tmp_path: Path) -> None:
    """Maildir++ folders are discovered with intermediate parents first."""
    root = make_maildir(tmp_path / "mail", {"1.a:2,S": make_message("root")})
    make_maildir(root / ".Work.2024", {"2.b:2,": make_message("w2024")})
    make_maildir(root / ".Archive")

    reader = MaildirReader(root=root)
    paths = [folder.path for folder in reader.folders()]
    assert paths == [(), ("Archive",), ("Work",), ("Work", "2024")]
    assert reader.folder_paths() == paths

    work = next(f for f in reader.folders() if f.path == ("Work",))
    assert list(work.messages()) == []


def test_maildirpp_skips_dot_directories_without_maildir(tmp_path: Path) -> None:
    """Dot-directories that hold no cur/new are not treated as folders."""
    root = make_maildir(tmp_path / "mail", {"1.a": make_message("root")})
    (root / ".cache" / "index").mkdir(parents=True)
    make_maildir(root / ".Work", {"2.b": make_message("work")})

    paths = [folder.path for folder in MaildirReader(root=root).folders()]
    assert paths == [(), ("Work",)]


def test_maildir_messages_carry_flags_and_mtime(tmp_path: Path) -> None:
    """Flags come from the filename and the received time from the mtime."""
    root = make_maildir(tmp_path / "mail", {"1.a:2,RS": make_message("one")})
    os.utime(root / "cur" / "1.a:2,RS", (1_700_000_000, 1_700_000_000))
    (root / "new" / "2.b").write_bytes(make_message("two"))

    items = list(MaildirReader(root=root).folders()[0].messages())
    assert [item.identifier for item in items] == ["1.a:2,RS", "2.b"]
    first = items[0]
    assert isinstance(first, SourceMessage)
    assert first.flags == frozenset({MessageFlag.replied, MessageFlag.seen})
    assert first.received_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)
    assert isinstance(items[1], SourceMessage)
    assert items[1].flags == frozenset()


def test_corrupt_flags_file_is_a_failure_and_reading_continues(tmp_path: Path) -> None:
    """One corrupt filename in a five-message folder leaves four readable messages."""
    messages = {f"{n}.host:2,S": make_message(f"m{n}") for n in range(1, 5)}
    messages["5.host:2,S?!"] = make_message("bad")
    root = make_maildir(tmp_path / "mail", messages)

    items = list(MaildirReader(root=root).folders()[0].messages())
    assert len(items) == 5
    failures = [item for item in items if isinstance(item, ReadFailure)]
    assert len(failures) == 1
    assert failures[0].identifier == "5.host:2,S?!"
    assert sorted(item.sequence_number for item in items) == [1, 2, 3, 4, 5]


def test_nested_maildir_layout(tmp_path: Path) -> None:
    """Nested directories map to '/'-separated folder paths."""
    root = make_maildir(tmp_path / "mail")
    make_maildir(root / "Projects" / "Alpha", {"1.x": make_message("alpha")})
    make_maildir(root / "Projects")

    reader = MaildirReader(root=root, nested=True)
    paths = [folder.path for folder in reader.folders()]
    assert paths == [(), ("Projects",), ("Projects", "Alpha")]
    alpha = reader.folders()[2]
    assert [item.identifier for item in alpha.messages()] == ["1.x"]


def test_missing_maildir_root_is_fatal(tmp_path: Path) -> None:
    """A missing root directory is an archive error."""
    with pytest.raises(ArchiveError):
        MaildirReader(root=tmp_path / "missing")
