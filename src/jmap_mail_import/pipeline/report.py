"""Aggregate per-message outcomes into the final import report."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console

from jmap_mail_import.archive.base import FolderPath, folder_label
from jmap_mail_import.models.types import FailureEntry, FailureKind, ImportReport


@dataclass(frozen=True)
class ImportOutcome:
    """Result of handling one archive message."""

    sequence_number: int
    folder: str
    identifier: str
    kind: FailureKind | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Return True if the message was imported."""
        return self.kind is None

    @classmethod
    def success(cls, *, sequence_number: int, folder: str, identifier: str) -> ImportOutcome:
        """Build a successful outcome."""
        return cls(sequence_number=sequence_number, folder=folder, identifier=identifier)

    @classmethod
    def failure(
        cls,
        *,
        sequence_number: int,
        folder: str,
        identifier: str,
        kind: FailureKind,
        reason: str,
    ) -> ImportOutcome:
        """Build a failed outcome."""
        return cls(
            sequence_number=sequence_number,
            folder=folder,
            identifier=identifier,
            kind=kind,
            reason=reason,
        )


def build_report(
    outcomes: Iterable[ImportOutcome],
    *,
    account: str,
    source: str,
    failed_mailboxes: Mapping[FolderPath, str] | None = None,
    created_at: datetime | None = None,
) -> ImportReport:
    """Total successes and enumerate failures.

    Args:
        outcomes: Every outcome recorded during the run.
        account: Target account e-mail.
        source: Archive description.
        failed_mailboxes: Folders that could not be provisioned.
        created_at: Report timestamp (defaults to now).

    Returns:
        ImportReport with failures ordered by sequence number.
    """
    imported = 0
    total = 0
    failures: list[FailureEntry] = []
    for outcome in outcomes:
        total += 1
        if outcome.ok:
            imported += 1
            continue
        assert outcome.kind is not None
        failures.append(
            FailureEntry(
                sequence_number=outcome.sequence_number,
                folder=outcome.folder,
                identifier=outcome.identifier,
                kind=outcome.kind,
                reason=outcome.reason or "unknown error",
            ),
        )
    failures.sort(key=lambda entry: entry.sequence_number)

    return ImportReport(
        created_at=created_at or datetime.now(tz=UTC),
        account=account,
        source=source,
        total=total,
        imported=imported,
        failures=failures,
        failed_mailboxes={
            folder_label(path): reason for path, reason in (failed_mailboxes or {}).items()
        },
    )


def format_failure(entry: FailureEntry) -> str:
    """Return the one-line description of a failure."""
    if entry.kind == FailureKind.read:
        return (
            f"Failed to read message {entry.sequence_number} "
            f"'{entry.identifier}' in {entry.folder}: {entry.reason}"
        )
    return (
        f"Failed to import message {entry.sequence_number} "
        f"with identifier '{entry.identifier}' in {entry.folder}: {entry.reason}"
    )


def render_report(report: ImportReport, console: Console) -> None:
    """Print the final summary and failure list."""
    console.print(f"\n\nSuccessfully imported [bold]{report.imported}[/bold] messages.\n")
    if not report.failures:
        return
    console.print(f"There were {len(report.failures)} failures:\n")
    for entry in report.failures:
        console.print(format_failure(entry), markup=False, highlight=False)


def write_report(report: ImportReport, path: Path) -> Path:
    """Write the report as JSON.

    Args:
        report: Report to serialize.
        path: Destination file.

    Returns:
        The written path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    return path
