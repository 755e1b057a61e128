"""Orchestration of a mailbox archive import into one account."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import BinaryIO

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from jmap_mail_import.archive.base import folder_label
from jmap_mail_import.archive.reader import STDIN_PATH, open_archive
from jmap_mail_import.config.settings import ImportSettings
from jmap_mail_import.jmap.client import JmapClient
from jmap_mail_import.jmap.email_import import EmailImporter
from jmap_mail_import.jmap.mailboxes import MailboxApi
from jmap_mail_import.mailboxes.hierarchy import resolve_hierarchy
from jmap_mail_import.mailboxes.provisioner import provision_mailboxes
from jmap_mail_import.models.types import ImportReport, MailboxFormat
from jmap_mail_import.pipeline.report import build_report, render_report
from jmap_mail_import.pipeline.scheduler import ImportScheduler

logger = logging.getLogger(__name__)

_PHASES: tuple[str, ...] = (
    "Parsing archive...",
    "Fetching existing mailboxes for account...",
    "Creating missing mailboxes...",
    "Importing messages...",
)


class MessageImportOrchestrator:
    """Coordinates archive parsing, mailbox provisioning and message upload."""

    def __init__(
        self,
        *,
        client: JmapClient,
        settings: ImportSettings,
        console: Console | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Connected JMAP client.
            settings: Import tuning.
            console: Console for progress output (defaults to stderr).
        """
        self._client = client
        self._s = settings
        self._console = console or Console(stderr=True)

    def _phase(self, n: int) -> None:
        """Announce the start of phase ``n`` (1-based)."""
        logger.info("Phase %d/%d: %s", n, len(_PHASES), _PHASES[n - 1])
        self._console.print(f"[bold dim][{n}/{len(_PHASES)}][/bold dim] {_PHASES[n - 1]}")

    async def run(
        self,
        *,
        fmt: MailboxFormat,
        path: str,
        email: str,
        stdin: BinaryIO | None = None,
    ) -> ImportReport:
        """Import an archive into the account owning ``email``.

        Args:
            fmt: Archive layout.
            path: Archive path, or ``-`` for an mbox on standard input.
            email: Target account e-mail.
            stdin: Stream to read when ``path`` is ``-``.

        Returns:
            The aggregated report (already printed to the console).

        Raises:
            ArchiveError: If the archive cannot be opened.
            AccountLookupError: If the account cannot be identified.
            MissingInboxError: If the account has no Inbox.
            JmapError: If the mailbox list cannot be fetched.
        """
        console = self._console

        self._phase(1)
        reader = open_archive(fmt, path, stdin=stdin)
        folders = await asyncio.to_thread(reader.folders)

        self._phase(2)
        account_id = await asyncio.to_thread(self._client.resolve_account_id, email)
        mailbox_api = MailboxApi(client=self._client)
        remote = await asyncio.to_thread(mailbox_api.list_mailboxes, account_id)
        logger.info("Account %s has %d mailboxes", account_id, len(remote))

        self._phase(3)
        pending = resolve_hierarchy(remote, [folder.path for folder in folders])
        provisioned = await asyncio.to_thread(
            provision_mailboxes,
            mailbox_api,
            account_id,
            pending,
        )
        if provisioned.created:
            console.print(f"  [green]✔[/green] Created {len(provisioned.created)} mailboxes")
        for failed_path, reason in provisioned.failed.items():
            console.print(f"  [yellow]⚠[/yellow] {folder_label(failed_path)}: {reason}")

        self._phase(4)
        workers = self._s.effective_workers
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.completed} done"),
            console=console,
            transient=True,
        )
        with progress:
            scheduler = ImportScheduler(
                uploader=EmailImporter(client=self._client, account_id=account_id),
                workers=workers,
                upload_attempts=self._s.upload_attempts,
                progress=progress,
            )
            outcomes = await scheduler.run(
                folders,
                mailbox_ids=provisioned.mailbox_ids,
                failed_mailboxes=provisioned.failed,
            )

        report = build_report(
            outcomes,
            account=email,
            source="<stdin>" if path == STDIN_PATH else str(Path(path).expanduser()),
            failed_mailboxes=provisioned.failed,
        )
        render_report(report, console)
        return report
