"""Bounded-parallelism message upload, one folder at a time."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Protocol

from rich.progress import Progress, TaskID

from jmap_mail_import.archive.base import (
    ArchiveFolder,
    ArchiveItem,
    FolderPath,
    ReadFailure,
    SourceMessage,
)
from jmap_mail_import.jmap.client import JmapMethodError, JmapTransportError
from jmap_mail_import.models.types import FailureKind
from jmap_mail_import.pipeline.report import ImportOutcome
from jmap_mail_import.utils.retry import retry_call

logger = logging.getLogger(__name__)


class MessageUploader(Protocol):
    """Anything able to import one raw message into a set of mailboxes."""

    def import_message(
        self,
        *,
        content: bytes,
        mailbox_ids: Iterable[str],
        keywords: Iterable[str] | None = None,
        received_at: datetime | None = None,
    ) -> object: ...


class AtomicCounter:
    """Integer counter safe to increment from many threads."""

    def __init__(self) -> None:
        """Start at zero."""
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """Add one and return the new value."""
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        """Return the current value."""
        with self._lock:
            return self._value


class ImportState:
    """Run state shared by every worker.

    ``_lock`` guards the outcome list and the progress display; the success
    total lives in its own :class:`AtomicCounter`.
    """

    def __init__(self, *, progress: Progress | None = None) -> None:
        """Initialize empty state.

        Args:
            progress: Optional rich progress display to update per message.
        """
        self._lock = threading.Lock()
        self._outcomes: list[ImportOutcome] = []
        self._progress = progress
        self._task: TaskID | None = None
        self.imported = AtomicCounter()

    def start_folder(self, label: str) -> None:
        """Open a progress line for a folder."""
        with self._lock:
            if self._progress is None:
                return
            if self._task is not None:
                self._progress.remove_task(self._task)
            self._task = self._progress.add_task(f"[blue]{label}", total=None)

    def finish(self) -> None:
        """Close the current folder's progress line."""
        with self._lock:
            if self._progress is not None and self._task is not None:
                self._progress.remove_task(self._task)
            self._task = None

    def record(self, outcome: ImportOutcome) -> None:
        """Append an outcome and advance the progress display."""
        if outcome.ok:
            self.imported.increment()
        with self._lock:
            self._outcomes.append(outcome)
            if self._progress is not None and self._task is not None:
                self._progress.update(
                    self._task,
                    advance=1,
                    description=(
                        f"[blue]Importing {outcome.sequence_number}: "
                        f"{outcome.folder}/{outcome.identifier}"
                    ),
                )

    @property
    def outcomes(self) -> list[ImportOutcome]:
        """Return a snapshot of the recorded outcomes."""
        with self._lock:
            return list(self._outcomes)


class ImportScheduler:
    """Uploads archive messages through a fixed-size worker pool."""

    def __init__(
        self,
        *,
        uploader: MessageUploader,
        workers: int,
        upload_attempts: int = 3,
        progress: Progress | None = None,
        retry_sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            uploader: Remote import backend.
            workers: Pool size; also the number of messages drawn per batch.
            upload_attempts: Attempts per message for transport failures.
            progress: Optional rich progress display.
            retry_sleep: Sleep function used between retries.

        Raises:
            ValueError: If ``workers`` is not positive.
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._uploader = uploader
        self._workers = workers
        self._attempts = upload_attempts
        self._retry_sleep = retry_sleep
        self.state = ImportState(progress=progress)

    async def run(
        self,
        folders: Sequence[ArchiveFolder],
        *,
        mailbox_ids: Mapping[FolderPath, str],
        failed_mailboxes: Mapping[FolderPath, str] | None = None,
    ) -> list[ImportOutcome]:
        """Drain every folder, strictly one after another.

        Args:
            folders: Archive folders in reader order.
            mailbox_ids: Concrete target mailbox per folder path.
            failed_mailboxes: Folders whose mailbox could not be provisioned,
                with the reason; their messages are recorded as failures.

        Returns:
            Every recorded outcome.
        """
        failed = failed_mailboxes or {}
        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="import") as pool:
            for folder in folders:
                label = folder.label
                mailbox_id = mailbox_ids.get(folder.path)
                skip_reason = failed.get(folder.path)
                if mailbox_id is None and skip_reason is None:
                    skip_reason = f"No mailbox resolved for '{label}'"

                self.state.start_folder(label)
                items = folder.messages()
                while True:
                    batch = await asyncio.to_thread(self._next_batch, items, label, skip_reason)
                    if not batch:
                        break
                    assert mailbox_id is not None
                    await self._dispatch(loop, pool, batch, label, mailbox_id)
        self.state.finish()
        return self.state.outcomes

    def _next_batch(
        self,
        items: Iterator[ArchiveItem],
        label: str,
        skip_reason: str | None,
    ) -> list[SourceMessage]:
        """Pull up to one batch of uploadable messages from a folder.

        Read failures, and every message of a folder with ``skip_reason``, are
        recorded on the way. Called through ``asyncio.to_thread``.

        Returns:
            Up to ``workers`` messages; empty once the folder is exhausted.
        """
        batch: list[SourceMessage] = []
        for item in items:
            if isinstance(item, ReadFailure):
                self.state.record(
                    ImportOutcome.failure(
                        sequence_number=item.sequence_number,
                        folder=label,
                        identifier=item.identifier,
                        kind=FailureKind.read,
                        reason=item.reason,
                    ),
                )
                continue
            if skip_reason is not None:
                self.state.record(
                    ImportOutcome.failure(
                        sequence_number=item.sequence_number,
                        folder=label,
                        identifier=item.identifier,
                        kind=FailureKind.mailbox,
                        reason=skip_reason,
                    ),
                )
                continue

            batch.append(item)
            if len(batch) == self._workers:
                break
        return batch

    async def _dispatch(
        self,
        loop: asyncio.AbstractEventLoop,
        pool: ThreadPoolExecutor,
        batch: list[SourceMessage],
        label: str,
        mailbox_id: str,
    ) -> None:
        """Run one batch on the pool and wait for all of it."""
        await asyncio.gather(
            *(
                loop.run_in_executor(pool, self._import_one, message, label, mailbox_id)
                for message in batch
            ),
        )

    def _import_one(self, message: SourceMessage, label: str, mailbox_id: str) -> None:
        """Upload one message and record the outcome. Runs on a worker thread."""
        keywords = sorted(flag.keyword for flag in message.flags) or None

        def _call() -> object:
            """Perform the upload for this message."""
            return self._uploader.import_message(
                content=message.content,
                mailbox_ids=[mailbox_id],
                keywords=keywords,
                received_at=message.received_at,
            )

        kind: FailureKind | None = None
        reason: str | None = None
        try:
            retry_call(
                _call,
                attempts=self._attempts,
                retry_on=(JmapTransportError,),
                sleep=self._retry_sleep,
            )
        except JmapTransportError as exc:
            kind, reason = FailureKind.transport, str(exc)
        except JmapMethodError as exc:
            kind, reason = FailureKind.rejected, str(exc)
        except Exception as exc:
            logger.exception("Unexpected error importing message %d", message.sequence_number)
            kind, reason = FailureKind.rejected, repr(exc)

        if kind is None:
            self.state.record(
                ImportOutcome.success(
                    sequence_number=message.sequence_number,
                    folder=label,
                    identifier=message.identifier,
                ),
            )
            return

        assert reason is not None
        logger.warning(
            "Failed to import message %d (%s/%s): %s",
            message.sequence_number,
            label,
            message.identifier,
            reason,
        )
        self.state.record(
            ImportOutcome.failure(
                sequence_number=message.sequence_number,
                folder=label,
                identifier=message.identifier,
                kind=kind,
                reason=reason,
            ),
        )
