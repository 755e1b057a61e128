"""Typer CLI for importing mail archives into a JMAP server."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer
from pydantic import ValidationError

from jmap_mail_import.archive.base import ArchiveError
from jmap_mail_import.archive.reader import STDIN_PATH
from jmap_mail_import.config.settings import (
    AppSettings,
    ServerSettings,
    load_settings,
    parse_credentials,
)
from jmap_mail_import.jmap.client import JmapClient, JmapError
from jmap_mail_import.jmap.ingest import ingest_message
from jmap_mail_import.mailboxes.hierarchy import MissingInboxError
from jmap_mail_import.models.types import MailboxFormat
from jmap_mail_import.pipeline.orchestrator import MessageImportOrchestrator
from jmap_mail_import.pipeline.report import write_report
from jmap_mail_import.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import mbox and maildir archives into a JMAP mail server.",
)

_ENV_FILE_OPTION = typer.Option(
    None,
    "--env-file",
    exists=True,
    dir_okay=False,
    help="Optional path to a .env file (in addition to environment variables).",
)
_URL_OPTION = typer.Option(
    None,
    "--url",
    "-u",
    help="JMAP server base URL (overrides JMAP_SERVER__URL).",
)
_CREDENTIALS_OPTION = typer.Option(
    None,
    "--credentials",
    "-c",
    help="Credentials as 'user:secret' or just the secret.",
)


def load_app_settings(*, env_file: Path | None) -> AppSettings:
    """Load application settings from the environment and optional .env file.

    Args:
        env_file: Optional path to a .env file to load in addition to environment variables.

    Returns:
        Validated application settings.

    Raises:
        typer.Exit: If the settings are invalid.
    """
    try:
        return load_settings(env_file=env_file)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2) from None


def resolve_server_settings(
    settings: AppSettings,
    *,
    url: str | None,
    credentials: str | None,
    default_user: str = "admin",
) -> ServerSettings:
    """Merge command-line overrides into the configured server settings.

    Args:
        settings: Loaded application settings.
        url: Optional base URL override.
        credentials: Optional ``user:secret`` override.
        default_user: Account used when credentials carry no user part.

    Returns:
        Validated server settings.

    Raises:
        typer.Exit: If no URL/secret is available or values are invalid.
    """
    values: dict[str, object] = settings.server.model_dump() if settings.server else {}
    if url:
        values["url"] = url
    if not values.get("url"):
        typer.echo("Missing server URL. Pass --url or set JMAP_SERVER__URL.", err=True)
        raise typer.Exit(code=2)

    if credentials is None and not values.get("secret"):
        credentials = typer.prompt("Credentials", hide_input=True)
    if credentials is not None:
        try:
            values["username"], values["secret"] = parse_credentials(
                credentials,
                default_user=default_user,
            )
        except ValueError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=2) from None

    try:
        return ServerSettings.model_validate(values)
    except ValidationError as exc:
        typer.echo(f"Invalid server settings:\n{exc}", err=True)
        raise typer.Exit(code=2) from None


@app.command("import-messages")
def import_messages_cmd(
    email: str = typer.Argument(..., help="Account e-mail to import messages into."),
    path: str = typer.Argument(
        ...,
        help="Path to the mailbox to import, or '-' for stdin (mbox only).",
    ),
    *,
    fmt: MailboxFormat = typer.Option(..., "--format", "-f", help="Archive layout."),
    num_threads: int | None = typer.Option(
        None,
        "--num-threads",
        "-n",
        min=1,
        help="Number of parallel uploads, defaults to the number of CPUs.",
    ),
    report_file: Path | None = typer.Option(
        None,
        "--report-file",
        dir_okay=False,
        help="Write the final report as JSON to this file.",
    ),
    fail_on_errors: bool = typer.Option(
        False,
        "--fail-on-errors",
        help="Exit with status 1 if any message failed to import.",
    ),
    url: str | None = _URL_OPTION,
    credentials: str | None = _CREDENTIALS_OPTION,
    env_file: Path | None = _ENV_FILE_OPTION,
) -> None:
    """Import messages and folders from an mbox or maildir archive."""
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    server = resolve_server_settings(settings, url=url, credentials=credentials)

    import_settings = settings.importer
    if num_threads is not None:
        import_settings = import_settings.model_copy(update={"workers": num_threads})
    if fail_on_errors:
        import_settings = import_settings.model_copy(update={"fail_on_errors": True})

    if path == STDIN_PATH and fmt != MailboxFormat.mbox:
        typer.echo("Reading from stdin is only supported for mbox archives.", err=True)
        raise typer.Exit(code=2)

    with JmapClient(settings=server) as client:
        orchestrator = MessageImportOrchestrator(client=client, settings=import_settings)
        try:
            report = asyncio.run(
                orchestrator.run(fmt=fmt, path=path, email=email, stdin=sys.stdin.buffer),
            )
        except (ArchiveError, MissingInboxError, JmapError) as exc:
            logger.error("Import aborted: %s", exc)
            typer.echo(f"Import aborted: {exc}", err=True)
            raise typer.Exit(code=1) from None
        except KeyboardInterrupt:
            raise typer.Exit(code=130) from None

    if report_file is not None:
        out = write_report(report, report_file)
        typer.echo(f"Wrote {out}", err=True)

    if import_settings.fail_on_errors and report.failures:
        raise typer.Exit(code=1)


@app.command("ingest")
def ingest_cmd(
    path: str = typer.Argument(..., help="Path to the RFC822 message, or '-' for stdin."),
    recipients: list[str] = typer.Argument(..., help="Recipient addresses."),
    *,
    sender: str | None = typer.Option(None, "--from", help="Envelope sender."),
    url: str | None = _URL_OPTION,
    credentials: str | None = _CREDENTIALS_OPTION,
    env_file: Path | None = _ENV_FILE_OPTION,
) -> None:
    """Deliver a raw message to local recipients through the ingest endpoint."""
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    server = resolve_server_settings(
        settings,
        url=url,
        credentials=credentials,
        default_user="ingest",
    )

    try:
        raw = sys.stdin.buffer.read() if path == STDIN_PATH else Path(path).read_bytes()
    except OSError as exc:
        typer.echo(f"Failed to read {path}: {exc}", err=True)
        raise typer.Exit(code=1) from None

    with JmapClient(settings=server) as client:
        try:
            outcome = ingest_message(client, raw, recipients=recipients, sender=sender)
        except JmapError as exc:
            typer.echo(f"Failed to send request to JMAP server: {exc}", err=True)
            raise typer.Exit(code=1) from None

    if outcome.message:
        typer.echo(outcome.message)
    raise typer.Exit(code=outcome.exit_code)
