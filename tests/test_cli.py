"""Tests for the Typer command line."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
from conftest import BASE_URL, FakeJmapServer
from typer.testing import CliRunner

from jmap_mail_import.cli import app as app_module
from jmap_mail_import.cli.app import app
from jmap_mail_import.config.settings import ServerSettings
from jmap_mail_import.jmap.client import JmapClient

MBOX = (
    b"From a@example.com Mon Jan  1 10:00:00 2024\nSubject: 1\n\none\n\n"
    b"From b@example.com Mon Jan  1 11:00:00 2024\nSubject: 2\nX-Reject: yes\n\ntwo\n\n"
    b"From c@example.com Mon Jan  1 12:00:00 2024\nSubject: 3\n\nthree\n"
)

runner = CliRunner()


def _basic(user: str, secret: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{secret}".encode()).decode()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every command from an empty directory with no JMAP_ variables."""
    monkeypatch.chdir(tmp_path)
    for name in ("JMAP_SERVER__URL", "JMAP_SERVER__SECRET", "JMAP_IMPORTER__FAIL_ON_ERRORS"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _use_transport(monkeypatch: pytest.MonkeyPatch, transport: httpx.BaseTransport) -> None:
    def factory(*, settings: ServerSettings) -> JmapClient:
        return JmapClient(settings=settings, transport=transport)

    monkeypatch.setattr(app_module, "JmapClient", factory)


def test_import_messages_writes_report(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A run with failures still exits 0 by default and writes the JSON report."""
    server = FakeJmapServer()
    _use_transport(monkeypatch, server.transport())
    mbox = tmp_path / "archive.mbox"
    mbox.write_bytes(MBOX)
    report_file = tmp_path / "report.json"

    result = runner.invoke(
        app,
        [
            "import-messages",
            "--format",
            "mbox",
            "--num-threads",
            "2",
            "--url",
            BASE_URL,
            "--credentials",
            "admin:secret",
            "--report-file",
            str(report_file),
            "user@example.com",
            str(mbox),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Successfully imported 2 messages." in result.output
    assert "There were 1 failures:" in result.output
    payload = json.loads(report_file.read_text(encoding="utf-8"))
    assert payload["imported"] == 2
    assert payload["failures"][0]["identifier"] == "b@example.com"
    assert len(server.imported) == 2


def test_import_messages_fail_on_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """--fail-on-errors turns per-message failures into exit status 1."""
    _use_transport(monkeypatch, FakeJmapServer().transport())
    mbox = tmp_path / "archive.mbox"
    mbox.write_bytes(MBOX)

    result = runner.invoke(
        app,
        [
            "import-messages",
            "-f",
            "mbox",
            "-u",
            BASE_URL,
            "-c",
            "secret",
            "--fail-on-errors",
            "user@example.com",
            str(mbox),
        ],
    )
    assert result.exit_code == 1


def test_import_messages_stdin_requires_mbox(monkeypatch: pytest.MonkeyPatch) -> None:
    """Maildir archives cannot be read from standard input."""
    _use_transport(monkeypatch, FakeJmapServer().transport())
    result = runner.invoke(
        app,
        ["import-messages", "-f", "maildir", "-u", BASE_URL, "-c", "x", "user@example.com", "-"],
    )
    assert result.exit_code == 2


def test_import_messages_from_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    """An mbox piped on standard input is imported."""
    server = FakeJmapServer()
    _use_transport(monkeypatch, server.transport())
    result = runner.invoke(
        app,
        ["import-messages", "-f", "mbox", "-u", BASE_URL, "-c", "x", "user@example.com", "-"],
        input=MBOX,
    )
    assert result.exit_code == 0, result.output
    assert len(server.imported) == 2


def test_import_messages_missing_url() -> None:
    """Without a server URL the command exits with a usage error."""
    result = runner.invoke(
        app,
        ["import-messages", "-f", "mbox", "-c", "x", "user@example.com", "archive.mbox"],
    )
    assert result.exit_code == 2
    assert "Missing server URL" in result.output


def test_import_messages_aborts_on_missing_archive(monkeypatch: pytest.MonkeyPatch) -> None:
    """An unreadable archive aborts the run with status 1."""
    _use_transport(monkeypatch, FakeJmapServer().transport())
    result = runner.invoke(
        app,
        ["import-messages", "-f", "mbox", "-u", BASE_URL, "-c", "x", "user@example.com", "nope"],
    )
    assert result.exit_code == 1
    assert "Import aborted" in result.output


def test_credentials_prompt_when_no_secret(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The secret is prompted for when neither flag nor environment supplies it."""
    server = FakeJmapServer()
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("authorization", ""))
        return server.handle(request)

    _use_transport(monkeypatch, httpx.MockTransport(handler))
    monkeypatch.setenv("JMAP_SERVER__URL", BASE_URL)
    mbox = tmp_path / "archive.mbox"
    mbox.write_bytes(b"From a@example.com\nSubject: 1\n\none\n")

    result = runner.invoke(
        app,
        ["import-messages", "-f", "mbox", "user@example.com", str(mbox)],
        input="prompted-secret\n",
    )
    assert result.exit_code == 0, result.output
    expected = _basic("admin", "prompted-secret")
    assert seen and all(header == expected for header in seen)


def test_ingest_exit_code_follows_dsn(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The ingest command exits with the code of the first failed recipient."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json=[
                {"to": "a@example.com", "status": "success"},
                {"to": "b@example.com", "status": "notFound", "reason": "Mailbox not found"},
            ],
        )

    _use_transport(monkeypatch, httpx.MockTransport(handler))
    message = tmp_path / "message.eml"
    message.write_bytes(b"Subject: hi\r\n\r\nbody\r\n")

    result = runner.invoke(
        app,
        [
            "ingest",
            "--from",
            "sender@example.com",
            "-u",
            BASE_URL,
            "-c",
            "secret",
            str(message),
            "a@example.com",
            "b@example.com",
        ],
    )
    assert result.exit_code == 67
    assert "<b@example.com>: Mailbox not found" in result.output
    assert requests[0].url.params["from"] == "sender@example.com"
    assert requests[0].url.params["to"] == "a@example.com,b@example.com"
    assert requests[0].headers["authorization"] == _basic("ingest", "secret")
