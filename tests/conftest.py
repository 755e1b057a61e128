"""Shared fixtures: a fake JMAP server and archive builders."""

from __future__ import annotations

import itertools
import json
import threading
from pathlib import Path
from typing import Any

import httpx
import pytest

from jmap_mail_import.config.settings import ServerSettings
from jmap_mail_import.jmap.client import MAIL_CAPABILITY, PRINCIPALS_CAPABILITY, JmapClient

BASE_URL = "https://jmap.test"


class FakeJmapServer:
    """In-memory JMAP server driven through ``httpx.MockTransport``."""

    def __init__(
        self,
        *,
        mailboxes: list[dict[str, Any]] | None = None,
        email: str = "user@example.com",
        account_id: str = "acc1",
        reject_mailbox_names: frozenset[str] = frozenset(),
    ) -> None:
        self.mailboxes: dict[str, dict[str, Any]] = {
            m["id"]: dict(m)
            for m in (
                mailboxes
                if mailboxes is not None
                else [{"id": "in1", "name": "Inbox", "parentId": None, "role": "inbox"}]
            )
        }
        self.email = email
        self.account_id = account_id
        self.reject_mailbox_names = reject_mailbox_names
        self.blobs: dict[str, bytes] = {}
        self.imported: list[dict[str, Any]] = []
        self.set_requests: list[dict[str, Any]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path == "/.well-known/jmap":
            return httpx.Response(
                200,
                json={
                    "apiUrl": f"{BASE_URL}/jmap/",
                    "uploadUrl": f"{BASE_URL}/upload/{{accountId}}/",
                    "primaryAccounts": {PRINCIPALS_CAPABILITY: "admin", MAIL_CAPABILITY: "admin"},
                },
            )
        if request.method == "POST" and path == "/jmap/":
            body = json.loads(request.content)
            responses = [
                [name, self._method(name, args), call_id]
                for name, args, call_id in body["methodCalls"]
            ]
            return httpx.Response(200, json={"methodResponses": responses})
        if request.method == "POST" and path.startswith("/upload/"):
            with self._lock:
                blob_id = f"b{next(self._ids)}"
                self.blobs[blob_id] = request.content
            return httpx.Response(
                200,
                json={"blobId": blob_id, "type": "message/rfc822", "size": len(request.content)},
            )
        return httpx.Response(404, text="not found")

    def _method(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if name == "Principal/query":
                ids = [self.account_id] if args["filter"].get("email") == self.email else []
                return {"ids": ids}
            if name == "Mailbox/get":
                return {"list": list(self.mailboxes.values())}
            if name == "Mailbox/set":
                return self._mailbox_set(args)
            if name == "Email/import":
                return self._email_import(args)
        raise AssertionError(f"unexpected method {name}")

    def _mailbox_set(self, args: dict[str, Any]) -> dict[str, Any]:
        self.set_requests.append(args)
        created: dict[str, Any] = {}
        not_created: dict[str, Any] = {}
        for cid, obj in args.get("create", {}).items():
            parent = obj.get("parentId")
            if isinstance(parent, str) and parent.startswith("#"):
                ref = created.get(parent[1:])
                if ref is None:
                    not_created[cid] = {"type": "invalidProperties", "properties": ["parentId"]}
                    continue
                parent = ref["id"]
            if obj["name"] in self.reject_mailbox_names:
                not_created[cid] = {"type": "forbidden", "description": "name not allowed"}
                continue
            new_id = f"mb{next(self._ids)}"
            self.mailboxes[new_id] = {
                "id": new_id,
                "name": obj["name"],
                "parentId": parent,
                "role": None,
            }
            created[cid] = {"id": new_id}
        return {"created": created, "notCreated": not_created}

    def _email_import(self, args: dict[str, Any]) -> dict[str, Any]:
        created: dict[str, Any] = {}
        not_created: dict[str, Any] = {}
        for cid, email in args["emails"].items():
            if b"X-Reject: yes" in self.blobs[email["blobId"]]:
                not_created[cid] = {"type": "invalidEmail", "description": "rejected"}
                continue
            self.imported.append(email)
            created[cid] = {"id": f"e{next(self._ids)}", "blobId": email["blobId"]}
        return {"created": created, "notCreated": not_created}


@pytest.fixture
def fake_server() -> FakeJmapServer:
    """Return a fake server whose account only has an Inbox."""
    return FakeJmapServer()


@pytest.fixture
def server_settings() -> ServerSettings:
    """Return settings pointing at the fake server."""
    return ServerSettings(url=BASE_URL, username="admin", secret="secret")


@pytest.fixture
def jmap_client(fake_server: FakeJmapServer, server_settings: ServerSettings) -> JmapClient:
    """Return a client wired to the fake server."""
    return JmapClient(settings=server_settings, transport=fake_server.transport())


def make_message(subject: str, *, extra_headers: str = "") -> bytes:
    """Build a small RFC822 message."""
    return (
        f"From: sender@example.com\r\nTo: user@example.com\r\nSubject: {subject}\r\n"
        f"{extra_headers}\r\nBody of {subject}\r\n"
    ).encode()


def make_maildir(path: Path, messages: dict[str, bytes] | None = None) -> Path:
    """Create a maildir with ``cur``/``new``/``tmp`` and the given ``cur`` files."""
    for sub in ("cur", "new", "tmp"):
        (path / sub).mkdir(parents=True, exist_ok=True)
    for name, content in (messages or {}).items():
        (path / "cur" / name).write_bytes(content)
    return path
