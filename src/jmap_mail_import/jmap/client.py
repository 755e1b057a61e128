"""JMAP session, transport and method-call plumbing."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

import httpx

from jmap_mail_import.config.settings import ServerSettings

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
PRINCIPALS_CAPABILITY = "urn:ietf:params:jmap:principals"

DEFAULT_USING: tuple[str, ...] = (CORE_CAPABILITY, MAIL_CAPABILITY, PRINCIPALS_CAPABILITY)

_RETRYABLE_STATUS: frozenset[int] = frozenset({429, 502, 503, 504})

logger = logging.getLogger(__name__)


class JmapError(RuntimeError):
    """Raised for JMAP request failures."""


class JmapTransportError(JmapError):
    """Raised when the server could not be reached or asked us to retry."""


class JmapSessionError(JmapError):
    """Raised when the session resource is missing or malformed."""


class JmapMethodError(JmapError):
    """Raised when the server rejects a method call or a set/import entry."""

    def __init__(self, error_type: str, description: str | None = None) -> None:
        """Initialize the error.

        Args:
            error_type: JMAP error type, e.g. ``invalidProperties``.
            description: Optional human-readable description from the server.
        """
        self.type = error_type
        self.description = description
        super().__init__(f"{error_type}: {description}" if description else error_type)

    @classmethod
    def from_payload(cls, payload: object) -> JmapMethodError:
        """Build an error from a JMAP ``SetError``/method error object."""
        if not isinstance(payload, dict):
            return cls("serverFail", repr(payload))
        description = payload.get("description")
        return cls(
            str(payload.get("type", "serverFail")),
            str(description) if description is not None else None,
        )


class AccountLookupError(JmapError):
    """Raised when an e-mail address does not map to exactly one account."""


@dataclass(frozen=True)
class JmapSession:
    """Subset of the JMAP session resource used by the tool."""

    api_url: str
    upload_url: str
    primary_accounts: dict[str, str]

    def primary_account(self, capability: str) -> str:
        """Return the primary account for a capability.

        Raises:
            JmapSessionError: If the server advertises no account for it.
        """
        account_id = self.primary_accounts.get(capability) or self.primary_accounts.get(
            CORE_CAPABILITY,
        )
        if not account_id:
            raise JmapSessionError(f"No primary account for capability {capability}")
        return account_id

    @classmethod
    def from_payload(cls, payload: object) -> JmapSession:
        """Parse a session resource.

        Raises:
            JmapSessionError: If required fields are missing.
        """
        if not isinstance(payload, dict):
            raise JmapSessionError(f"Unexpected session response: {payload!r}")
        try:
            return cls(
                api_url=str(payload["apiUrl"]),
                upload_url=str(payload["uploadUrl"]),
                primary_accounts={
                    str(k): str(v) for k, v in (payload.get("primaryAccounts") or {}).items()
                },
            )
        except KeyError as exc:
            raise JmapSessionError(f"Session resource is missing {exc.args[0]!r}") from exc


class JmapClient:
    """Thread-safe JMAP client sharing one HTTP connection pool."""

    def __init__(
        self,
        *,
        settings: ServerSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Server URL, credentials and timeouts.
            transport: Optional httpx transport (used by tests).

        Raises:
            JmapError: If the settings carry no URL or secret.
        """
        if not settings.url or not settings.secret:
            raise JmapError("Server URL and secret are required")
        self._settings = settings
        self._http = httpx.Client(
            auth=(settings.username, settings.secret),
            timeout=settings.timeout_seconds,
            verify=settings.verify_tls,
            follow_redirects=True,
            transport=transport,
        )
        self._session: JmapSession | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> JmapClient:
        """Return the client for use as a context manager."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the client on context exit."""
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()

    @property
    def base_url(self) -> str:
        """Return the configured server base URL."""
        assert self._settings.url is not None
        return self._settings.url

    @property
    def session(self) -> JmapSession:
        """Return the JMAP session, fetching it on first use."""
        with self._lock:
            if self._session is None:
                payload = self.request_json("GET", self._settings.session_url)
                self._session = JmapSession.from_payload(payload)
                logger.info("JMAP session established (api_url=%s)", self._session.api_url)
            return self._session

    def request(
        self,
        method: str,
        url: str,
        *,
        content: bytes | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request, translating httpx failures.

        Raises:
            JmapTransportError: On connection failures or retryable statuses.
            JmapError: On other non-success statuses.
        """
        try:
            resp = self._http.request(
                method,
                url,
                content=content,
                json=json_body,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise JmapTransportError(f"{method} {url} failed: {exc!r}") from exc

        if resp.status_code in _RETRYABLE_STATUS:
            raise JmapTransportError(f"{method} {url} returned HTTP {resp.status_code}")
        if resp.is_error:
            raise JmapError(f"{method} {url} returned HTTP {resp.status_code}: {resp.text[:200]}")
        return resp

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body.

        Raises:
            JmapError: If the body is not valid JSON.
        """
        resp = self.request(method, url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise JmapError(f"{method} {url} returned invalid JSON: {exc}") from exc

    def call(
        self,
        method_calls: list[tuple[str, dict[str, Any], str]],
        *,
        using: tuple[str, ...] = DEFAULT_USING,
    ) -> dict[str, dict[str, Any]]:
        """Invoke one or more JMAP methods in a single request.

        Args:
            method_calls: ``(method name, arguments, call id)`` triples.
            using: Capabilities to declare.

        Returns:
            Mapping of call id to the method's response arguments.

        Raises:
            JmapMethodError: If any call returned a method-level error.
            JmapError: If the response is malformed.
        """
        body = {
            "using": list(using),
            "methodCalls": [[name, args, call_id] for name, args, call_id in method_calls],
        }
        payload = self.request_json("POST", self.session.api_url, json_body=body)
        responses = payload.get("methodResponses") if isinstance(payload, dict) else None
        if not isinstance(responses, list):
            raise JmapError(f"Unexpected JMAP response: {payload!r}")

        out: dict[str, dict[str, Any]] = {}
        for entry in responses:
            name, args, call_id = entry
            if name == "error":
                raise JmapMethodError.from_payload(args)
            out[str(call_id)] = args
        return out

    def upload_blob(self, account_id: str, content: bytes, *, content_type: str) -> str:
        """Upload raw bytes and return the new blob id.

        Raises:
            JmapError: If the upload response carries no blob id.
        """
        url = self.session.upload_url.replace("{accountId}", account_id)
        payload = self.request_json(
            "POST",
            url,
            content=content,
            headers={"Content-Type": content_type},
        )
        if not isinstance(payload, dict) or "blobId" not in payload:
            raise JmapError(f"Unexpected upload response: {payload!r}")
        return str(payload["blobId"])

    def resolve_account_id(self, email: str) -> str:
        """Map an account e-mail address to its account id.

        Args:
            email: Login e-mail of an individual principal.

        Returns:
            The principal id, which doubles as its JMAP account id.

        Raises:
            AccountLookupError: If zero or several principals match.
        """
        account_id = self.session.primary_account(PRINCIPALS_CAPABILITY)
        resp = self.call(
            [
                (
                    "Principal/query",
                    {
                        "accountId": account_id,
                        "filter": {"type": "individual", "email": email},
                    },
                    "q0",
                ),
            ],
        )
        ids = [str(x) for x in resp["q0"].get("ids") or []]
        if not ids:
            raise AccountLookupError(f"No principal found with email '{email}'.")
        if len(ids) > 1:
            raise AccountLookupError(f"Multiple principals found with email '{email}'.")
        return ids[0]
