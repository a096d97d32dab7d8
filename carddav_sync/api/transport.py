"""
Authenticated HTTP transport for CardDAV requests.

Wraps a requests.Session to issue WebDAV/CardDAV verbs with:
- Basic authentication from the credential store on every request
- A bounded timeout on every call
- Normalized responses (status, headers, body text)
- Typed errors for authentication failures, entity-tag conflicts and
  transport failures
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import requests
from requests.exceptions import RequestException
from requests.structures import CaseInsensitiveDict

from carddav_sync.auth.credentials import CredentialStore
from carddav_sync.errors import AuthenticationError, ConflictError, TransportError
from carddav_sync.sync.vcard import VCARD_CONTENT_TYPE

# Default deadline for a single request, in seconds
DEFAULT_TIMEOUT = 30.0

DEFAULT_USER_AGENT = "carddav-sync (CardDAV client)"

XML_CONTENT_TYPE = "application/xml; charset=utf-8"
ACCEPT_HEADER = "text/xml, application/xml, text/vcard, application/vcard+xml"

# Verbs whose 412 answer means the If-Match entity tag was stale
CONDITIONAL_METHODS = ("PUT", "DELETE")

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """
    A successful (2xx) protocol response.

    Attributes:
        status: HTTP status code
        headers: Response headers (case-insensitive lookup)
        body_text: Decoded response body
        url: Final URL after redirects
    """

    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body_text: str = ""
    url: str = ""

    @property
    def etag(self) -> Optional[str]:
        """Value of the ETag header, if the server sent one."""
        value = self.headers.get("ETag")
        return value.strip() if value else None


def format_if_match(entity_tag: str) -> str:
    """
    Format an entity tag for an If-Match header.

    Tags from the server usually carry their quotes already; bare tags
    are wrapped.
    """
    tag = entity_tag.strip()
    if tag.startswith('"') or tag.startswith('W/"'):
        return tag
    return f'"{tag}"'


class CardDAVTransport:
    """
    Issues authenticated CardDAV requests.

    Attributes:
        credential_store: Source of the identity/secret pair
        session: requests.Session (or compatible object) used for I/O
        timeout: Default per-request deadline in seconds

    Usage:
        transport = CardDAVTransport(MemoryCredentialStore(creds))

        response = transport.propfind(url, body, depth=0)
        transport.put(href, vcard_text, etag='"abc"')
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        verify_ssl: bool = True,
    ):
        """
        Initialize the transport.

        Args:
            credential_store: Store supplying credentials for each request
            session: HTTP session to use (default: a new requests.Session)
            timeout: Default request deadline in seconds (default 30)
            user_agent: User-Agent header value
            verify_ssl: Whether to verify TLS certificates
        """
        self.credential_store = credential_store
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent
        if session is None:
            self.session.verify = verify_ssl

    def _auth_header(self) -> str:
        credentials = self.credential_store.get()
        if credentials is None:
            raise AuthenticationError("No credentials set. Please sign in first.")
        return credentials.basic_auth_header()

    def request(
        self,
        url: str,
        method: str,
        headers: Optional[dict[str, str]] = None,
        body: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        Issue an authenticated request.

        Args:
            url: Absolute target URL
            method: HTTP verb (PROPFIND, REPORT, GET, PUT, DELETE, ...)
            headers: Extra request headers
            body: Request body text
            timeout: Deadline override in seconds

        Returns:
            TransportResponse for any 2xx status (including 207)

        Raises:
            AuthenticationError: On 401/403 or when no credentials are set
            ConflictError: On 412 for PUT/DELETE
            TransportError: On any other non-2xx status or network failure
        """
        method = method.upper()
        request_headers = {
            "Authorization": self._auth_header(),
            "Accept": ACCEPT_HEADER,
            "User-Agent": self.user_agent,
        }
        if body is not None:
            request_headers["Content-Type"] = XML_CONTENT_TYPE
        request_headers.update(headers or {})

        logger.debug(
            f"{method} {url} "
            f"(depth={request_headers.get('Depth', '-')}, "
            f"body={len(body) if body else 0} chars)"
        )

        try:
            response = self.session.request(
                method,
                url,
                headers=request_headers,
                data=body.encode("utf-8") if body is not None else None,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except RequestException as e:
            logger.error(f"{method} {url} failed without a response: {e}")
            raise TransportError(
                f"{method} {url} failed: {e}", method=method, url=url
            ) from e

        status = response.status_code
        text = response.text or ""
        logger.debug(f"{method} {url} -> {status} ({len(text)} chars)")

        if 200 <= status < 300:
            return TransportResponse(
                status=status,
                headers=CaseInsensitiveDict(response.headers or {}),
                body_text=text,
                url=getattr(response, "url", None) or url,
            )

        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed ({status}) for {method} {url}. "
                f"Please check your email and app password.",
                status=status,
                method=method,
                url=url,
                body=text,
            )

        if status == 412 and method in CONDITIONAL_METHODS:
            raise ConflictError(
                f"{method} {url} rejected: the record was modified on the server "
                f"since it was last read. Re-fetch and try again.",
                status=status,
                method=method,
                url=url,
                body=text,
            )

        raise TransportError(
            f"{method} {url} failed with status {status}",
            status=status,
            method=method,
            url=url,
            body=text,
        )

    def propfind(
        self, url: str, body: str, depth: int = 0, timeout: Optional[float] = None
    ) -> TransportResponse:
        """Issue a PROPFIND with the given Depth header."""
        return self.request(
            url, "PROPFIND", headers={"Depth": str(depth)}, body=body, timeout=timeout
        )

    def report(
        self, url: str, body: str, depth: int = 1, timeout: Optional[float] = None
    ) -> TransportResponse:
        """Issue a REPORT query with the given Depth header."""
        return self.request(
            url, "REPORT", headers={"Depth": str(depth)}, body=body, timeout=timeout
        )

    def get(self, url: str, timeout: Optional[float] = None) -> TransportResponse:
        """Retrieve a single resource."""
        return self.request(url, "GET", timeout=timeout)

    def put(
        self,
        url: str,
        body: str,
        etag: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        Write a vCard resource.

        Args:
            url: Target resource URL
            body: vCard text
            etag: Expected entity tag; omitted for unconditional creation
        """
        headers = {"Content-Type": VCARD_CONTENT_TYPE}
        if etag:
            headers["If-Match"] = format_if_match(etag)
        return self.request(url, "PUT", headers=headers, body=body, timeout=timeout)

    def delete(
        self, url: str, etag: Optional[str] = None, timeout: Optional[float] = None
    ) -> TransportResponse:
        """Remove a resource, conditionally on its entity tag."""
        headers = {}
        if etag:
            headers["If-Match"] = format_if_match(etag)
        return self.request(url, "DELETE", headers=headers, timeout=timeout)
