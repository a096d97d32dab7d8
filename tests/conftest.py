"""Shared fixtures: an in-memory CardDAV server behind a fake HTTP session."""

import itertools
from typing import Optional
from urllib.parse import unquote, urlparse
from xml.sax.saxutils import escape

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from carddav_sync.auth.credentials import Credentials, MemoryCredentialStore
from carddav_sync.sync.engine import ContactSyncEngine

BASE_URL = "https://dav.example.com"
IDENTITY = "user@example.com"
SECRET = "app-password"

PRINCIPAL_PATH = f"/principals/{IDENTITY}/"
HOME_PATH = f"/addressbooks/{IDENTITY}/"
COLLECTION_PATH = f"/addressbooks/{IDENTITY}/contacts/"
WELL_KNOWN_PATH = "/.well-known/carddav"


def make_response(
    status: int,
    body: str = "",
    headers: Optional[dict] = None,
    url: str = "",
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    response.encoding = "utf-8"
    response.headers = CaseInsensitiveDict(headers or {})
    response.url = url
    return response


def multistatus(*responses: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<d:multistatus xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">'
        + "".join(responses)
        + "</d:multistatus>"
    )


def dav_response(href: str, props: str, status: str = "HTTP/1.1 200 OK") -> str:
    return (
        f"<d:response><d:href>{href}</d:href>"
        f"<d:propstat><d:prop>{props}</d:prop>"
        f"<d:status>{status}</d:status></d:propstat></d:response>"
    )


def vcard(name: str, email: Optional[str] = None, uid: Optional[str] = None) -> str:
    lines = ["BEGIN:VCARD", "VERSION:3.0"]
    if uid:
        lines.append(f"UID:{uid}")
    lines.append(f"FN:{name}")
    if email:
        lines.append(f"EMAIL;TYPE=INTERNET:{email}")
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"


class FakeCardDAVServer:
    """
    requests.Session stand-in serving one address book from memory.

    Records are keyed by path and carry real entity tags: every write
    produces a new tag, and If-Match mismatches answer 412.
    """

    def __init__(self):
        self.records: dict[str, tuple[str, str]] = {}
        self.calls: list[dict] = []
        self.expected_auth = Credentials(IDENTITY, SECRET).basic_auth_header()
        self._tags = itertools.count(1)

        # Knobs for failure scenarios
        self.well_known_status = 207
        self.advertise_principal = True
        self.advertise_home_set = True
        self.principal_status = 207
        self.report_status = 207
        self.report_bare_vcards = False
        self.members_status = 207
        self.get_failures: set[str] = set()
        self.put_returns_etag = True
        self.network_down = False

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def next_tag(self) -> str:
        return f'"tag-{next(self._tags)}"'

    def add_record(self, name: str, card: str) -> str:
        """Store a record directly; returns its path."""
        path = f"{COLLECTION_PATH}{name}.vcf"
        self.records[path] = (card, self.next_tag())
        return path

    def touch(self, path: str) -> str:
        """Simulate another client modifying a record."""
        card, _ = self.records[path]
        tag = self.next_tag()
        self.records[path] = (card, tag)
        return tag

    def methods(self) -> list[str]:
        return [call["method"] for call in self.calls]

    # -------------------------------------------------------------------------
    # Session interface
    # -------------------------------------------------------------------------

    def request(self, method, url, headers=None, data=None, timeout=None):
        headers = CaseInsensitiveDict(headers or {})
        body = data.decode("utf-8") if isinstance(data, bytes) else (data or "")
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "body": body,
                "timeout": timeout,
            }
        )

        if self.network_down:
            raise requests.exceptions.ConnectionError("connection refused")

        if headers.get("Authorization") != self.expected_auth:
            return make_response(401, "Unauthorized", url=url)

        path = unquote(urlparse(url).path)
        handler = getattr(self, f"_handle_{method.lower()}", None)
        if handler is None:
            return make_response(405, url=url)
        return handler(path, headers, body, url)

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    def _handle_propfind(self, path, headers, body, url):
        depth = headers.get("Depth", "0")

        if path == WELL_KNOWN_PATH:
            if self.well_known_status != 207:
                return make_response(self.well_known_status, "nope", url=url)
            props = (
                f"<d:current-user-principal><d:href>{PRINCIPAL_PATH}</d:href>"
                f"</d:current-user-principal>"
                if self.advertise_principal
                else ""
            )
            return make_response(207, multistatus(dav_response("/", props)), url=url)

        if path == PRINCIPAL_PATH:
            if self.principal_status != 207:
                return make_response(self.principal_status, url=url)
            props = ""
            if "addressbook-home-set" in body and self.advertise_home_set:
                props = (
                    f"<card:addressbook-home-set><d:href>{HOME_PATH}</d:href>"
                    f"</card:addressbook-home-set>"
                )
            return make_response(
                207, multistatus(dav_response(PRINCIPAL_PATH, props)), url=url
            )

        if path == HOME_PATH:
            entries = [
                dav_response(HOME_PATH, "<d:resourcetype><d:collection/></d:resourcetype>")
            ]
            if depth == "1":
                entries.append(
                    dav_response(
                        COLLECTION_PATH,
                        "<d:resourcetype><d:collection/><card:addressbook/>"
                        "</d:resourcetype>",
                    )
                )
            return make_response(207, multistatus(*entries), url=url)

        if path == COLLECTION_PATH:
            if self.members_status != 207:
                return make_response(self.members_status, url=url)
            entries = [
                dav_response(
                    COLLECTION_PATH,
                    "<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>",
                )
            ]
            if depth == "1":
                for record_path, (_, tag) in sorted(self.records.items()):
                    entries.append(
                        dav_response(
                            record_path,
                            f"<d:getetag>{escape(tag)}</d:getetag><d:resourcetype/>",
                        )
                    )
            return make_response(207, multistatus(*entries), url=url)

        if path in self.records:
            _, tag = self.records[path]
            return make_response(
                207,
                multistatus(dav_response(path, f"<d:getetag>{escape(tag)}</d:getetag>")),
                url=url,
            )

        return make_response(404, url=url)

    def _handle_report(self, path, headers, body, url):
        if path != COLLECTION_PATH:
            return make_response(404, url=url)
        if self.report_status != 207:
            return make_response(self.report_status, "report unsupported", url=url)
        if self.report_bare_vcards:
            cards = "".join(card for _, (card, _) in sorted(self.records.items()))
            return make_response(207, cards, url=url)

        entries = [
            dav_response(
                record_path,
                f"<d:getetag>{escape(tag)}</d:getetag>"
                f"<card:address-data>{escape(card)}</card:address-data>",
            )
            for record_path, (card, tag) in sorted(self.records.items())
        ]
        return make_response(207, multistatus(*entries), url=url)

    def _handle_get(self, path, headers, body, url):
        if path in self.get_failures:
            return make_response(500, "boom", url=url)
        if path not in self.records:
            return make_response(404, url=url)
        card, tag = self.records[path]
        return make_response(200, card, headers={"ETag": tag}, url=url)

    def _handle_put(self, path, headers, body, url):
        if_match = headers.get("If-Match")
        existing = self.records.get(path)
        if if_match is not None and (existing is None or existing[1] != if_match):
            return make_response(412, "Precondition Failed", url=url)

        tag = self.next_tag()
        self.records[path] = (body, tag)
        response_headers = {"ETag": tag} if self.put_returns_etag else {}
        return make_response(
            204 if existing else 201, headers=response_headers, url=url
        )

    def _handle_delete(self, path, headers, body, url):
        if path not in self.records:
            return make_response(404, url=url)
        if_match = headers.get("If-Match")
        if if_match is not None and self.records[path][1] != if_match:
            return make_response(412, "Precondition Failed", url=url)
        del self.records[path]
        return make_response(204, url=url)


@pytest.fixture
def server() -> FakeCardDAVServer:
    return FakeCardDAVServer()


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore(Credentials(IDENTITY, SECRET))


@pytest.fixture
def engine(server, credential_store) -> ContactSyncEngine:
    return ContactSyncEngine(
        credential_store=credential_store,
        http_session=server,
        server_url=BASE_URL,
        discovery_url=f"{BASE_URL}{WELL_KNOWN_PATH}",
        timeout=5,
    )
