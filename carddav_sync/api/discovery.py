"""
CardDAV endpoint discovery.

Resolves, for one identity, the three URLs the engine needs:
principal -> address-book home set -> address-book collection.

Every step after the initial well-known request is best-effort: when the
server does not confirm a URL, a candidate is constructed from the
configured server URL and the identity instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

from carddav_sync.api.multistatus import MultistatusEntry, read_multistatus, same_href
from carddav_sync.api.transport import CardDAVTransport, TransportResponse
from carddav_sync.errors import AuthenticationError, DiscoveryError, TransportError
from carddav_sync.utils.logging import mask_identity

DEFAULT_SERVER_URL = "https://www.googleapis.com/carddav/v1"
DEFAULT_DISCOVERY_URL = "https://www.googleapis.com/.well-known/carddav"

# Absolute principal URL anywhere in a response body
PRINCIPAL_URL_RE = re.compile(r"https?://[^\"'\s<>]+/principals/[^\"'\s<>]+")

# Path segments that mark a plausible contacts collection
COLLECTION_MARKERS = ("contacts", "addressbooks")

PRINCIPAL_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:current-user-principal/>
  </d:prop>
</d:propfind>"""

HOME_SET_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">
  <d:prop>
    <card:addressbook-home-set/>
  </d:prop>
</d:propfind>"""

COLLECTION_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">
  <d:prop>
    <d:resourcetype/>
    <d:displayname/>
    <card:supported-address-data/>
  </d:prop>
</d:propfind>"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredEndpoints:
    """
    URLs resolved for one identity, cached for a sync session.

    The *_discovered flags record whether each URL was confirmed by the
    server (True) or constructed as a fallback (False).
    """

    principal_url: str
    address_book_home_url: str
    collection_url: str
    principal_discovered: bool = False
    home_discovered: bool = False
    collection_discovered: bool = False

    @property
    def fully_discovered(self) -> bool:
        return (
            self.principal_discovered
            and self.home_discovered
            and self.collection_discovered
        )


def looks_like_collection(href: str) -> bool:
    """
    Check whether an href structurally matches a contacts collection.

    The path must be collection-like (trailing slash, not a .vcf member)
    and contain a 'contacts' or 'addressbooks' segment.
    """
    path = urlparse(href).path.lower()
    if not path.endswith("/") or ".vcf" in path:
        return False
    return any(marker in path for marker in COLLECTION_MARKERS)


class EndpointResolver:
    """
    Discovers principal, home-set and collection URLs over PROPFIND.

    Usage:
        resolver = EndpointResolver(transport)
        endpoints = resolver.discover("user@example.com")
        print(endpoints.collection_url)
    """

    def __init__(
        self,
        transport: CardDAVTransport,
        server_url: str = DEFAULT_SERVER_URL,
        discovery_url: str = DEFAULT_DISCOVERY_URL,
    ):
        """
        Initialize the resolver.

        Args:
            transport: Authenticated transport for PROPFIND requests
            server_url: Base URL used to construct fallback candidates
            discovery_url: Well-known discovery URL queried first
        """
        self.transport = transport
        self.server_url = server_url.rstrip("/")
        self.discovery_url = discovery_url

    # =========================================================================
    # Constructed fallbacks
    # =========================================================================

    def _quoted(self, identity: str) -> str:
        return quote(identity, safe="@")

    def construct_principal_url(self, identity: str) -> str:
        """Build the fallback principal URL for an identity."""
        return f"{self.server_url}/principals/{self._quoted(identity)}/"

    def construct_home_url(self, identity: str) -> str:
        """Build the fallback address-book home URL for an identity."""
        return f"{self.server_url}/addressbooks/{self._quoted(identity)}/"

    @staticmethod
    def construct_collection_url(home_url: str) -> str:
        """Build the fallback collection URL inside a home set."""
        return urljoin(home_url if home_url.endswith("/") else home_url + "/", "contacts/")

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(self, identity: str) -> DiscoveredEndpoints:
        """
        Resolve the endpoints for an identity.

        Args:
            identity: Account email address

        Returns:
            DiscoveredEndpoints, possibly built from constructed fallbacks

        Raises:
            DiscoveryError: If the initial well-known request is rejected for
                authentication or fails without a recoverable answer
        """
        logger.info(f"Discovering CardDAV endpoints for {mask_identity(identity)}")

        principal_url = self._find_principal()
        principal_discovered = principal_url is not None
        if principal_url is None:
            principal_url = self.construct_principal_url(identity)
            logger.info(f"No principal reference found, using {principal_url}")
            self._verify_principal(principal_url)

        home_url = self._find_home_set(principal_url)
        home_discovered = home_url is not None
        if home_url is None:
            home_url = self.construct_home_url(identity)
            logger.info(f"No address-book home set found, using {home_url}")

        collection_url = None
        if home_discovered:
            collection_url = self._find_address_book_in_home(home_url)
        collection_discovered = collection_url is not None
        if collection_url is None:
            candidate = self.construct_collection_url(home_url)
            collection_url, collection_discovered = self._verify_collection(candidate)

        endpoints = DiscoveredEndpoints(
            principal_url=principal_url,
            address_book_home_url=home_url,
            collection_url=collection_url,
            principal_discovered=principal_discovered,
            home_discovered=home_discovered,
            collection_discovered=collection_discovered,
        )
        logger.info(
            f"Using collection {endpoints.collection_url} "
            f"(principal {'discovered' if principal_discovered else 'constructed'}, "
            f"home {'discovered' if home_discovered else 'constructed'}, "
            f"collection {'discovered' if collection_discovered else 'constructed'})"
        )
        return endpoints

    def _find_principal(self) -> Optional[str]:
        """Query the well-known URL; the only step whose failure is fatal."""
        try:
            response = self.transport.propfind(
                self.discovery_url, PRINCIPAL_BODY, depth=0
            )
        except AuthenticationError as e:
            raise DiscoveryError(
                f"Authentication failed during discovery: {e}. "
                f"Please re-check your email and app password.",
                auth_failure=True,
            ) from e
        except TransportError as e:
            if e.status is None or e.status >= 500:
                raise DiscoveryError(
                    f"Could not reach the CardDAV server at {self.discovery_url}: {e}. "
                    f"Please re-check your credentials and network connection."
                ) from e
            logger.info(
                f"Well-known discovery returned {e.status}, falling back to "
                f"constructed URLs"
            )
            return None

        return self._extract_principal(response)

    def _extract_principal(self, response: TransportResponse) -> Optional[str]:
        for entry in read_multistatus(response.body_text):
            if entry.principal_href:
                return urljoin(response.url, entry.principal_href)

        match = PRINCIPAL_URL_RE.search(response.body_text or "")
        if match:
            return match.group(0)
        return None

    def _verify_principal(self, principal_url: str) -> bool:
        """Check a constructed principal; failures are logged only."""
        try:
            response = self.transport.propfind(principal_url, PRINCIPAL_BODY, depth=0)
        except TransportError as e:
            logger.warning(f"Could not verify principal {principal_url}: {e}")
            return False

        if response.status in (200, 207):
            logger.debug(f"Verified principal {principal_url}")
            return True
        logger.warning(
            f"Unexpected status {response.status} verifying principal {principal_url}"
        )
        return False

    def _find_home_set(self, principal_url: str) -> Optional[str]:
        try:
            response = self.transport.propfind(principal_url, HOME_SET_BODY, depth=1)
        except TransportError as e:
            logger.warning(f"Home-set lookup on {principal_url} failed: {e}")
            return None

        for entry in read_multistatus(response.body_text):
            if entry.home_set_href:
                return urljoin(response.url, entry.home_set_href)
        return None

    def _find_address_book_in_home(self, home_url: str) -> Optional[str]:
        """List a discovered home set and return its first address book."""
        try:
            response = self.transport.propfind(home_url, COLLECTION_BODY, depth=1)
        except TransportError as e:
            logger.warning(f"Listing home set {home_url} failed: {e}")
            return None

        for entry in read_multistatus(response.body_text):
            if not entry.ok or not entry.is_address_book:
                continue
            href = urljoin(response.url, entry.href)
            if not same_href(href, home_url):
                return href
        return None

    def _verify_collection(self, candidate: str) -> tuple[str, bool]:
        """
        Verify a constructed collection and look for a better href.

        Returns:
            Tuple of (collection URL, whether the server confirmed it)
        """
        try:
            response = self.transport.propfind(candidate, COLLECTION_BODY, depth=1)
        except TransportError as e:
            logger.warning(f"Could not verify collection {candidate}: {e}")
            return candidate, False

        chosen = self._pick_collection(read_multistatus(response.body_text))
        if chosen is None:
            logger.debug(f"No collection entry confirmed {candidate}")
            return candidate, False

        href = urljoin(response.url, chosen.href)
        if not same_href(href, candidate):
            logger.info(f"Preferring server collection {href} over {candidate}")
        return href, True

    @staticmethod
    def _pick_collection(
        entries: list[MultistatusEntry],
    ) -> Optional[MultistatusEntry]:
        matching = [e for e in entries if e.ok and looks_like_collection(e.href)]
        for entry in matching:
            if entry.is_address_book:
                return entry
        return matching[0] if matching else None
