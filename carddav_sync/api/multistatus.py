"""
WebDAV multistatus (207) envelope parsing.

Parses PROPFIND and REPORT responses into flat MultistatusEntry records
with the properties the engine needs: href, entity tag, resource types,
principal and home-set references, and embedded vCard address data.

The envelope is read with xml.etree.ElementTree. Servers occasionally
return bodies that are not well-formed XML; scan_multistatus() recovers
the same fields with tolerant pattern matching for those cases.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse
from xml.sax.saxutils import unescape

from carddav_sync.errors import ParseError

DAV_NS = "DAV:"
CARDDAV_NS = "urn:ietf:params:xml:ns:carddav"

STATUS_RE = re.compile(r"HTTP/\d(?:\.\d)?\s+(\d{3})")

# Tolerant patterns for bodies ElementTree rejects
RESPONSE_RE = re.compile(
    r"<(?:[\w-]+:)?response\b[^>]*>(.*?)</(?:[\w-]+:)?response>",
    re.IGNORECASE | re.DOTALL,
)
HREF_RE = re.compile(
    r"<(?:[\w-]+:)?href\b[^>]*>\s*([^<]+?)\s*</(?:[\w-]+:)?href>", re.IGNORECASE
)
ETAG_RE = re.compile(
    r"<(?:[\w-]+:)?getetag\b[^>]*>\s*([^<]*?)\s*</(?:[\w-]+:)?getetag>", re.IGNORECASE
)
ADDRESS_DATA_RE = re.compile(
    r"<(?:[\w-]+:)?address-data\b[^>]*>(.*?)</(?:[\w-]+:)?address-data>",
    re.IGNORECASE | re.DOTALL,
)
PRINCIPAL_RE = re.compile(
    r"<(?:[\w-]+:)?current-user-principal\b[^>]*>(.*?)</(?:[\w-]+:)?current-user-principal>",
    re.IGNORECASE | re.DOTALL,
)
HOME_SET_RE = re.compile(
    r"<(?:[\w-]+:)?addressbook-home-set\b[^>]*>(.*?)</(?:[\w-]+:)?addressbook-home-set>",
    re.IGNORECASE | re.DOTALL,
)
RESOURCETYPE_RE = re.compile(
    r"<(?:[\w-]+:)?resourcetype\b[^>]*>(.*?)</(?:[\w-]+:)?resourcetype>",
    re.IGNORECASE | re.DOTALL,
)
ELEMENT_NAME_RE = re.compile(r"<(?:[\w-]+:)?([\w-]+)\s*/?>")

# Entities unescape() does not handle by default
XML_ENTITIES = {"&quot;": '"', "&apos;": "'"}

logger = logging.getLogger(__name__)


@dataclass
class MultistatusEntry:
    """
    One <response> element of a multistatus envelope.

    Attributes:
        href: Resource href as sent by the server (usually server-relative)
        status: Response-level HTTP status, when the server sent one
        etag: Value of getetag, when present
        address_data: Embedded vCard text, when present
        resource_types: Local names inside resourcetype (collection, addressbook, ...)
        principal_href: href inside current-user-principal
        home_set_href: href inside addressbook-home-set
        display_name: Value of displayname
    """

    href: str
    status: Optional[int] = None
    etag: Optional[str] = None
    address_data: Optional[str] = None
    resource_types: set[str] = field(default_factory=set)
    principal_href: Optional[str] = None
    home_set_href: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        """True when the resource is a WebDAV collection."""
        return "collection" in self.resource_types or "addressbook" in self.resource_types

    @property
    def is_address_book(self) -> bool:
        """True when the resource is a CardDAV address book."""
        return "addressbook" in self.resource_types

    @property
    def ok(self) -> bool:
        """True unless the server reported a non-2xx status for this resource."""
        return self.status is None or 200 <= self.status < 300


def parse_status(text: Optional[str]) -> Optional[int]:
    """Extract the numeric code from a status line like 'HTTP/1.1 200 OK'."""
    if not text:
        return None
    match = STATUS_RE.search(text)
    return int(match.group(1)) if match else None


def same_href(first: str, second: str) -> bool:
    """Compare two hrefs or URLs by path, ignoring a trailing slash."""
    return urlparse(first).path.rstrip("/") == urlparse(second).path.rstrip("/")


def _dav(name: str) -> str:
    return f"{{{DAV_NS}}}{name}"


def _carddav(name: str) -> str:
    return f"{{{CARDDAV_NS}}}{name}"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_href(element: Optional[ET.Element]) -> Optional[str]:
    if element is None:
        return None
    href = element.find(_dav("href"))
    if href is None or not href.text:
        return None
    return href.text.strip()


def _read_prop(entry: MultistatusEntry, prop: ET.Element) -> None:
    etag = prop.find(_dav("getetag"))
    if etag is not None and etag.text:
        entry.etag = etag.text.strip()

    address_data = prop.find(_carddav("address-data"))
    if address_data is not None and address_data.text:
        entry.address_data = address_data.text.strip()

    resourcetype = prop.find(_dav("resourcetype"))
    if resourcetype is not None:
        entry.resource_types.update(_local_name(child.tag) for child in resourcetype)

    principal = _child_href(prop.find(_dav("current-user-principal")))
    if principal:
        entry.principal_href = principal

    home_set = _child_href(prop.find(_carddav("addressbook-home-set")))
    if home_set:
        entry.home_set_href = home_set

    display_name = prop.find(_dav("displayname"))
    if display_name is not None and display_name.text:
        entry.display_name = display_name.text.strip()


def parse_multistatus(body: str) -> list[MultistatusEntry]:
    """
    Parse a multistatus envelope.

    Only properties inside a propstat with a 2xx status (or no status) are
    read, so a 404 propstat for an unsupported property is ignored.

    Args:
        body: XML response body

    Returns:
        One MultistatusEntry per <response> element

    Raises:
        ParseError: If the body is not well-formed XML
    """
    try:
        root = ET.fromstring(body.encode("utf-8") if isinstance(body, str) else body)
    except ET.ParseError as e:
        raise ParseError(f"Malformed multistatus XML: {e}") from e

    entries = []
    for response in root.iter(_dav("response")):
        href_el = response.find(_dav("href"))
        href = href_el.text.strip() if href_el is not None and href_el.text else ""
        entry = MultistatusEntry(
            href=href, status=parse_status(response.findtext(_dav("status")))
        )

        for propstat in response.findall(_dav("propstat")):
            propstat_status = parse_status(propstat.findtext(_dav("status")))
            if propstat_status is not None and not 200 <= propstat_status < 300:
                continue
            prop = propstat.find(_dav("prop"))
            if prop is not None:
                _read_prop(entry, prop)

        entries.append(entry)

    return entries


def _first_href(fragment: Optional[str]) -> Optional[str]:
    if not fragment:
        return None
    match = HREF_RE.search(fragment)
    return unescape(match.group(1), XML_ENTITIES) if match else None


def scan_multistatus(body: str) -> list[MultistatusEntry]:
    """
    Recover multistatus entries from a body that is not well-formed XML.

    Each <response> chunk is scanned independently, so an entity tag is
    always attached to the address data that sits next to it.
    """
    entries = []
    for chunk in RESPONSE_RE.findall(body):
        href = _first_href(chunk) or ""
        entry = MultistatusEntry(href=href)

        etag = ETAG_RE.search(chunk)
        if etag and etag.group(1):
            entry.etag = unescape(etag.group(1), XML_ENTITIES)

        address_data = ADDRESS_DATA_RE.search(chunk)
        if address_data:
            entry.address_data = unescape(address_data.group(1), XML_ENTITIES).strip()

        resourcetype = RESOURCETYPE_RE.search(chunk)
        if resourcetype:
            entry.resource_types.update(
                name.lower() for name in ELEMENT_NAME_RE.findall(resourcetype.group(1))
            )

        principal = PRINCIPAL_RE.search(chunk)
        entry.principal_href = _first_href(principal.group(1) if principal else None)

        home_set = HOME_SET_RE.search(chunk)
        entry.home_set_href = _first_href(home_set.group(1) if home_set else None)

        entries.append(entry)
    return entries


def read_multistatus(body: str) -> list[MultistatusEntry]:
    """
    Parse a multistatus body, falling back to pattern scanning.

    Never raises; an unreadable body yields an empty list.
    """
    if not body or not body.strip():
        return []
    try:
        return parse_multistatus(body)
    except ParseError as e:
        logger.debug(f"Falling back to tolerant multistatus scan: {e}")
        return scan_multistatus(body)
