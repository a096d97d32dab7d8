"""
Contact repository backed by a CardDAV address-book collection.

Lists, creates, updates and deletes vCard records with optimistic
concurrency: updates and deletes carry the last-seen entity tag in
If-Match, and a stale tag surfaces as ConflictError for the caller to
re-fetch and retry. Nothing is merged or retried automatically.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

from carddav_sync.api.multistatus import MultistatusEntry, read_multistatus, same_href
from carddav_sync.api.transport import CardDAVTransport
from carddav_sync.errors import (
    AuthenticationError,
    ConflictError,
    ParseError,
    TransportError,
)
from carddav_sync.sync.contact import Contact, ContactState, generate_contact_id
from carddav_sync.sync.vcard import (
    BatchDecodeResult,
    decode,
    decode_into,
    encode,
    split_blocks,
)

# Upper bound on individual GETs when the bulk query is unavailable
DEFAULT_MAX_FALLBACK_FETCHES = 50

VCARD_EXTENSION = ".vcf"

ADDRESSBOOK_QUERY_BODY = """<?xml version="1.0" encoding="utf-8"?>
<C:addressbook-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">
  <D:prop>
    <D:getetag/>
    <C:address-data/>
  </D:prop>
  <C:filter/>
</C:addressbook-query>"""

MEMBERS_BODY = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:getetag/>
    <D:resourcetype/>
  </D:prop>
</D:propfind>"""

ETAG_BODY = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:getetag/>
  </D:prop>
</D:propfind>"""

logger = logging.getLogger(__name__)


@dataclass
class ListStats:
    """
    Statistics for the most recent list operation.

    Attributes:
        decoded: Number of contacts returned
        skipped: Records that failed to decode or fetch
        dropped: Records without a display name or email
        used_fallback: True when the per-record GET fallback was used
        truncated: True when the fallback hit its fetch limit
    """

    decoded: int = 0
    skipped: int = 0
    dropped: int = 0
    used_fallback: bool = False
    truncated: bool = False


class ContactRepository:
    """
    List/create/update/delete operations against one collection.

    The repository keeps its own snapshot of the collection. Contacts passed
    in by callers are never modified; every operation returns new objects.

    Usage:
        repo = ContactRepository(transport, endpoints.collection_url)

        contacts = repo.list_contacts()
        created = repo.create_contact(Contact(display_name="Jane Doe"))
        updated = repo.update_contact(created.copy(notes="Met at PyCon"))
        repo.delete_contact(updated.resource_location, updated.entity_tag)
    """

    def __init__(
        self,
        transport: CardDAVTransport,
        collection_url: str,
        max_fallback_fetches: int = DEFAULT_MAX_FALLBACK_FETCHES,
    ):
        """
        Initialize the repository.

        Args:
            transport: Authenticated transport
            collection_url: Absolute URL of the address-book collection
            max_fallback_fetches: Maximum GETs issued by the list fallback
        """
        self.transport = transport
        self.collection_url = (
            collection_url if collection_url.endswith("/") else collection_url + "/"
        )
        self.max_fallback_fetches = max_fallback_fetches
        self.last_list_stats = ListStats()
        self._contacts: list[Contact] = []

    @property
    def contacts(self) -> list[Contact]:
        """Snapshot copies of the contacts held by the repository."""
        return [c.copy() for c in self._contacts]

    def resolve(self, resource_location: str) -> str:
        """Turn a server-relative href into an absolute URL."""
        return urljoin(self.collection_url, resource_location)

    def location_for(self, contact_id: str) -> str:
        """Return the absolute URL a new record with this id is stored at."""
        return urljoin(self.collection_url, quote(contact_id, safe="") + VCARD_EXTENSION)

    # =========================================================================
    # Listing
    # =========================================================================

    def list_contacts(self) -> list[Contact]:
        """
        Fetch every record in the collection.

        Uses an addressbook-query REPORT; if that fails for a reason other
        than authentication, enumerates the members with PROPFIND and fetches
        up to max_fallback_fetches of them one by one.

        Returns:
            Decoded contacts with resource locations and entity tags

        Raises:
            AuthenticationError: If the credentials are rejected
            TransportError: If neither the REPORT nor the enumeration succeeds
        """
        try:
            batch, stats = self._list_by_report()
        except AuthenticationError:
            raise
        except TransportError as report_error:
            logger.warning(
                f"Address-book query failed ({report_error}), "
                f"falling back to individual fetches"
            )
            batch, stats = self._list_by_fetch(report_error)

        self._contacts = batch.contacts
        self.last_list_stats = stats
        logger.info(
            f"Listed {stats.decoded} contacts "
            f"({stats.skipped} skipped, {stats.dropped} without name or email)"
        )
        return self.contacts

    def _list_by_report(self) -> tuple[BatchDecodeResult, ListStats]:
        response = self.transport.report(
            self.collection_url, ADDRESSBOOK_QUERY_BODY, depth=1
        )
        batch = BatchDecodeResult()

        entries = [e for e in read_multistatus(response.body_text) if e.address_data]
        if entries:
            for entry in entries:
                contact = decode_into(entry.address_data or "", batch)
                if contact is not None:
                    self._mark_synced(contact, entry.href, entry.etag)
        else:
            # Bare vCard text instead of XML: no hrefs or tags, contacts stay LOCAL
            for chunk in split_blocks(response.body_text):
                decode_into(chunk, batch)

        stats = ListStats(
            decoded=len(batch.contacts), skipped=batch.skipped, dropped=batch.dropped
        )
        return batch, stats

    def _member_entries(self, entries: list[MultistatusEntry]) -> list[MultistatusEntry]:
        return [
            e
            for e in entries
            if e.href
            and e.ok
            and not e.is_collection
            and not same_href(self.resolve(e.href), self.collection_url)
        ]

    def _list_by_fetch(
        self, report_error: TransportError
    ) -> tuple[BatchDecodeResult, ListStats]:
        try:
            response = self.transport.propfind(
                self.collection_url, MEMBERS_BODY, depth=1
            )
        except AuthenticationError:
            raise
        except TransportError as e:
            logger.error(f"Could not enumerate {self.collection_url}: {e}")
            raise report_error from e

        members = self._member_entries(read_multistatus(response.body_text))
        truncated = len(members) > self.max_fallback_fetches
        if truncated:
            logger.warning(
                f"Collection has {len(members)} records, "
                f"fetching only the first {self.max_fallback_fetches}"
            )

        batch = BatchDecodeResult()
        for entry in members[: self.max_fallback_fetches]:
            url = self.resolve(entry.href)
            try:
                record = self.transport.get(url)
            except AuthenticationError:
                raise
            except TransportError as e:
                logger.warning(f"Skipping {entry.href}: {e}")
                batch.skipped += 1
                continue

            contact = decode_into(record.body_text, batch)
            if contact is not None:
                self._mark_synced(contact, entry.href, record.etag or entry.etag)

        stats = ListStats(
            decoded=len(batch.contacts),
            skipped=batch.skipped,
            dropped=batch.dropped,
            used_fallback=True,
            truncated=truncated,
        )
        return batch, stats

    @staticmethod
    def _mark_synced(contact: Contact, href: str, etag: Optional[str]) -> None:
        # Only called on freshly decoded contacts owned by the repository
        contact.resource_location = href
        contact.entity_tag = etag or ""
        contact.state = ContactState.SYNCED

    def fetch_contact(self, resource_location: str) -> Contact:
        """
        Re-read a single record, typically after a ConflictError.

        Raises:
            ParseError: If the record cannot be decoded or has no name or email
            TransportError: If the request fails
        """
        response = self.transport.get(self.resolve(resource_location))
        contact = decode(response.body_text)
        if contact is None:
            raise ParseError(f"Record {resource_location} has no name or email")

        etag = response.etag or self._fetch_etag(self.resolve(resource_location))
        self._mark_synced(contact, resource_location, etag)
        self._store(contact)
        return contact.copy()

    # =========================================================================
    # Mutations
    # =========================================================================

    def _fetch_etag(self, url: str) -> Optional[str]:
        """Best-effort PROPFIND for a record's entity tag."""
        try:
            response = self.transport.propfind(url, ETAG_BODY, depth=0)
        except AuthenticationError:
            raise
        except TransportError as e:
            logger.warning(f"Could not read entity tag of {url}: {e}")
            return None

        for entry in read_multistatus(response.body_text):
            if entry.etag:
                return entry.etag
        return None

    def _store(self, contact: Contact) -> None:
        url = self.resolve(contact.resource_location)
        self._contacts = [
            c
            for c in self._contacts
            if not same_href(self.resolve(c.resource_location), url)
        ]
        self._contacts.append(contact)

    def create_contact(self, contact: Contact) -> Contact:
        """
        Store a new record with an unconditional PUT.

        Args:
            contact: Local contact with a display name or email

        Returns:
            A new Contact with resource_location, entity_tag and state CREATED

        Raises:
            ValueError: If the contact is already stored or has no name or email
            TransportError: If the write fails
        """
        if contact.is_identified:
            raise ValueError(
                f"Contact {contact.id} is already stored at "
                f"{contact.resource_location}; use update instead"
            )
        if not contact.is_valid():
            raise ValueError("Contact needs a display name or an email address")

        record = contact.copy(id=contact.id or generate_contact_id())
        url = self.location_for(record.id)

        logger.info(f"Creating contact {record.display_name!r} at {url}")
        response = self.transport.put(url, encode(record))

        etag = response.etag or self._fetch_etag(url)
        if not etag:
            logger.warning(f"Server returned no entity tag for {url}")

        created = record.copy(
            resource_location=urlparse(url).path,
            entity_tag=etag or "",
            state=ContactState.CREATED,
        )
        self._store(created)
        return created.copy()

    def update_contact(self, contact: Contact) -> Contact:
        """
        Overwrite a stored record, conditionally on its entity tag.

        Args:
            contact: Contact previously read or created through this repository

        Returns:
            A new Contact with the refreshed entity tag and state SYNCED

        Raises:
            ValueError: If the contact has no resource location or entity tag
            ConflictError: If the record changed on the server since it was read
            TransportError: If the write fails
        """
        if not contact.resource_location:
            raise ValueError(f"Contact {contact.id} has not been created yet")
        if not contact.entity_tag:
            raise ValueError(
                f"Contact {contact.id} has no entity tag; re-fetch it before updating"
            )

        url = self.resolve(contact.resource_location)
        logger.info(f"Updating contact {contact.display_name!r} at {url}")
        try:
            response = self.transport.put(url, encode(contact), etag=contact.entity_tag)
        except ConflictError:
            logger.warning(f"Update of {url} rejected: entity tag is stale")
            raise

        etag = response.etag or self._fetch_etag(url)
        updated = contact.copy(entity_tag=etag or "", state=ContactState.SYNCED)
        self._store(updated)
        return updated.copy()

    def delete_contact(self, resource_location: str, entity_tag: str) -> bool:
        """
        Remove a stored record, conditionally on its entity tag.

        A record that is already gone (404) counts as deleted.

        Returns:
            True once the record no longer exists on the server

        Raises:
            ValueError: If resource_location or entity_tag is empty
            ConflictError: If the record changed on the server since it was read
            TransportError: If the delete fails
        """
        if not resource_location:
            raise ValueError("A resource location is required to delete a contact")
        if not entity_tag:
            raise ValueError("An entity tag is required to delete a contact")

        url = self.resolve(resource_location)
        logger.info(f"Deleting contact at {url}")
        try:
            self.transport.delete(url, etag=entity_tag)
        except ConflictError:
            logger.warning(f"Delete of {url} rejected: entity tag is stale")
            raise
        except AuthenticationError:
            raise
        except TransportError as e:
            if e.status != 404:
                raise
            logger.info(f"{url} was already deleted")

        self._contacts = [
            c
            for c in self._contacts
            if not same_href(self.resolve(c.resource_location), url)
        ]
        return True
