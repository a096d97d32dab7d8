"""
Contact synchronization engine.

One ContactSyncEngine instance represents one logical sync session for one
identity. It owns:
- the credential store supplying the identity and secret
- the discovered endpoints, cached for the session
- the contact repository bound to the discovered collection

The endpoint cache and the credentials are dropped together on sign-out
and whenever any call fails with an authentication error, so the next
operation starts with fresh discovery.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import requests

from carddav_sync.api.discovery import (
    DEFAULT_DISCOVERY_URL,
    DEFAULT_SERVER_URL,
    DiscoveredEndpoints,
    EndpointResolver,
)
from carddav_sync.api.transport import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    CardDAVTransport,
)
from carddav_sync.auth.credentials import (
    Credentials,
    CredentialStore,
    MemoryCredentialStore,
)
from carddav_sync.config.loader import EngineSettings
from carddav_sync.errors import AuthenticationError, CardDAVError, DiscoveryError
from carddav_sync.sync.contact import Contact, search_contacts
from carddav_sync.sync.duplicates import (
    DEFAULT_DUPLICATE_THRESHOLD,
    DuplicateCluster,
    DuplicateDetector,
)
from carddav_sync.sync.repository import (
    DEFAULT_MAX_FALLBACK_FETCHES,
    ContactRepository,
    ListStats,
)
from carddav_sync.utils.logging import mask_identity

logger = logging.getLogger(__name__)


@dataclass
class SyncSession:
    """
    Per-session state cached between engine calls.

    Attributes:
        endpoints: Endpoints discovered for the current identity
        repository: Repository bound to endpoints.collection_url
    """

    endpoints: Optional[DiscoveredEndpoints] = None
    repository: Optional[ContactRepository] = None

    @property
    def is_discovered(self) -> bool:
        return self.endpoints is not None

    def invalidate(self) -> None:
        """Forget the cached endpoints and repository."""
        self.endpoints = None
        self.repository = None


class ContactSyncEngine:
    """
    Facade over discovery, the contact repository and duplicate detection.

    Usage:
        engine = ContactSyncEngine()
        engine.set_identity("user@example.com", "app-password")

        contacts = engine.list_contacts()
        created = engine.create_contact(Contact(display_name="Jane Doe"))
        clusters = engine.find_duplicates(contacts)

        engine.sign_out()
    """

    def __init__(
        self,
        credential_store: Optional[CredentialStore] = None,
        http_session: Optional[requests.Session] = None,
        server_url: str = DEFAULT_SERVER_URL,
        discovery_url: str = DEFAULT_DISCOVERY_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_fallback_fetches: int = DEFAULT_MAX_FALLBACK_FETCHES,
        duplicate_threshold: int = DEFAULT_DUPLICATE_THRESHOLD,
        user_agent: str = DEFAULT_USER_AGENT,
        verify_ssl: bool = True,
    ):
        """
        Initialize the engine.

        Args:
            credential_store: Credential source (default: in-memory store)
            http_session: HTTP session injected into the transport
            server_url: Base URL for constructed fallback endpoints
            discovery_url: Well-known discovery URL
            timeout: Per-request deadline in seconds
            max_fallback_fetches: Cap on GETs when the bulk query fails
            duplicate_threshold: Minimum pair score for duplicate clustering
            user_agent: User-Agent header value
            verify_ssl: Whether TLS certificates are verified
        """
        self.credential_store = (
            credential_store if credential_store is not None else MemoryCredentialStore()
        )
        self.transport = CardDAVTransport(
            self.credential_store,
            session=http_session,
            timeout=timeout,
            user_agent=user_agent,
            verify_ssl=verify_ssl,
        )
        self.resolver = EndpointResolver(
            self.transport, server_url=server_url, discovery_url=discovery_url
        )
        self.detector = DuplicateDetector(threshold=duplicate_threshold)
        self.max_fallback_fetches = max_fallback_fetches
        self.session = SyncSession()

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        credential_store: Optional[CredentialStore] = None,
        http_session: Optional[requests.Session] = None,
    ) -> "ContactSyncEngine":
        """Create an engine from loaded configuration settings."""
        return cls(
            credential_store=credential_store,
            http_session=http_session,
            server_url=settings.server_url,
            discovery_url=settings.discovery_url,
            timeout=settings.request_timeout,
            max_fallback_fetches=settings.max_fallback_fetches,
            duplicate_threshold=settings.duplicate_threshold,
            user_agent=settings.user_agent,
            verify_ssl=settings.verify_ssl,
        )

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def identity(self) -> Optional[str]:
        credentials = self.credential_store.get()
        return credentials.identity if credentials else None

    @property
    def is_authenticated(self) -> bool:
        """True when credentials are set for this session."""
        return self.credential_store.get() is not None

    @property
    def endpoints(self) -> Optional[DiscoveredEndpoints]:
        return self.session.endpoints

    @property
    def last_list_stats(self) -> Optional[ListStats]:
        if self.session.repository is None:
            return None
        return self.session.repository.last_list_stats

    def set_identity(self, identity: str, secret: str) -> None:
        """
        Set the credentials used for all subsequent requests.

        Changing the identity or secret discards any cached endpoints.

        Raises:
            ValueError: If identity or secret is empty
        """
        identity = (identity or "").strip()
        if not identity or not secret:
            raise ValueError("Both an email address and an app password are required")

        credentials = Credentials(identity=identity, secret=secret)
        if self.credential_store.get() != credentials:
            self.session.invalidate()
        self.credential_store.set(credentials)
        logger.info(f"Identity set to {mask_identity(identity)}")

    def sign_out(self) -> None:
        """Drop the credentials and the cached endpoints."""
        self.session.invalidate()
        if self.credential_store.clear():
            logger.info("Signed out")

    @contextmanager
    def _session_guard(self) -> Iterator[None]:
        """Invalidate the whole session when credentials are rejected."""
        try:
            yield
        except AuthenticationError:
            logger.error("Credentials rejected; clearing session")
            self.sign_out()
            raise
        except DiscoveryError as e:
            if e.auth_failure:
                logger.error("Credentials rejected during discovery; clearing session")
                self.sign_out()
            raise

    # =========================================================================
    # Operations
    # =========================================================================

    def discover(self, force: bool = False) -> DiscoveredEndpoints:
        """
        Resolve and cache the endpoints for the current identity.

        Args:
            force: Re-run discovery even if endpoints are cached

        Raises:
            AuthenticationError: If no identity has been set
            DiscoveryError: If no usable collection URL can be established
        """
        if self.session.endpoints is not None and not force:
            return self.session.endpoints

        identity = self.identity
        if identity is None:
            raise AuthenticationError("No credentials set. Please sign in first.")

        with self._session_guard():
            endpoints = self.resolver.discover(identity)

        self.session.endpoints = endpoints
        self.session.repository = ContactRepository(
            self.transport,
            endpoints.collection_url,
            max_fallback_fetches=self.max_fallback_fetches,
        )
        return endpoints

    def _repository(self) -> ContactRepository:
        self.discover()
        if self.session.repository is None:
            raise DiscoveryError("Discovery produced no address-book collection")
        return self.session.repository

    def list_contacts(self) -> list[Contact]:
        """Fetch all contacts from the discovered collection."""
        with self._session_guard():
            return self._repository().list_contacts()

    def search_contacts(self, query: str) -> list[Contact]:
        """
        List the contacts whose name, email, phone or organization contains
        query, ignoring case.
        """
        return search_contacts(self.list_contacts(), query)

    def fetch_contact(self, resource_location: str) -> Contact:
        """Re-read one contact, for example after a ConflictError."""
        with self._session_guard():
            return self._repository().fetch_contact(resource_location)

    def create_contact(self, contact: Contact) -> Contact:
        """Store a new contact and return it with its resource location."""
        with self._session_guard():
            return self._repository().create_contact(contact)

    def update_contact(self, contact: Contact) -> Contact:
        """Overwrite a stored contact, conditionally on its entity tag."""
        with self._session_guard():
            return self._repository().update_contact(contact)

    def delete_contact(self, resource_location: str, entity_tag: str) -> bool:
        """Delete a stored contact, conditionally on its entity tag."""
        with self._session_guard():
            return self._repository().delete_contact(resource_location, entity_tag)

    def find_duplicates(self, contacts: list[Contact]) -> list[DuplicateCluster]:
        """Cluster near-duplicate contacts. Issues no requests."""
        return self.detector.find_duplicates(contacts)

    def test_connection(self) -> bool:
        """
        Check that discovery and listing work with the current credentials.

        Returns:
            True if both succeed, False otherwise (the error is logged)
        """
        try:
            self.discover(force=True)
            contacts = self.list_contacts()
        except CardDAVError as e:
            logger.error(f"Connection test failed: {e}")
            return False

        logger.info(f"Connection test succeeded ({len(contacts)} contacts)")
        return True
