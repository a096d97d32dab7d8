"""
carddav_sync.sync - Contact model and synchronization logic

Contains the contact model, the vCard codec, the contact repository,
duplicate detection and the engine facade.
"""

from carddav_sync.sync.contact import (
    Contact,
    ContactState,
    EmailAddress,
    Organization,
    PhoneNumber,
    PostalAddress,
    search_contacts,
)
from carddav_sync.sync.duplicates import (
    DuplicateCluster,
    DuplicateDetector,
    MergedFields,
)
from carddav_sync.sync.engine import ContactSyncEngine, SyncSession
from carddav_sync.sync.repository import ContactRepository, ListStats

__all__ = [
    "Contact",
    "ContactRepository",
    "ContactState",
    "ContactSyncEngine",
    "DuplicateCluster",
    "DuplicateDetector",
    "EmailAddress",
    "ListStats",
    "MergedFields",
    "Organization",
    "PhoneNumber",
    "PostalAddress",
    "SyncSession",
    "search_contacts",
]
