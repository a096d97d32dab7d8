"""
carddav_sync - CardDAV contact synchronization engine.

Discovers a user's address-book collection on a CardDAV server, lists and
writes vCard records with entity-tag concurrency control, and reports
near-duplicate contacts.
"""

__version__ = "0.1.0"

from carddav_sync.sync.contact import Contact, ContactState  # noqa: E402
from carddav_sync.sync.engine import ContactSyncEngine  # noqa: E402

__all__ = ["Contact", "ContactState", "ContactSyncEngine", "__version__"]
