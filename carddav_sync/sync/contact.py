"""
Contact data model for CardDAV synchronization.

Provides a normalized Contact representation with:
- Typed value entries for emails, phone numbers, organizations and addresses
- The lifecycle state of a record relative to the remote collection
- Helpers for deriving display names and de-duplicating values
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class ContactState(Enum):
    """Lifecycle of a contact relative to the remote collection."""

    LOCAL = "local"  # Exists only locally, no resource location
    CREATED = "created"  # Stored on the server by a create
    SYNCED = "synced"  # Read from or updated on the server
    DELETED = "deleted"  # Removed from the server, terminal


@dataclass
class EmailAddress:
    """An email address with an optional type label (home, work, ...)."""

    value: str
    type: Optional[str] = None


@dataclass
class PhoneNumber:
    """A phone number with an optional type label (cell, work, ...)."""

    value: str
    type: Optional[str] = None


@dataclass
class Organization:
    """An organization membership."""

    name: Optional[str] = None
    title: Optional[str] = None


@dataclass
class PostalAddress:
    """A structured postal address."""

    street_address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    type: Optional[str] = None

    def is_empty(self) -> bool:
        """Return True when no address component is populated."""
        return not any(
            [
                self.street_address,
                self.locality,
                self.region,
                self.postal_code,
                self.country,
            ]
        )


def generate_contact_id() -> str:
    """Generate a new local contact identifier."""
    return str(uuid.uuid4())


@dataclass
class Contact:
    """
    Normalized contact record exchanged with a CardDAV collection.

    Attributes:
        id: Stable local identifier (the vCard UID when the server has one)
        resource_location: Server-relative href of the stored record,
            empty until the first successful create
        entity_tag: Opaque version token from the server, required for
            conditional update and delete
        display_name: Formatted name (vCard FN)
        given_name: First name
        family_name: Last name
        emails: Email addresses, unique case-insensitively
        phone_numbers: Phone numbers
        organizations: Organization memberships
        addresses: Postal addresses
        notes: Free-text notes
        state: Lifecycle state relative to the server

    Usage:
        contact = Contact(
            display_name="Jane Doe",
            emails=[EmailAddress("jane@example.com", "work")],
        )

        # Check whether the record has been stored on the server
        if contact.is_identified:
            ...
    """

    id: str = field(default_factory=generate_contact_id)
    resource_location: str = ""
    entity_tag: str = ""

    display_name: str = ""
    given_name: Optional[str] = None
    family_name: Optional[str] = None

    emails: list[EmailAddress] = field(default_factory=list)
    phone_numbers: list[PhoneNumber] = field(default_factory=list)
    organizations: list[Organization] = field(default_factory=list)
    addresses: list[PostalAddress] = field(default_factory=list)
    notes: Optional[str] = None

    state: ContactState = ContactState.LOCAL

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.derived_display_name()
        self.emails = unique_emails(self.emails)
        self.phone_numbers = [p for p in self.phone_numbers if p.value]
        self.organizations = [o for o in self.organizations if o.name or o.title]
        self.addresses = [a for a in self.addresses if not a.is_empty()]

    @property
    def is_identified(self) -> bool:
        """True once the record has a resource location on the server."""
        return bool(self.resource_location)

    def derived_display_name(self) -> str:
        """Build a display name from the given and family names."""
        parts = [p for p in [self.given_name, self.family_name] if p]
        return " ".join(parts).strip()

    def is_valid(self) -> bool:
        """
        Check if the contact carries identifying information.

        A contact is valid if it has at least a display name or an email.
        """
        return bool(self.display_name or self.emails)

    def email_values(self) -> list[str]:
        """Return the email addresses as plain strings."""
        return [e.value for e in self.emails]

    def phone_values(self) -> list[str]:
        """Return the phone numbers as plain strings."""
        return [p.value for p in self.phone_numbers]

    def normalized_emails(self) -> set[str]:
        """Return the lowercase email set used for comparisons."""
        return {e.value.strip().lower() for e in self.emails if e.value.strip()}

    def matches(self, query: str) -> bool:
        """
        Check whether query occurs in the name, an email, a phone or an
        organization name, ignoring case. An empty query matches everything.
        """
        needle = query.strip().lower()
        if not needle:
            return True
        haystacks = [
            self.display_name,
            " ".join(self.email_values()),
            " ".join(self.phone_values()),
            " ".join(o.name for o in self.organizations if o.name),
        ]
        return any(needle in text.lower() for text in haystacks)

    def copy(self, **changes) -> "Contact":
        """Return a copy of this contact with the given fields replaced."""
        return replace(
            self,
            emails=list(changes.pop("emails", self.emails)),
            phone_numbers=list(changes.pop("phone_numbers", self.phone_numbers)),
            organizations=list(changes.pop("organizations", self.organizations)),
            addresses=list(changes.pop("addresses", self.addresses)),
            **changes,
        )

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"Contact(id={self.id!r}, "
            f"display_name={self.display_name!r}, "
            f"emails={self.email_values()!r}, "
            f"state={self.state.value!r})"
        )


def unique_emails(emails: list[EmailAddress]) -> list[EmailAddress]:
    """
    Drop empty and case-insensitively repeated email addresses.

    The first occurrence wins, so input order is preserved.
    """
    seen: set[str] = set()
    result = []
    for email in emails:
        value = (email.value or "").strip()
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        result.append(EmailAddress(value=value, type=email.type))
    return result


def search_contacts(contacts: list[Contact], query: str) -> list[Contact]:
    """Return the contacts matching query, in their original order."""
    return [contact for contact in contacts if contact.matches(query)]
