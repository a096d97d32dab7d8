"""CLI output formatting functions.

This module contains functions for displaying contacts, discovered
endpoints, listing statistics and duplicate clusters on the command line.
"""

from typing import TYPE_CHECKING, Optional

import click

if TYPE_CHECKING:
    from carddav_sync.api.discovery import DiscoveredEndpoints
    from carddav_sync.sync.contact import Contact
    from carddav_sync.sync.duplicates import DuplicateCluster
    from carddav_sync.sync.repository import ListStats

# Maximum rows printed by list views unless --limit says otherwise
DEFAULT_DISPLAY_LIMIT = 50


def format_contact_line(contact: "Contact") -> str:
    """Return a one-line summary: name, first email, first phone."""
    parts = [contact.display_name or "(no name)"]
    if contact.emails:
        parts.append(f"<{contact.emails[0].value}>")
    if contact.phone_numbers:
        parts.append(contact.phone_numbers[0].value)
    return " ".join(parts)


def show_contacts(contacts: list["Contact"], limit: int = DEFAULT_DISPLAY_LIMIT) -> None:
    """
    Display a contact list, one contact per line.

    Args:
        contacts: Contacts to display
        limit: Maximum number of rows; 0 shows everything
    """
    if not contacts:
        click.echo("No contacts found.")
        return

    shown = contacts if limit <= 0 else contacts[:limit]
    for contact in shown:
        click.echo(f"  {format_contact_line(contact)}")
    if len(contacts) > len(shown):
        click.echo(f"  ... and {len(contacts) - len(shown)} more")


def show_contact_detail(contact: "Contact") -> None:
    """Display every populated field of a contact."""
    click.echo(click.style(contact.display_name or "(no name)", bold=True))
    click.echo(f"  ID: {contact.id}")
    if contact.resource_location:
        click.echo(f"  Location: {contact.resource_location}")
    if contact.entity_tag:
        click.echo(f"  ETag: {contact.entity_tag}")
    if contact.given_name or contact.family_name:
        click.echo(f"  Name: {contact.given_name or ''} / {contact.family_name or ''}")
    for email in contact.emails:
        label = f" ({email.type})" if email.type else ""
        click.echo(f"  Email: {email.value}{label}")
    for phone in contact.phone_numbers:
        label = f" ({phone.type})" if phone.type else ""
        click.echo(f"  Phone: {phone.value}{label}")
    for org in contact.organizations:
        details = ", ".join(p for p in [org.name, org.title] if p)
        click.echo(f"  Organization: {details}")
    if contact.notes:
        click.echo(f"  Notes: {contact.notes}")


def show_endpoints(endpoints: "DiscoveredEndpoints") -> None:
    """Display discovered endpoints and whether each was confirmed."""

    def source(discovered: bool) -> str:
        if discovered:
            return click.style("discovered", fg="green")
        return click.style("constructed", fg="yellow")

    click.echo(
        f"Principal:  {endpoints.principal_url} "
        f"({source(endpoints.principal_discovered)})"
    )
    click.echo(
        f"Home set:   {endpoints.address_book_home_url} "
        f"({source(endpoints.home_discovered)})"
    )
    click.echo(
        f"Collection: {endpoints.collection_url} "
        f"({source(endpoints.collection_discovered)})"
    )


def show_list_stats(stats: Optional["ListStats"]) -> None:
    """Display skip/drop counts of the last listing, when any."""
    if stats is None:
        return
    if stats.skipped:
        click.echo(
            click.style(f"Skipped {stats.skipped} unreadable records.", fg="yellow")
        )
    if stats.dropped:
        click.echo(f"Ignored {stats.dropped} records without a name or email.")
    if stats.used_fallback:
        click.echo(
            click.style(
                "Address-book query unavailable; records were fetched one by one.",
                fg="yellow",
            )
        )
    if stats.truncated:
        click.echo(
            click.style("Listing was truncated at the fetch limit.", fg="yellow")
        )


def show_duplicate_clusters(clusters: list["DuplicateCluster"]) -> None:
    """Display duplicate clusters with their members."""
    if not clusters:
        click.echo(click.style("No duplicates found.", fg="green"))
        return

    click.echo(f"\n=== {len(clusters)} possible duplicate group(s) ===")
    for cluster in clusters:
        click.echo(
            f"\n{cluster.cluster_id} "
            f"(score {cluster.similarity_score:.0%}, "
            f"name similarity {cluster.name_similarity:.0%}):"
        )
        for member in cluster.members:
            click.echo(f"  - {format_contact_line(member)}")
        merged = cluster.merged_fields
        click.echo("  Merged:")
        click.echo(f"    Names:  {', '.join(merged.names) or '-'}")
        click.echo(f"    Emails: {', '.join(merged.emails) or '-'}")
        click.echo(f"    Phones: {', '.join(merged.phones) or '-'}")
