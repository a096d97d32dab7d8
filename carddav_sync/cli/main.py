"""
Command-line interface for carddav_sync.

Provides CLI commands for signing in to a CardDAV server, listing and
editing contacts, and reporting likely duplicates.

Usage:
    # Show help
    carddav-sync --help

    # Store credentials and discover the address book
    carddav-sync login --email user@example.com

    # List contacts and report duplicates
    carddav-sync list --duplicates
    carddav-sync list --search acme

    # Create, update and delete a contact
    carddav-sync add --name "Jane Doe" --email jane@example.com
    carddav-sync update jane@example.com --phone "+1 555 0100"
    carddav-sync delete jane@example.com --yes
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NoReturn, Optional

import click

from carddav_sync import __version__
from carddav_sync.auth.credentials import FileCredentialStore
from carddav_sync.cli.formatters import (
    DEFAULT_DISPLAY_LIMIT,
    show_contact_detail,
    show_contacts,
    show_duplicate_clusters,
    show_endpoints,
    show_list_stats,
)
from carddav_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_LOG_RETENTION_COUNT,
    ConfigError,
    ConfigLoader,
    EngineSettings,
)
from carddav_sync.errors import (
    AuthenticationError,
    CardDAVError,
    ConflictError,
    DiscoveryError,
)
from carddav_sync.sync.contact import (
    Contact,
    EmailAddress,
    Organization,
    PhoneNumber,
    search_contacts,
)
from carddav_sync.sync.engine import ContactSyncEngine
from carddav_sync.utils import resolve_config_dir
from carddav_sync.utils.logging import (
    cleanup_old_logs,
    get_logger,
    mask_identity,
    setup_logging,
)

# Environment variable read by `login` for non-interactive use
PASSWORD_ENV_VAR = "CARDDAV_SYNC_APP_PASSWORD"


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def build_engine(ctx: click.Context) -> ContactSyncEngine:
    """Create an engine backed by the stored credentials file."""
    store = FileCredentialStore(config_dir=ctx.obj["config_dir"])
    return ContactSyncEngine.from_settings(ctx.obj["settings"], credential_store=store)


def fail(message: str) -> NoReturn:
    """Print an error in red and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@contextmanager
def report_errors(action: str) -> Iterator[None]:
    """Turn engine errors into red messages and a non-zero exit status."""
    logger = get_logger(__name__)
    try:
        yield
    except AuthenticationError as e:
        logger.error(f"{action} failed: {e}")
        fail(f"{e}\nRun 'carddav-sync login' to enter your credentials again.")
    except DiscoveryError as e:
        logger.error(f"{action} failed: {e}")
        fail(str(e))
    except ConflictError as e:
        logger.warning(f"{action} failed: {e}")
        fail(
            f"{e}\nThe contact changed on the server. "
            f"Run 'carddav-sync list' and retry."
        )
    except CardDAVError as e:
        logger.error(f"{action} failed: {e}")
        fail(str(e))
    except ValueError as e:
        fail(str(e))


def require_login(engine: ContactSyncEngine) -> None:
    if not engine.is_authenticated:
        fail("Not signed in. Run 'carddav-sync login' first.")


def find_contact(contacts: list[Contact], reference: str) -> Contact:
    """
    Find one contact by id, resource location or email address.

    Exits with an error when nothing or more than one contact matches.
    """
    needle = reference.strip().lower()
    matches = [
        c
        for c in contacts
        if c.id.lower() == needle
        or (c.resource_location and c.resource_location.lower().endswith(needle))
        or needle in c.normalized_emails()
    ]
    if not matches:
        fail(f"No contact matches '{reference}'.")
    if len(matches) > 1:
        fail(
            f"'{reference}' matches {len(matches)} contacts; "
            f"use the contact ID instead."
        )
    return matches[0]


@click.group()
@click.version_option(version=__version__, prog_name="carddav-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CARDDAV_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.carddav-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CARDDAV_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
) -> None:
    """
    CardDAV contact synchronization.

    Lists, creates, updates and deletes contacts in a CardDAV address book
    and reports likely duplicates.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = (
        Path(config_file) if config_file else resolved_config_dir / DEFAULT_CONFIG_FILE
    )
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Continue with defaults
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config
    ctx.obj["settings"] = EngineSettings.from_dict(config)

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = (
        Path(config["log_dir"]) if config.get("log_dir") else resolved_config_dir / "logs"
    )
    level = logging.DEBUG if config.get("debug") else None
    setup_logging(level=level, verbose=effective_verbose, log_dir=log_dir)

    log_retention = config.get("log_retention_count", DEFAULT_LOG_RETENTION_COUNT)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Login / Logout / Status
# =============================================================================


@cli.command("login")
@click.option("--email", "-e", help="Account email address.")
@click.option(
    "--password",
    "-p",
    envvar=PASSWORD_ENV_VAR,
    help=f"App password (prompted if omitted; also read from ${PASSWORD_ENV_VAR}).",
)
@click.pass_context
def login_command(
    ctx: click.Context, email: Optional[str], password: Optional[str]
) -> None:
    """
    Store credentials and discover the address book.

    The credentials are saved in the configuration directory with
    owner-only permissions. Use an app-specific password, not your
    account password.

    Examples:

        carddav-sync login --email user@example.com
    """
    logger = get_logger(__name__)

    email = email or ctx.obj["settings"].identity
    if not email:
        email = click.prompt("Email address")
    if not password:
        password = click.prompt("App password", hide_input=True)

    engine = build_engine(ctx)
    with report_errors("Login"):
        engine.set_identity(email, password)
        click.echo(f"Discovering address book for {email}...")
        endpoints = engine.discover(force=True)

    show_endpoints(endpoints)
    if not endpoints.collection_discovered:
        click.echo(
            click.style(
                "The collection URL could not be confirmed by the server; "
                "using the constructed default.",
                fg="yellow",
            )
        )
    click.echo(click.style(f"Signed in as {email}.", fg="green"))
    logger.info(f"Login completed for {mask_identity(email)}")


@cli.command("logout")
@click.pass_context
def logout_command(ctx: click.Context) -> None:
    """Remove the stored credentials."""
    engine = build_engine(ctx)
    was_authenticated = engine.is_authenticated
    engine.sign_out()
    if was_authenticated:
        click.echo(click.style("Signed out.", fg="green"))
    else:
        click.echo("No stored credentials.")


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Show configuration and sign-in status."""
    settings: EngineSettings = ctx.obj["settings"]
    engine = build_engine(ctx)

    click.echo("=== CardDAV Sync Status ===\n")
    click.echo(f"Configuration directory: {ctx.obj['config_dir']}")
    config_file = ctx.obj["config_file"]
    click.echo(
        f"Configuration file: {config_file}"
        + ("" if config_file.exists() else " (not found, using defaults)")
    )
    click.echo(f"Server: {settings.server_url}")
    click.echo(f"Discovery URL: {settings.discovery_url}")
    click.echo()

    if engine.is_authenticated:
        click.echo(
            f"Signed in as: {click.style(engine.identity or '', fg='green')}"
        )
    else:
        click.echo(f"Signed in as: {click.style('Not signed in', fg='red')}")
        click.echo("  Run: carddav-sync login")


@cli.command("discover")
@click.pass_context
def discover_command(ctx: click.Context) -> None:
    """Resolve and show the principal, home set and collection URLs."""
    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Discovery"):
        endpoints = engine.discover(force=True)
    show_endpoints(endpoints)


# =============================================================================
# Listing
# =============================================================================


@cli.command("list")
@click.option(
    "--duplicates", "-d", is_flag=True, help="Also report likely duplicates."
)
@click.option(
    "--limit",
    "-n",
    type=int,
    default=DEFAULT_DISPLAY_LIMIT,
    show_default=True,
    help="Maximum contacts to display (0 for all).",
)
@click.option(
    "--search",
    "-s",
    help="Only show contacts whose name, email, phone or organization contains this.",
)
@click.option("--detail", is_flag=True, help="Show every field of each contact.")
@click.pass_context
def list_command(
    ctx: click.Context,
    duplicates: bool,
    limit: int,
    search: Optional[str],
    detail: bool,
) -> None:
    """
    List the contacts in the address book.

    Duplicates are reported across the whole address book, even with --search.
    """
    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Listing contacts"):
        contacts = engine.list_contacts()

    shown = contacts
    if search:
        shown = search_contacts(contacts, search)
        click.echo(f"{len(shown)} of {len(contacts)} contacts match '{search}':")
    else:
        click.echo(f"{len(contacts)} contacts:")
    if detail:
        for contact in shown if limit <= 0 else shown[:limit]:
            show_contact_detail(contact)
    else:
        show_contacts(shown, limit=limit)
    show_list_stats(engine.last_list_stats)

    if duplicates:
        show_duplicate_clusters(engine.find_duplicates(contacts))


@cli.command("duplicates")
@click.pass_context
def duplicates_command(ctx: click.Context) -> None:
    """Report groups of contacts that look like duplicates."""
    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Duplicate detection"):
        contacts = engine.list_contacts()
    show_duplicate_clusters(engine.find_duplicates(contacts))


# =============================================================================
# Mutations
# =============================================================================


def contact_options(func):
    """Shared field options for add and update."""
    options = [
        click.option("--name", help="Display name."),
        click.option("--given", help="Given (first) name."),
        click.option("--family", help="Family (last) name."),
        click.option("--email", "emails", multiple=True, help="Email (repeatable)."),
        click.option("--phone", "phones", multiple=True, help="Phone (repeatable)."),
        click.option("--org", help="Organization name (the first one on update)."),
        click.option("--title", help="Job title at that organization."),
        click.option("--note", help="Free-text note."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command("add")
@contact_options
@click.pass_context
def add_command(
    ctx: click.Context,
    name: Optional[str],
    given: Optional[str],
    family: Optional[str],
    emails: tuple[str, ...],
    phones: tuple[str, ...],
    org: Optional[str],
    title: Optional[str],
    note: Optional[str],
) -> None:
    """
    Create a contact.

    Examples:

        carddav-sync add --name "Jane Doe" --email jane@example.com --phone 555-0100
    """
    contact = Contact(
        display_name=name or "",
        given_name=given,
        family_name=family,
        emails=[EmailAddress(value=e) for e in emails],
        phone_numbers=[PhoneNumber(value=p) for p in phones],
        organizations=[Organization(name=org, title=title)] if org or title else [],
        notes=note,
    )

    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Create"):
        created = engine.create_contact(contact)

    click.echo(click.style(f"Created {created.display_name}.", fg="green"))
    show_contact_detail(created)


@cli.command("update")
@click.argument("reference")
@contact_options
@click.pass_context
def update_command(
    ctx: click.Context,
    reference: str,
    name: Optional[str],
    given: Optional[str],
    family: Optional[str],
    emails: tuple[str, ...],
    phones: tuple[str, ...],
    org: Optional[str],
    title: Optional[str],
    note: Optional[str],
) -> None:
    """
    Update a contact found by ID, location or email.

    Given emails and phones replace the existing ones.

    Examples:

        carddav-sync update jane@example.com --phone "+1 555 0100"
    """
    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Update"):
        contact = find_contact(engine.list_contacts(), reference)

        changes: dict = {}
        if name is not None:
            changes["display_name"] = name
        if given is not None:
            changes["given_name"] = given
        if family is not None:
            changes["family_name"] = family
        if emails:
            changes["emails"] = [EmailAddress(value=e) for e in emails]
        if phones:
            changes["phone_numbers"] = [PhoneNumber(value=p) for p in phones]
        if org is not None or title is not None:
            # Only the first organization is edited; the others are kept
            first, *others = contact.organizations or [Organization()]
            changes["organizations"] = [
                Organization(
                    name=first.name if org is None else org,
                    title=first.title if title is None else title,
                ),
                *others,
            ]
        if note is not None:
            changes["notes"] = note

        if not changes:
            fail("Nothing to update; pass at least one field option.")

        updated = engine.update_contact(contact.copy(**changes))

    click.echo(click.style(f"Updated {updated.display_name}.", fg="green"))
    show_contact_detail(updated)


@cli.command("delete")
@click.argument("reference")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def delete_command(ctx: click.Context, reference: str, yes: bool) -> None:
    """Delete a contact found by ID, location or email."""
    engine = build_engine(ctx)
    require_login(engine)
    with report_errors("Delete"):
        contact = find_contact(engine.list_contacts(), reference)
        if not yes:
            click.confirm(f"Delete {contact.display_name}?", abort=True)
        engine.delete_contact(contact.resource_location, contact.entity_tag)

    click.echo(click.style(f"Deleted {contact.display_name}.", fg="green"))
