"""CLI package for carddav_sync."""

from carddav_sync.cli.formatters import (
    show_contact_detail,
    show_contacts,
    show_duplicate_clusters,
    show_endpoints,
)
from carddav_sync.cli.main import cli, find_contact, get_config_dir

__all__ = [
    "cli",
    "find_contact",
    "get_config_dir",
    "show_contact_detail",
    "show_contacts",
    "show_duplicate_clusters",
    "show_endpoints",
]
