"""
Credential storage for CardDAV Basic authentication.

Provides:
- Credentials: an identity (email) and secret (app password) pair
- MemoryCredentialStore: per-session storage used by the engine by default
- FileCredentialStore: persistent storage in the configuration directory,
  written with owner-only permissions
"""

import base64
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from carddav_sync.utils.logging import mask_identity
from carddav_sync.utils.paths import ensure_private_dir, resolve_config_dir

# File name of the persisted credential pair
DEFAULT_CREDENTIALS_FILE = "credentials.json"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """
    An identity and secret used for Basic authentication.

    Attributes:
        identity: Account email address
        secret: App-specific password or token
    """

    identity: str
    secret: str

    def basic_auth_header(self) -> str:
        """Return the Authorization header value for these credentials."""
        token = base64.b64encode(f"{self.identity}:{self.secret}".encode("utf-8"))
        return f"Basic {token.decode('ascii')}"

    def __repr__(self) -> str:
        return f"Credentials(identity={self.identity!r}, secret='***')"


class CredentialStore(Protocol):
    """Interface the transport uses to read the current credential pair."""

    def get(self) -> Optional[Credentials]:
        """Return the stored credentials, or None."""
        ...

    def set(self, credentials: Credentials) -> None:
        """Replace the stored credentials."""
        ...

    def clear(self) -> bool:
        """Remove the stored credentials. Returns True if any were removed."""
        ...


class MemoryCredentialStore:
    """Credential store that lives only as long as the engine instance."""

    def __init__(self, credentials: Optional[Credentials] = None):
        self._credentials = credentials

    def get(self) -> Optional[Credentials]:
        return self._credentials

    def set(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear(self) -> bool:
        had_credentials = self._credentials is not None
        self._credentials = None
        return had_credentials


class FileCredentialStore:
    """
    Credential store persisted as JSON in the configuration directory.

    The directory is created with mode 700 and the file written with
    mode 600.

    Usage:
        store = FileCredentialStore()
        store.set(Credentials("user@example.com", "app-password"))

        creds = store.get()
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        file_name: str = DEFAULT_CREDENTIALS_FILE,
    ):
        """
        Initialize the file store.

        Args:
            config_dir: Directory holding the credentials file.
                       Defaults to ~/.carddav-sync/ or $CARDDAV_SYNC_CONFIG_DIR
            file_name: Name of the credentials file
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.path = self.config_dir / file_name

    def get(self) -> Optional[Credentials]:
        """
        Load credentials from disk.

        Returns:
            Credentials, or None if the file is missing or unreadable
        """
        if not self.path.exists():
            logger.debug(f"No credentials file at {self.path}")
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Invalid credentials file {self.path}: {e}")
            return None

        identity = data.get("identity") if isinstance(data, dict) else None
        secret = data.get("secret") if isinstance(data, dict) else None
        if not identity or not secret:
            logger.warning(f"Credentials file {self.path} is missing fields")
            return None

        return Credentials(identity=identity, secret=secret)

    def set(self, credentials: Credentials) -> None:
        """Write credentials to disk with owner-only permissions."""
        ensure_private_dir(self.config_dir)
        payload = {"identity": credentials.identity, "secret": credentials.secret}
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            # O_CREAT modes do not apply to a file that already exists
            os.fchmod(f.fileno(), 0o600)
            json.dump(payload, f)
        logger.debug(f"Saved credentials for {mask_identity(credentials.identity)}")

    def clear(self) -> bool:
        """Delete the credentials file if present."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Cleared stored credentials at {self.path}")
            return True
        return False
