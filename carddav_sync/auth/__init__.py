"""
carddav_sync.auth - Credential storage for Basic authentication.
"""

from carddav_sync.auth.credentials import (
    Credentials,
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)

__all__ = [
    "Credentials",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
]
