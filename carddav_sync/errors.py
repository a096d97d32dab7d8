"""
Exception hierarchy for the CardDAV synchronization engine.

All engine failures derive from CardDAVError so callers can catch the whole
family, while the concrete classes tell them what to do next:

- TransportError: request failed or got a non-2xx answer (retry idempotent calls)
- AuthenticationError: credentials rejected (re-enter credentials)
- ConflictError: entity tag mismatch on write/delete (re-fetch, then retry)
- DiscoveryError: no usable collection URL could be established
- ParseError: a single vCard or XML payload could not be decoded
"""

from typing import Optional

# Maximum number of response body characters kept for diagnostics
BODY_EXCERPT_LENGTH = 500


class CardDAVError(Exception):
    """Base class for all carddav_sync errors."""

    pass


class TransportError(CardDAVError):
    """
    Raised when a protocol request fails.

    Attributes:
        status: HTTP status code, or None when no response was received
        method: HTTP verb of the failed request
        url: Target URL of the failed request
        body_excerpt: Truncated response body for diagnostics
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.method = method
        self.url = url
        self.body_excerpt = (body or "")[:BODY_EXCERPT_LENGTH]


class AuthenticationError(TransportError):
    """Raised when the server rejects the credentials (401/403) or none are set."""

    pass


class ConflictError(TransportError):
    """Raised when a conditional write or delete fails its If-Match check (412)."""

    pass


class DiscoveryError(CardDAVError):
    """
    Raised when no usable address-book collection URL can be established.

    Attributes:
        auth_failure: True when discovery failed because credentials were rejected
    """

    def __init__(self, message: str, auth_failure: bool = False):
        super().__init__(message)
        self.auth_failure = auth_failure


class ParseError(CardDAVError):
    """Raised when an individual vCard or XML payload is malformed."""

    pass


__all__ = [
    "BODY_EXCERPT_LENGTH",
    "CardDAVError",
    "TransportError",
    "AuthenticationError",
    "ConflictError",
    "DiscoveryError",
    "ParseError",
]
