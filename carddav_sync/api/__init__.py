"""
carddav_sync.api - CardDAV protocol layer

Contains the authenticated HTTP transport, multistatus parsing and
endpoint discovery.
"""

from carddav_sync.api.discovery import DiscoveredEndpoints, EndpointResolver
from carddav_sync.api.multistatus import MultistatusEntry, read_multistatus
from carddav_sync.api.transport import CardDAVTransport, TransportResponse

__all__ = [
    "CardDAVTransport",
    "DiscoveredEndpoints",
    "EndpointResolver",
    "MultistatusEntry",
    "TransportResponse",
    "read_multistatus",
]
