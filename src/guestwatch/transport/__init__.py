"""Guest channel transports."""

from guestwatch.transport.base import (
    ChannelUnavailable,
    ProtocolError,
    TransportAdapter,
    TransportError,
    TransportTimeout,
)
from guestwatch.transport.proxmox import ProxmoxTransport

__all__ = [
    "ChannelUnavailable",
    "ProtocolError",
    "ProxmoxTransport",
    "TransportAdapter",
    "TransportError",
    "TransportTimeout",
]
