"""
Base interface for guest communication channels.

A transport reads the liveness token a guest's feeder publishes and asks the
hypervisor to reset the guest. Failures are raised as TransportError
subclasses; the watchdog treats them as evidence about the channel, never as
fatal errors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from guestwatch.config.guests import GuestConfig

__all__ = [
    "ChannelUnavailable",
    "ProtocolError",
    "TransportAdapter",
    "TransportError",
    "TransportTimeout",
]


class TransportError(Exception):
    """Base class for guest channel failures."""

    kind = "transport_error"


class ChannelUnavailable(TransportError):
    """The channel to the guest is down (agent not running, API unreachable)."""

    kind = "channel_unavailable"


class TransportTimeout(TransportError):
    """The channel did not answer within the allotted time."""

    kind = "timeout"


class ProtocolError(TransportError):
    """The channel answered with something that is not a usable token."""

    kind = "protocol_error"


class TransportAdapter(ABC):
    """Channel used to observe and reset guests."""

    @abstractmethod
    async def read_liveness(self, guest: GuestConfig, timeout: float) -> str:
        """
        Read the latest liveness token visible for a guest.

        Raises:
            ChannelUnavailable, TransportTimeout, ProtocolError
        """

    @abstractmethod
    async def request_reset(self, guest: GuestConfig, timeout: float) -> None:
        """
        Ask the hypervisor to force-reset a guest.

        Raises:
            ChannelUnavailable, TransportTimeout, ProtocolError
        """

    async def ping(self, guest: GuestConfig, timeout: float) -> None:
        """
        Check that the channel to the guest answers at all.

        Transports that cannot check the channel on its own accept
        every ping.

        Raises:
            ChannelUnavailable, TransportTimeout, ProtocolError
        """
        return None

    async def is_running(self, guest: GuestConfig, timeout: float) -> bool:
        """Whether the guest is powered on. Transports without power state report True."""
        return True

    async def aclose(self) -> None:
        """Release connections held by the transport."""
        return None
