"""
Proxmox VE transport.

Reads the liveness token through the QEMU guest agent's file-read endpoint
and resets guests through the VM status API. Authentication uses either an
API token or a ticket obtained from /access/ticket, cached and revalidated.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from guestwatch.transport.base import (
    ChannelUnavailable,
    ProtocolError,
    TransportAdapter,
    TransportError,
    TransportTimeout,
)

if TYPE_CHECKING:
    from guestwatch.config.app import ProxmoxSettings
    from guestwatch.config.guests import GuestConfig

__all__ = ["ProxmoxTransport"]

logger = logging.getLogger(__name__)

TICKET_LIFETIME = 10 * 60
TICKET_RECHECK = 60


class ProxmoxTransport(TransportAdapter):
    """Guest channel backed by the Proxmox VE REST API."""

    def __init__(
        self,
        settings: ProxmoxSettings,
        client: httpx.AsyncClient | None = None,
        clock: Any = time.monotonic,
    ):
        self.settings = settings
        self._client = client or httpx.AsyncClient(verify=settings.verify_ssl)
        self._owns_client = client is None
        self._clock = clock
        self._ticket: str | None = None
        self._csrf: str | None = None
        self._ticket_expiry: float = 0.0
        self._ticket_lock = asyncio.Lock()

    @property
    def api_url(self) -> str:
        return f"{self.settings.url}/api2/json"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _auth_headers(self, timeout: float, write: bool) -> dict[str, str]:
        if self.settings.token_id:
            return {
                "Authorization": (
                    f"PVEAPIToken={self.settings.token_id}={self.settings.token_secret}"
                )
            }

        ticket, csrf = await self._get_ticket(timeout)
        headers = {"Cookie": f"PVEAuthCookie={ticket}"}
        if write:
            headers["CSRFPreventionToken"] = csrf
        return headers

    async def _get_ticket(self, timeout: float) -> tuple[str, str]:
        """
        Return a valid (ticket, csrf) pair.

        A fresh ticket is trusted for TICKET_LIFETIME. After that the cached
        ticket is revalidated against /access/ticket and trusted for another
        TICKET_RECHECK seconds; only a rejected ticket triggers a new login.
        """
        async with self._ticket_lock:
            if self._ticket and self._csrf:
                if self._ticket_expiry > self._clock():
                    logger.debug("Reusing cached Proxmox ticket")
                    return self._ticket, self._csrf
                if await self._ticket_still_valid(self._ticket, timeout):
                    logger.debug("Cached Proxmox ticket is still valid")
                    self._ticket_expiry = self._clock() + TICKET_RECHECK
                    return self._ticket, self._csrf

            logger.info(f"Requesting Proxmox ticket for {self.settings.user}")
            response = await self._send(
                "POST",
                "/access/ticket",
                timeout=timeout,
                data={"username": self.settings.user, "password": self.settings.password or ""},
            )
            if response.status_code in (401, 403):
                raise ChannelUnavailable(f"Proxmox authentication failed: {response.status_code}")
            self._raise_for_status(response)

            data = self._data(response)
            try:
                ticket = data["ticket"]
                csrf = data["CSRFPreventionToken"]
            except (KeyError, TypeError) as e:
                raise ProtocolError(f"Ticket response missing field {e}") from e

            self._ticket = ticket
            self._csrf = csrf
            self._ticket_expiry = self._clock() + TICKET_LIFETIME
            return ticket, csrf

    async def _ticket_still_valid(self, ticket: str, timeout: float) -> bool:
        logger.debug("Revalidating cached Proxmox ticket")
        try:
            response = await self._send(
                "GET",
                "/access/ticket",
                timeout=timeout,
                headers={"Cookie": f"PVEAuthCookie={ticket}"},
            )
        except TransportError as e:
            logger.debug(f"Ticket revalidation failed: {e}")
            return False
        return response.is_success

    def _invalidate_ticket(self) -> None:
        self._ticket = None
        self._csrf = None
        self._ticket_expiry = 0.0

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        timeout: float,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                f"{self.api_url}{path}",
                headers=headers,
                timeout=timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise TransportTimeout(f"{method} {path} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise ChannelUnavailable(f"{method} {path} failed: {e}") from e

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = await self._auth_headers(timeout, write=method != "GET")
        response = await self._send(method, path, timeout, headers=headers, **kwargs)
        if response.status_code == 401:
            self._invalidate_ticket()
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        reason = response.text.strip()[:200] or response.reason_phrase
        if status >= 500 or status in (401, 403):
            # Proxmox answers 500 when the guest agent is not running
            raise ChannelUnavailable(f"HTTP {status}: {reason}")
        raise ProtocolError(f"HTTP {status}: {reason}")

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError(f"Response is not JSON: {e}") from e
        if not isinstance(payload, dict) or "data" not in payload:
            raise ProtocolError("Response has no 'data' field")
        return payload["data"]

    @staticmethod
    def _vm_path(guest: GuestConfig) -> str:
        return f"/nodes/{guest.node}/qemu/{guest.id}"

    # ------------------------------------------------------------------
    # TransportAdapter
    # ------------------------------------------------------------------

    async def ping(self, guest: GuestConfig, timeout: float) -> None:
        logger.debug(f"Pinging guest agent of {guest.label}")
        await self._request("POST", f"{self._vm_path(guest)}/agent/ping", timeout)

    async def read_liveness(self, guest: GuestConfig, timeout: float) -> str:
        if guest.publish_host_time:
            await self.write_host_time(guest, timeout)

        logger.debug(f"Reading {guest.liveness_path} from guest {guest.label}")
        response = await self._request(
            "GET",
            f"{self._vm_path(guest)}/agent/file-read",
            timeout,
            params={"file": guest.liveness_path},
        )
        data = self._data(response)
        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise ProtocolError("file-read response has no content")

        token = content.strip()
        if not token:
            raise ProtocolError(f"{guest.liveness_path} is empty")
        return token

    async def write_host_time(self, guest: GuestConfig, timeout: float) -> None:
        """Publish the host's unix time so the guest feeder need not trust its own clock."""
        now = str(int(time.time())).encode()
        logger.debug(f"Writing host time to {guest.host_time_path} on guest {guest.label}")
        await self._request(
            "POST",
            f"{self._vm_path(guest)}/agent/file-write",
            timeout,
            json={
                "file": guest.host_time_path,
                "content": base64.b64encode(now).decode(),
                "encode": False,
            },
        )

    async def request_reset(self, guest: GuestConfig, timeout: float) -> None:
        logger.info(f"Requesting reset of guest {guest.label} on node {guest.node}")
        await self._request("POST", f"{self._vm_path(guest)}/status/reset", timeout)

    async def is_running(self, guest: GuestConfig, timeout: float) -> bool:
        response = await self._request("GET", f"{self._vm_path(guest)}/status/current", timeout)
        data = self._data(response)
        status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(status, str):
            raise ProtocolError("status/current response has no status")
        return status == "running"

